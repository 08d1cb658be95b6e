"""Sales captured at the point of sale or imported from an external feed."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from recompra_api.db.base import Base


class SaleStatus(str, Enum):
    VALID = "VALID"
    CANCELLED = "CANCELLED"


class Sale(Base):
    """A single sale, unique per organization by its external id."""

    __tablename__ = "sales"
    __table_args__ = (UniqueConstraint("organization_id", "external_id", name="uq_sales_organization_external_id"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)
    operator_id = Column(UUID(as_uuid=True), ForeignKey("operators.id", ondelete="SET NULL"), nullable=True)
    partner_id = Column(UUID(as_uuid=True), ForeignKey("partners.id", ondelete="SET NULL"), nullable=True)
    external_id = Column(String, nullable=False)
    total_value = Column(Numeric(14, 2), nullable=False, default=0)
    status = Column(SqlEnum(SaleStatus, name="sale_status"), nullable=False, default=SaleStatus.VALID)
    sold_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def is_valid(self) -> bool:
        return self.status == SaleStatus.VALID and (self.total_value or 0) > 0
