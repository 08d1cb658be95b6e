"""Client (customer) and referral partner records."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from recompra_api.db.base import Base


RECENT_CLIENTS_SEGMENT = "CLIENTES RECENTES"


class Client(Base):
    """Customer of an organization with denormalized purchase counters."""

    __tablename__ = "clients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    phone_base = Column(String, nullable=True, index=True)
    document = Column(String, nullable=True, index=True)
    acquisition_channel = Column(String, nullable=True)
    rfm_segment = Column(String, nullable=True)
    purchase_count = Column(Integer, nullable=False, default=0, server_default="0")
    purchase_value = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    first_sale_id = Column(UUID(as_uuid=True), nullable=True)
    first_sale_at = Column(DateTime(timezone=True), nullable=True)
    last_sale_id = Column(UUID(as_uuid=True), nullable=True)
    last_sale_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def segment(self) -> str:
        return self.rfm_segment or RECENT_CLIENTS_SEGMENT


class Partner(Base):
    """Referral partner whose accrual lands on its own client record."""

    __tablename__ = "partners"
    __table_args__ = (UniqueConstraint("organization_id", "code", name="uq_partners_organization_code"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)
    code = Column(String, nullable=False)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
