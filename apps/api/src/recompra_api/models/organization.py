"""Tenant organizations, their point-of-sale operators and outbound channels."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, JSON, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from recompra_api.db.base import Base


class Organization(Base):
    """Tenant owning clients, sales, a cashback program and campaigns."""

    __tablename__ = "organizations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    # Set when an external sales feed is the system of record.
    integration_type = Column(String, nullable=True)
    integration_config = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    operators = relationship("Operator", back_populates="organization", cascade="all, delete-orphan")
    whatsapp_connection = relationship(
        "WhatsappConnection", back_populates="organization", uselist=False, cascade="all, delete-orphan"
    )


class Operator(Base):
    """Seller allowed to register point-of-sale transactions with a numeric PIN."""

    __tablename__ = "operators"
    __table_args__ = (UniqueConstraint("organization_id", "pin", name="uq_operators_organization_pin"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    pin = Column(String(16), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    organization = relationship("Organization", back_populates="operators")
    memberships = relationship("OrganizationMembership", back_populates="operator", cascade="all, delete-orphan")


class OrganizationMembership(Base):
    __tablename__ = "organization_memberships"
    __table_args__ = (
        UniqueConstraint("organization_id", "operator_id", name="uq_organization_memberships_operator"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    operator_id = Column(UUID(as_uuid=True), ForeignKey("operators.id", ondelete="CASCADE"), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    operator = relationship("Operator", back_populates="memberships")


class WhatsappConnection(Base):
    """Credentials used to reach the outbound WhatsApp channel of an organization."""

    __tablename__ = "whatsapp_connections"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    token = Column(String, nullable=True)
    gateway_session_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    organization = relationship("Organization", back_populates="whatsapp_connection")

    @property
    def auth_token(self) -> str | None:
        return self.token or self.gateway_session_id
