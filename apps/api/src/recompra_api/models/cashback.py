"""Cashback program, per-client balances and the append-only ledger."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from recompra_api.db.base import Base


class CashbackRuleType(str, Enum):
    """Shape of an accrual or redemption-limit rule."""

    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"


class CashbackTransactionType(str, Enum):
    ACCRUAL = "ACCRUAL"
    REDEMPTION = "REDEMPTION"
    EXPIRATION = "EXPIRATION"
    CANCELLATION = "CANCELLATION"


class CashbackTransactionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CONSUMED = "CONSUMED"
    EXPIRED = "EXPIRED"


class CashbackProgram(Base):
    """Cashback configuration, one per organization."""

    __tablename__ = "cashback_programs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    accrual_type = Column(SqlEnum(CashbackRuleType, name="cashback_accrual_type"), nullable=False)
    accrual_value = Column(Numeric(12, 2), nullable=False, default=0)
    partner_accrual_value = Column(Numeric(12, 2), nullable=True)
    minimum_sale_value = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    accrue_via_integration = Column(Boolean, nullable=False, default=False, server_default="false")
    accrue_via_point_of_interaction = Column(Boolean, nullable=False, default=True, server_default="true")
    expiration_days = Column(Integer, nullable=False, default=90, server_default="90")
    redemption_limit_type = Column(SqlEnum(CashbackRuleType, name="cashback_redemption_limit_type"), nullable=True)
    redemption_limit_value = Column(Numeric(12, 2), nullable=True)
    discount_mode_enabled = Column(Boolean, nullable=False, default=True, server_default="true")
    reward_mode_enabled = Column(Boolean, nullable=False, default=False, server_default="false")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class CashbackProgramBalance(Base):
    """Running balance of one client inside one program."""

    __tablename__ = "cashback_program_balances"
    __table_args__ = (
        UniqueConstraint("client_id", "program_id", name="uq_cashback_program_balances_client_program"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    program_id = Column(UUID(as_uuid=True), ForeignKey("cashback_programs.id", ondelete="CASCADE"), nullable=False)
    available = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    accumulated_total = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    redeemed_total = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    expired_total = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    # Number of ledger entries written against this balance; orders replay.
    entry_count = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    transactions = relationship("CashbackProgramTransaction", back_populates="balance")


class CashbackProgramTransaction(Base):
    """Ledger entry with the available balance before and after it was applied."""

    __tablename__ = "cashback_program_transactions"
    __table_args__ = (
        UniqueConstraint("balance_id", "sequence", name="uq_cashback_program_transactions_sequence"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    program_id = Column(UUID(as_uuid=True), ForeignKey("cashback_programs.id", ondelete="CASCADE"), nullable=False)
    balance_id = Column(
        UUID(as_uuid=True), ForeignKey("cashback_program_balances.id", ondelete="CASCADE"), nullable=False
    )
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    sale_id = Column(UUID(as_uuid=True), ForeignKey("sales.id", ondelete="SET NULL"), nullable=True, index=True)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True)
    operator_id = Column(UUID(as_uuid=True), ForeignKey("operators.id", ondelete="SET NULL"), nullable=True)
    entry_type = Column(SqlEnum(CashbackTransactionType, name="cashback_transaction_type"), nullable=False)
    status = Column(
        SqlEnum(CashbackTransactionStatus, name="cashback_transaction_status"),
        nullable=False,
        default=CashbackTransactionStatus.ACTIVE,
    )
    status_reason = Column(String, nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    remaining = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    balance_before = Column(Numeric(14, 2), nullable=False)
    balance_after = Column(Numeric(14, 2), nullable=False)
    sale_value = Column(Numeric(14, 2), nullable=True)
    sequence = Column(Integer, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    balance = relationship("CashbackProgramBalance", back_populates="transactions")
