"""Campaign trigger definitions, message templates and scheduled interactions."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from recompra_api.db.base import Base
from recompra_api.models.cashback import CashbackRuleType


class CampaignTrigger(str, Enum):
    """Event categories a campaign can react to."""

    NEW_PURCHASE = "NEW_PURCHASE"
    FIRST_PURCHASE = "FIRST_PURCHASE"
    CASHBACK_ACCUMULATED = "CASHBACK_ACCUMULATED"
    TOTAL_PURCHASE_COUNT = "TOTAL_PURCHASE_COUNT"
    TOTAL_PURCHASE_VALUE = "TOTAL_PURCHASE_VALUE"
    # Evaluated by scheduled sweeps, never by the sale flow.
    SEGMENT_ENTRY = "SEGMENT_ENTRY"
    SEGMENT_STAY = "SEGMENT_STAY"
    CASHBACK_EXPIRING = "CASHBACK_EXPIRING"
    CLIENT_BIRTHDAY = "CLIENT_BIRTHDAY"
    RECURRING = "RECURRING"


class TimeUnit(str, Enum):
    DAYS = "DAYS"
    WEEKS = "WEEKS"
    MONTHS = "MONTHS"
    YEARS = "YEARS"


TIME_BLOCKS = ("00:00", "03:00", "06:00", "09:00", "12:00", "15:00", "18:00", "21:00")


class InteractionStatus(str, Enum):
    PENDING = "PENDING"
    DISPATCHING = "DISPATCHING"
    DISPATCHED = "DISPATCHED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class MessageTemplate(Base):
    __tablename__ = "message_templates"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    language = Column(String(16), nullable=False, default="pt_BR")
    body = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Campaign(Base):
    """Rule that schedules outreach (and optionally cashback) when its trigger fires."""

    __tablename__ = "campaigns"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    title = Column(String, nullable=False)
    trigger = Column(SqlEnum(CampaignTrigger, name="campaign_trigger"), nullable=False)

    min_sale_value = Column(Numeric(14, 2), nullable=True)
    min_new_cashback = Column(Numeric(14, 2), nullable=True)
    min_total_cashback = Column(Numeric(14, 2), nullable=True)
    min_purchase_count = Column(Integer, nullable=True)
    min_purchase_value = Column(Numeric(14, 2), nullable=True)
    segments = Column(JSON, nullable=False, default=list)

    schedule_offset_value = Column(Integer, nullable=True, default=0)
    schedule_offset_unit = Column(SqlEnum(TimeUnit, name="campaign_time_unit"), nullable=False, default=TimeUnit.DAYS)
    schedule_time_block = Column(String(5), nullable=False, default="09:00")

    allow_recurrence = Column(Boolean, nullable=False, default=True, server_default="true")
    recurrence_interval_value = Column(Integer, nullable=True, default=0)
    recurrence_interval_unit = Column(SqlEnum(TimeUnit, name="campaign_time_unit"), nullable=True)

    cashback_enabled = Column(Boolean, nullable=False, default=False, server_default="false")
    cashback_type = Column(SqlEnum(CashbackRuleType, name="campaign_cashback_type"), nullable=True)
    cashback_value = Column(Numeric(12, 2), nullable=True)
    cashback_expiration_value = Column(Integer, nullable=True)
    cashback_expiration_unit = Column(SqlEnum(TimeUnit, name="campaign_time_unit"), nullable=True)

    template_id = Column(UUID(as_uuid=True), ForeignKey("message_templates.id", ondelete="SET NULL"), nullable=True)
    channel_phone_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    template = relationship("MessageTemplate", lazy="joined")

    @property
    def dispatches_immediately(self) -> bool:
        return not self.schedule_offset_value


class Interaction(Base):
    """Outreach scheduled for one client by one campaign firing."""

    __tablename__ = "interactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    sale_id = Column(UUID(as_uuid=True), ForeignKey("sales.id", ondelete="SET NULL"), nullable=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(
        SqlEnum(InteractionStatus, name="interaction_status"), nullable=False, default=InteractionStatus.PENDING
    )
    scheduled_for = Column(Date, nullable=False)
    time_block = Column(String(5), nullable=True)
    dispatched_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
