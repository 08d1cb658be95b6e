"""Campaign trigger evaluation and outreach scheduling."""

from .dispatch import DispatchQueue, DispatchReport
from .engine import CampaignEngine, can_schedule
from .schedule import shift
from .triggers import (
    SALE_TRIGGERS,
    TriggerContext,
    group_by_trigger,
    plan_sale_firings,
    select_applicable,
    select_cashback_accumulated,
    select_first_purchase,
    select_new_purchase,
    select_total_purchase_count,
    select_total_purchase_value,
)

__all__ = [
    "CampaignEngine",
    "DispatchQueue",
    "DispatchReport",
    "SALE_TRIGGERS",
    "TriggerContext",
    "can_schedule",
    "group_by_trigger",
    "plan_sale_firings",
    "select_applicable",
    "select_cashback_accumulated",
    "select_first_purchase",
    "select_new_purchase",
    "select_total_purchase_count",
    "select_total_purchase_value",
    "shift",
]
