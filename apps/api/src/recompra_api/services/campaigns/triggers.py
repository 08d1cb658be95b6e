"""Pure campaign selection for sale and accrual events."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping, Protocol, Sequence

from recompra_api.models.campaign import CampaignTrigger
from recompra_api.services.cashback.ledger import ZERO, to_money

SALE_TRIGGERS = (
    CampaignTrigger.FIRST_PURCHASE,
    CampaignTrigger.NEW_PURCHASE,
    CampaignTrigger.TOTAL_PURCHASE_COUNT,
    CampaignTrigger.TOTAL_PURCHASE_VALUE,
)
EVENT_TRIGGERS = SALE_TRIGGERS + (CampaignTrigger.CASHBACK_ACCUMULATED,)


class CampaignRule(Protocol):
    trigger: CampaignTrigger
    segments: list[str] | None
    min_sale_value: Decimal | None
    min_new_cashback: Decimal | None
    min_total_cashback: Decimal | None
    min_purchase_count: int | None
    min_purchase_value: Decimal | None


@dataclass(frozen=True, slots=True)
class TriggerContext:
    """What is known about the client and the sale when triggers are evaluated."""

    segment: str
    sale_value: Decimal = ZERO
    accrued: Decimal = ZERO
    available: Decimal = ZERO
    purchase_count: int = 0
    purchase_value: Decimal = ZERO
    client_is_new: bool = False
    is_first_sale: bool = False


def _targets(campaign: CampaignRule, segment: str) -> bool:
    return segment in (campaign.segments or [])


def _targets_or_open(campaign: CampaignRule, segment: str) -> bool:
    return not campaign.segments or _targets(campaign, segment)


def _meets(value: Decimal, threshold: Decimal | None) -> bool:
    return threshold is None or to_money(value) >= to_money(threshold)


def group_by_trigger(campaigns: Iterable[CampaignRule]) -> dict[CampaignTrigger, list[CampaignRule]]:
    grouped: dict[CampaignTrigger, list[CampaignRule]] = defaultdict(list)
    for campaign in campaigns:
        grouped[CampaignTrigger(campaign.trigger)].append(campaign)
    return dict(grouped)


def select_new_purchase(campaigns: Sequence[CampaignRule], ctx: TriggerContext) -> list[CampaignRule]:
    return [c for c in campaigns if _meets(ctx.sale_value, c.min_sale_value) and _targets(c, ctx.segment)]


def select_first_purchase(campaigns: Sequence[CampaignRule], ctx: TriggerContext) -> list[CampaignRule]:
    # A late first sale of a pre-existing client must not count as a first purchase.
    if not (ctx.client_is_new and ctx.is_first_sale):
        return []
    return [c for c in campaigns if _targets(c, ctx.segment)]


def select_cashback_accumulated(campaigns: Sequence[CampaignRule], ctx: TriggerContext) -> list[CampaignRule]:
    if ctx.accrued <= ZERO:
        return []
    return [
        c
        for c in campaigns
        if _meets(ctx.accrued, c.min_new_cashback)
        and _meets(ctx.available, c.min_total_cashback)
        and _targets(c, ctx.segment)
    ]


def select_total_purchase_count(campaigns: Sequence[CampaignRule], ctx: TriggerContext) -> list[CampaignRule]:
    return [
        c
        for c in campaigns
        if c.min_purchase_count is not None
        and ctx.purchase_count >= c.min_purchase_count
        and _targets_or_open(c, ctx.segment)
    ]


def select_total_purchase_value(campaigns: Sequence[CampaignRule], ctx: TriggerContext) -> list[CampaignRule]:
    return [
        c
        for c in campaigns
        if c.min_purchase_value is not None
        and to_money(ctx.purchase_value) >= to_money(c.min_purchase_value)
        and _targets_or_open(c, ctx.segment)
    ]


_SELECTORS = {
    CampaignTrigger.NEW_PURCHASE: select_new_purchase,
    CampaignTrigger.FIRST_PURCHASE: select_first_purchase,
    CampaignTrigger.CASHBACK_ACCUMULATED: select_cashback_accumulated,
    CampaignTrigger.TOTAL_PURCHASE_COUNT: select_total_purchase_count,
    CampaignTrigger.TOTAL_PURCHASE_VALUE: select_total_purchase_value,
}


def select_applicable(
    trigger: CampaignTrigger, campaigns: Sequence[CampaignRule], ctx: TriggerContext
) -> list[CampaignRule]:
    return _SELECTORS[trigger](campaigns, ctx)


def plan_sale_firings(
    campaigns: Mapping[CampaignTrigger, Sequence[CampaignRule]], ctx: TriggerContext
) -> list[tuple[CampaignTrigger, list[CampaignRule]]]:
    """Applicable campaigns per sale trigger, in firing order.

    When the client was created by this event and both FIRST_PURCHASE and
    NEW_PURCHASE have applicable campaigns, only FIRST_PURCHASE fires.
    """

    plan = {
        trigger: select_applicable(trigger, campaigns.get(trigger, ()), ctx)
        for trigger in SALE_TRIGGERS
    }
    if ctx.client_is_new and plan[CampaignTrigger.FIRST_PURCHASE] and plan[CampaignTrigger.NEW_PURCHASE]:
        plan[CampaignTrigger.NEW_PURCHASE] = []
    return [(trigger, plan[trigger]) for trigger in SALE_TRIGGERS if plan[trigger]]
