"""Turn applicable campaigns into interactions, immediate dispatches and campaign cashback."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Mapping, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from recompra_api.models.campaign import Campaign, CampaignTrigger, Interaction, InteractionStatus
from recompra_api.models.cashback import CashbackProgramTransaction
from recompra_api.models.client import Client
from recompra_api.models.organization import WhatsappConnection
from recompra_api.services.campaigns.dispatch import DispatchQueue
from recompra_api.services.campaigns.schedule import shift
from recompra_api.services.campaigns.triggers import (
    EVENT_TRIGGERS,
    TriggerContext,
    group_by_trigger,
    plan_sale_firings,
    select_cashback_accumulated,
)
from recompra_api.services.cashback.ledger import ZERO, FixedRule, PercentageRule, rule_from, to_money
from recompra_api.services.cashback.service import CashbackLedgerService
from recompra_api.services.messaging import OutboundMessage

_DESCRIPTIONS = {
    CampaignTrigger.NEW_PURCHASE: "Client made a new purchase",
    CampaignTrigger.FIRST_PURCHASE: "Client made a first purchase",
    CampaignTrigger.CASHBACK_ACCUMULATED: "Client accumulated cashback",
    CampaignTrigger.TOTAL_PURCHASE_COUNT: "Client reached the purchase count threshold",
    CampaignTrigger.TOTAL_PURCHASE_VALUE: "Client reached the purchase value threshold",
}


async def can_schedule(
    session: AsyncSession,
    client_id: UUID,
    campaign: Campaign,
    *,
    now: datetime | None = None,
) -> bool:
    """Frequency cap for one (client, campaign) pair.

    Non-recurring campaigns fire once ever; recurring campaigns with an
    interval fire at most once inside ``now - interval``.
    """

    base = select(Interaction.id).where(
        Interaction.client_id == client_id,
        Interaction.campaign_id == campaign.id,
    )
    if not campaign.allow_recurrence:
        previous = (await session.execute(base.limit(1))).first()
        return previous is None

    if campaign.recurrence_interval_value and campaign.recurrence_interval_value > 0 and campaign.recurrence_interval_unit:
        now = now or datetime.now(timezone.utc)
        cutoff = shift(now, -campaign.recurrence_interval_value, campaign.recurrence_interval_unit)
        recent = (await session.execute(base.where(Interaction.created_at > cutoff).limit(1))).first()
        return recent is None

    return True


class CampaignEngine:
    """Fire an organization's campaigns for one client event inside the caller's unit of work."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        organization_id: UUID,
        campaigns: Mapping[CampaignTrigger, Sequence[Campaign]],
        queue: DispatchQueue | None = None,
        ledger: CashbackLedgerService | None = None,
        connection: WhatsappConnection | None = None,
        now: datetime | None = None,
    ) -> None:
        self._db = session
        self.organization_id = organization_id
        self.campaigns = campaigns
        self._queue = queue
        self._ledger = ledger
        self._connection = connection
        self._now = now
        self.interactions: list[Interaction] = []
        self.ledger_entries: list[CashbackProgramTransaction] = []

    @classmethod
    async def for_organization(
        cls,
        session: AsyncSession,
        organization_id: UUID,
        *,
        queue: DispatchQueue | None = None,
        ledger: CashbackLedgerService | None = None,
        now: datetime | None = None,
    ) -> "CampaignEngine":
        stmt = select(Campaign).where(
            Campaign.organization_id == organization_id,
            Campaign.is_active.is_(True),
            Campaign.trigger.in_(EVENT_TRIGGERS),
        )
        campaigns = (await session.execute(stmt)).unique().scalars().all()
        connection = (
            await session.execute(
                select(WhatsappConnection).where(WhatsappConnection.organization_id == organization_id)
            )
        ).scalar_one_or_none()
        grouped = group_by_trigger(campaigns)
        logger.debug(
            "Loaded campaigns for evaluation",
            organization_id=str(organization_id),
            **{trigger.value.lower(): len(items) for trigger, items in grouped.items()},
        )
        return cls(
            session,
            organization_id=organization_id,
            campaigns=grouped,
            queue=queue,
            ledger=ledger,
            connection=connection,
            now=now,
        )

    @property
    def now(self) -> datetime:
        return self._now or datetime.now(timezone.utc)

    async def fire_on_accrual(
        self,
        client: Client,
        *,
        accrued: Decimal,
        available: Decimal,
        sale_id: UUID | None = None,
        sale_value: Decimal = ZERO,
    ) -> list[Interaction]:
        ctx = TriggerContext(segment=client.segment, sale_value=sale_value, accrued=accrued, available=available)
        applicable = select_cashback_accumulated(self.campaigns.get(CampaignTrigger.CASHBACK_ACCUMULATED, ()), ctx)
        return await self._fire(
            CampaignTrigger.CASHBACK_ACCUMULATED, applicable, client, sale_id=sale_id, sale_value=sale_value
        )

    async def fire_on_sale(self, client: Client, ctx: TriggerContext, *, sale_id: UUID) -> list[Interaction]:
        fired: list[Interaction] = []
        for trigger, applicable in plan_sale_firings(self.campaigns, ctx):
            fired.extend(
                await self._fire(trigger, applicable, client, sale_id=sale_id, sale_value=ctx.sale_value)
            )
        return fired

    async def _fire(
        self,
        trigger: CampaignTrigger,
        campaigns: Sequence[Campaign],
        client: Client,
        *,
        sale_id: UUID | None,
        sale_value: Decimal,
    ) -> list[Interaction]:
        fired: list[Interaction] = []
        for campaign in campaigns:
            if not await can_schedule(self._db, client.id, campaign, now=self.now):
                logger.info(
                    "Skipping campaign due to frequency limits",
                    campaign_id=str(campaign.id),
                    client_id=str(client.id),
                    trigger=trigger.value,
                )
                continue

            scheduled_at = shift(self.now, campaign.schedule_offset_value, campaign.schedule_offset_unit)
            interaction = Interaction(
                organization_id=self.organization_id,
                client_id=client.id,
                campaign_id=campaign.id,
                sale_id=sale_id,
                title=f"Automatic message from campaign {campaign.title}",
                description=f"{_DESCRIPTIONS.get(trigger, trigger.value)} ({client.segment}).",
                status=InteractionStatus.PENDING,
                scheduled_for=scheduled_at.date(),
                time_block=campaign.schedule_time_block,
                created_at=self.now,
            )
            self._db.add(interaction)
            await self._db.flush()
            fired.append(interaction)
            logger.info(
                "Scheduled campaign interaction",
                interaction_id=str(interaction.id),
                campaign_id=str(campaign.id),
                client_id=str(client.id),
                trigger=trigger.value,
                scheduled_for=interaction.scheduled_for.isoformat(),
            )

            self._maybe_enqueue(interaction, campaign, client)
            await self._maybe_generate_cashback(campaign, client, sale_id=sale_id, sale_value=sale_value)

        self.interactions.extend(fired)
        return fired

    def _maybe_enqueue(self, interaction: Interaction, campaign: Campaign, client: Client) -> None:
        if self._queue is None or not campaign.dispatches_immediately:
            return
        auth_token = self._connection.auth_token if self._connection else None
        if campaign.template is None or not campaign.channel_phone_id or not auth_token or not client.phone:
            logger.debug(
                "Immediate dispatch skipped: channel not configured",
                interaction_id=str(interaction.id),
                has_template=campaign.template is not None,
                has_channel=bool(campaign.channel_phone_id),
                has_connection=bool(auth_token),
            )
            return
        self._queue.enqueue(
            OutboundMessage(
                interaction_id=interaction.id,
                organization_id=self.organization_id,
                client_id=client.id,
                client_name=client.name,
                client_phone=client.phone,
                template_name=campaign.template.name,
                template_language=campaign.template.language,
                channel_phone_id=campaign.channel_phone_id,
                auth_token=auth_token,
            )
        )

    async def _maybe_generate_cashback(
        self,
        campaign: Campaign,
        client: Client,
        *,
        sale_id: UUID | None,
        sale_value: Decimal,
    ) -> None:
        if self._ledger is None or not campaign.cashback_enabled:
            return
        rule = rule_from(campaign.cashback_type, campaign.cashback_value)
        if isinstance(rule, FixedRule):
            amount = rule.value
        elif isinstance(rule, PercentageRule):
            amount = rule.of(to_money(sale_value))
        else:
            return
        if amount <= ZERO:
            return

        expires_at = None
        if campaign.cashback_expiration_value:
            expires_at = shift(self.now, campaign.cashback_expiration_value, campaign.cashback_expiration_unit)
        result = await self._ledger.accrue(
            client.id,
            sale_value=sale_value,
            amount=amount,
            sale_id=sale_id,
            campaign_id=campaign.id,
            expires_at=expires_at,
            metadata={"source": "campaign", "campaign_title": campaign.title},
        )
        if result.entry is not None:
            self.ledger_entries.append(result.entry)
