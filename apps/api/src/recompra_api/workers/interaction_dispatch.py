"""Delivery of scheduled campaign interactions once their day and time block arrive."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Dict

from loguru import logger
from sqlalchemy import ColumnElement, and_, or_, select

from recompra_api.core.settings import settings
from recompra_api.models.campaign import Campaign, Interaction, InteractionStatus, MessageTemplate
from recompra_api.models.client import Client
from recompra_api.models.organization import WhatsappConnection
from recompra_api.services.campaigns.dispatch import DispatchQueue
from recompra_api.services.messaging import MessageChannel, OutboundMessage, get_message_channel
from recompra_api.workers.periodic import PeriodicWorker, SessionFactory


def due_clause(now: datetime) -> ColumnElement[bool]:
    """Scheduled on an earlier day, or today with a time block that already started."""

    today = now.date()
    return or_(
        Interaction.scheduled_for < today,
        and_(
            Interaction.scheduled_for == today,
            or_(Interaction.time_block.is_(None), Interaction.time_block <= now.strftime("%H:%M")),
        ),
    )


def _has_token(column) -> ColumnElement[bool]:
    return and_(column.is_not(None), column != "")


class InteractionDispatchWorker(PeriodicWorker):
    """Send due ``PENDING`` interactions whose campaign has a template and a channel."""

    name = "interaction-dispatch"

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        channel_factory: Callable[[], MessageChannel] | None = None,
        interval_seconds: int | None = None,
        batch_size: int | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(
            session_factory,
            interval_seconds=interval_seconds or settings.interaction_dispatch_interval_seconds,
        )
        self._channel_factory = channel_factory or get_message_channel
        self._batch_size = batch_size or settings.interaction_dispatch_batch_size
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def run_once(self) -> Dict[str, int]:
        now = self._now()
        queue = DispatchQueue(self._channel_factory(), session_factory=self._session_factory)

        session = await self._ensure_session()
        async with session as managed_session:
            # Only rows that can be sent right now, so undeliverable ones never hold batch slots.
            stmt = (
                select(Interaction, Campaign, MessageTemplate, Client, WhatsappConnection)
                .join(Campaign, Interaction.campaign_id == Campaign.id)
                .join(MessageTemplate, Campaign.template_id == MessageTemplate.id)
                .join(Client, Interaction.client_id == Client.id)
                .join(WhatsappConnection, WhatsappConnection.organization_id == Interaction.organization_id)
                .where(
                    Interaction.status == InteractionStatus.PENDING,
                    due_clause(now),
                    Campaign.channel_phone_id.is_not(None),
                    Client.phone.is_not(None),
                    or_(_has_token(WhatsappConnection.token), _has_token(WhatsappConnection.gateway_session_id)),
                )
                .order_by(Interaction.scheduled_for.asc(), Interaction.created_at.asc())
                .limit(self._batch_size)
            )
            rows = (await managed_session.execute(stmt)).all()
            for interaction, campaign, template, client, connection in rows:
                queue.enqueue(
                    OutboundMessage(
                        interaction_id=interaction.id,
                        organization_id=interaction.organization_id,
                        client_id=client.id,
                        client_name=client.name,
                        client_phone=client.phone,
                        template_name=template.name,
                        template_language=template.language,
                        channel_phone_id=campaign.channel_phone_id,
                        auth_token=connection.auth_token,
                    )
                )

        report = await queue.drain()
        summary = {
            "selected": len(rows),
            "dispatched": len(report.dispatched),
            "failed": len(report.failed),
            "skipped": len(report.skipped),
        }
        logger.info("Interaction dispatch sweep completed", **summary)
        return summary
