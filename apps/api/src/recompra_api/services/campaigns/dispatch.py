"""Post-commit outbox for interactions that must be delivered right away."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List
from uuid import UUID

from loguru import logger
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from recompra_api.core.settings import settings
from recompra_api.models.campaign import Interaction, InteractionStatus
from recompra_api.observability.cashback import CashbackObservabilityStore, get_cashback_store
from recompra_api.services.messaging import DeliveryResult, MessageChannel, OutboundMessage

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


@dataclass(slots=True)
class DispatchReport:
    dispatched: List[UUID] = field(default_factory=list)
    failed: List[UUID] = field(default_factory=list)
    # Claimed by another drain first, or no longer pending.
    skipped: List[UUID] = field(default_factory=list)


class DispatchQueue:
    """Collect outreach during a unit of work and deliver it once that work committed.

    ``enqueue`` only buffers. ``drain`` must be called after the commit
    (directly, from a FastAPI background task or from a worker); each item
    is sent independently, failures are logged and never raised. With a
    session factory, rows are first moved from ``PENDING`` to ``DISPATCHING``
    so an interaction is sent by exactly one drain.
    """

    def __init__(
        self,
        channel: MessageChannel,
        *,
        session_factory: SessionFactory | None = None,
        delay_seconds: float | None = None,
        metrics: CashbackObservabilityStore | None = None,
    ) -> None:
        self._channel = channel
        self._session_factory = session_factory
        self._delay = settings.interaction_dispatch_delay_seconds if delay_seconds is None else delay_seconds
        self._metrics = metrics or get_cashback_store()
        self._items: List[OutboundMessage] = []

    def __len__(self) -> int:
        return len(self._items)

    @property
    def pending(self) -> tuple[OutboundMessage, ...]:
        return tuple(self._items)

    def enqueue(self, message: OutboundMessage) -> None:
        self._items.append(message)

    def discard(self) -> None:
        """Drop everything collected; used when the unit of work rolled back."""

        if self._items:
            logger.info("Discarded queued interactions after rollback", count=len(self._items))
        self._items.clear()

    async def drain(self) -> DispatchReport:
        items, self._items = self._items, []
        report = DispatchReport()
        if items:
            claimed = await self._claim(items)
            report.skipped = [message.interaction_id for message in items if message.interaction_id not in claimed]
            items = [message for message in items if message.interaction_id in claimed]
        for position, message in enumerate(items):
            if position and self._delay > 0:
                await asyncio.sleep(self._delay)
            try:
                result = await self._channel.send(message)
            except Exception as exc:
                logger.exception(
                    "Immediate interaction dispatch failed",
                    interaction_id=str(message.interaction_id),
                    organization_id=str(message.organization_id),
                )
                result = DeliveryResult(success=False, error=str(exc))

            if result.success:
                report.dispatched.append(message.interaction_id)
                self._metrics.record_dispatch("dispatched")
            else:
                report.failed.append(message.interaction_id)
                self._metrics.record_dispatch("failed")
                logger.warning(
                    "Interaction was not delivered",
                    interaction_id=str(message.interaction_id),
                    error=result.error,
                )

        if items:
            await self._record_outcomes(report, items)
            logger.info(
                "Drained interaction dispatch queue",
                dispatched=len(report.dispatched),
                failed=len(report.failed),
                skipped=len(report.skipped),
            )
        return report

    async def _claim(self, items: List[OutboundMessage]) -> set[UUID]:
        ids = [message.interaction_id for message in items]
        if self._session_factory is None:
            return set(ids)
        try:
            session = await self._ensure_session()
            async with session as managed_session:
                result = await managed_session.execute(
                    update(Interaction)
                    .where(Interaction.id.in_(ids), Interaction.status == InteractionStatus.PENDING)
                    .values(status=InteractionStatus.DISPATCHING)
                    .returning(Interaction.id)
                    .execution_options(synchronize_session=False)
                )
                claimed = set(result.scalars().all())
                await managed_session.commit()
        except Exception:
            logger.exception("Failed to claim interactions for dispatch", count=len(ids))
            return set()
        return claimed

    async def _record_outcomes(self, report: DispatchReport, items: List[OutboundMessage]) -> None:
        if self._session_factory is None:
            return
        now = datetime.now(timezone.utc)
        try:
            session = await self._ensure_session()
            async with session as managed_session:
                if report.dispatched:
                    await managed_session.execute(
                        update(Interaction)
                        .where(Interaction.id.in_(report.dispatched), Interaction.status == InteractionStatus.DISPATCHING)
                        .values(status=InteractionStatus.DISPATCHED, dispatched_at=now)
                    )
                if report.failed:
                    await managed_session.execute(
                        update(Interaction)
                        .where(Interaction.id.in_(report.failed), Interaction.status == InteractionStatus.DISPATCHING)
                        .values(status=InteractionStatus.FAILED, error_message="Delivery failed")
                    )
                await managed_session.commit()
        except Exception:
            logger.exception("Failed to record interaction dispatch outcomes", count=len(items))

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session
