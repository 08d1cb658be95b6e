"""Periodic poll of every integrated organization's sales feed."""

from __future__ import annotations

from typing import Callable, Dict
from uuid import UUID

from loguru import logger
from sqlalchemy import select

from recompra_api.core.settings import settings
from recompra_api.models.organization import Organization
from recompra_api.services.campaigns.dispatch import DispatchQueue
from recompra_api.services.messaging import MessageChannel, get_message_channel
from recompra_api.services.sales_feed import SalesFeedClient
from recompra_api.services.transactions.importer import SalesImportService
from recompra_api.workers.periodic import PeriodicWorker, SessionFactory

FeedClientFactory = Callable[[Organization], SalesFeedClient | None]


class SalesImportWorker(PeriodicWorker):
    """Import each integrated organization in its own unit of work.

    One organization failing is logged and counted; the others still run.
    Outreach queued by an import is drained only after that import committed.
    """

    name = "sales-import"

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        channel_factory: Callable[[], MessageChannel] | None = None,
        feed_client_factory: FeedClientFactory | None = None,
        interval_seconds: int | None = None,
        organization_ids: list[str] | None = None,
    ) -> None:
        super().__init__(session_factory, interval_seconds=interval_seconds or settings.sales_import_interval_seconds)
        self._channel_factory = channel_factory or get_message_channel
        self._feed_client_factory = feed_client_factory or (lambda organization: None)
        ids = settings.sales_import_organization_ids if organization_ids is None else organization_ids
        self._organization_ids = [UUID(value) for value in ids]

    async def _organization_ids_to_import(self) -> list[UUID]:
        stmt = select(Organization.id).where(
            Organization.is_active.is_(True),
            Organization.integration_type.is_not(None),
        )
        if self._organization_ids:
            stmt = stmt.where(Organization.id.in_(self._organization_ids))
        session = await self._ensure_session()
        async with session as managed_session:
            return list((await managed_session.execute(stmt)).scalars().all())

    async def run_once(self) -> Dict[str, int]:
        summary: Dict[str, int] = {"organizations": 0, "failed": 0, "created": 0, "cancelled": 0, "dispatched": 0}
        for organization_id in await self._organization_ids_to_import():
            summary["organizations"] += 1
            queue = DispatchQueue(self._channel_factory(), session_factory=self._session_factory)
            try:
                session = await self._ensure_session()
                async with session as managed_session:
                    organization = await managed_session.get(Organization, organization_id)
                    if organization is None:
                        continue
                    service = SalesImportService(
                        managed_session,
                        organization,
                        feed_client=self._feed_client_factory(organization),
                        queue=queue,
                    )
                    result = await service.run()
            except Exception as exc:
                summary["failed"] += 1
                logger.exception(
                    "Sales import failed for organization",
                    organization_id=str(organization_id),
                    error=str(exc),
                )
                continue

            summary["created"] += result.created
            summary["cancelled"] += result.cancelled
            report = await queue.drain()
            summary["dispatched"] += len(report.dispatched)

        logger.info("Sales import sweep completed", **summary)
        return summary
