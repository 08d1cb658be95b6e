"""Batch import of sales fetched from an organization's external sales feed."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Sequence

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from recompra_api.core.settings import settings
from recompra_api.models.client import Client, Partner
from recompra_api.models.organization import Organization
from recompra_api.models.sale import Sale, SaleStatus
from recompra_api.observability.cashback import CashbackObservabilityStore, get_cashback_store
from recompra_api.observability.tracing import get_tracer
from recompra_api.services.campaigns.dispatch import DispatchQueue
from recompra_api.services.campaigns.engine import CampaignEngine
from recompra_api.services.campaigns.triggers import TriggerContext
from recompra_api.services.cashback.ledger import ZERO, AccrualPolicy, to_money
from recompra_api.services.cashback.reversal import reverse_sale_cashback
from recompra_api.services.cashback.service import CashbackLedgerService, load_program
from recompra_api.services.sales_feed import ExternalSaleRecord, SalesFeedClient, SalesFeedConfig, SalesFeedError
from recompra_api.services.transactions.clients import ClientDirectory, forget_purchase, record_purchase

INTEGRATION_CHANNEL = "INTEGRATION"


@dataclass(slots=True)
class ImportSummary:
    fetched: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    cancelled: int = 0
    clients_created: int = 0
    accruals: int = 0
    partner_accruals: int = 0
    interactions: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class SalesImportService:
    """Import one poll of an organization's sales feed as a single unit of work.

    Sales are processed serially and share one ``CashbackLedgerService``
    (and therefore one balance cache), so several sales of the same client
    in a batch each see the balance the previous one left behind.
    Re-delivered external ids update the stored sale instead of creating a
    second one; a sale that was valid and comes back cancelled or zeroed
    has its cashback reversed before anything else happens to it.
    """

    def __init__(
        self,
        session: AsyncSession,
        organization: Organization,
        *,
        feed_client: SalesFeedClient | None = None,
        queue: DispatchQueue | None = None,
        now: datetime | None = None,
        metrics: CashbackObservabilityStore | None = None,
    ) -> None:
        self._db = session
        self.organization = organization
        self.organization_id = organization.id
        self._feed_client = feed_client
        self._queue = queue
        self._now = now
        self._metrics = metrics or get_cashback_store()

    @property
    def now(self) -> datetime:
        return self._now or datetime.now(timezone.utc)

    def _resolve_feed_client(self) -> SalesFeedClient:
        if self._feed_client is not None:
            return self._feed_client
        config = SalesFeedConfig.from_integration(self.organization.integration_config)
        if config is None:
            raise SalesFeedError("Organization has no sales feed configured")
        return SalesFeedClient(config, timeout_seconds=settings.sales_import_timeout_seconds)

    async def run(self, *, since: datetime | None = None) -> ImportSummary:
        """Fetch the feed and import it, committing once at the end."""

        since = since or self.now - timedelta(days=settings.sales_import_lookback_days)
        records = await self._resolve_feed_client().fetch_sales(since=since)
        with get_tracer().start_as_current_span("sales_import.organization") as span:
            span.set_attribute("recompra.organization_id", str(self.organization_id))
            span.set_attribute("recompra.records", len(records))
            try:
                summary = await self.import_records(records)
                await self._db.commit()
            except Exception:
                await self._db.rollback()
                if self._queue is not None:
                    self._queue.discard()
                logger.exception(
                    "Sales import rolled back",
                    organization_id=str(self.organization_id),
                    records=len(records),
                )
                raise

        self._metrics.record_import(summary.as_dict())
        logger.info("Sales import committed", organization_id=str(self.organization_id), **summary.as_dict())
        return summary

    async def import_records(self, records: Sequence[ExternalSaleRecord]) -> ImportSummary:
        """Apply ``records`` on the current session without committing."""

        summary = ImportSummary(fetched=len(records))
        program = await load_program(self._db, self.organization_id)
        ledger = CashbackLedgerService(self._db, program)
        engine = await CampaignEngine.for_organization(
            self._db, self.organization_id, queue=self._queue, ledger=ledger, now=self.now
        )
        directory = ClientDirectory(self._db, self.organization_id)

        for record in records:
            existing = (
                await self._db.execute(
                    select(Sale).where(
                        Sale.organization_id == self.organization_id,
                        Sale.external_id == record.external_id,
                    )
                )
            ).scalar_one_or_none()
            if existing is not None:
                await self._refresh_existing(existing, record, ledger, summary)
                continue
            await self._import_new(record, directory, ledger, engine, summary)

        summary.interactions = len(engine.interactions)
        return summary

    async def _refresh_existing(
        self,
        sale: Sale,
        record: ExternalSaleRecord,
        ledger: CashbackLedgerService,
        summary: ImportSummary,
    ) -> None:
        if sale.status == SaleStatus.VALID and record.is_cancelled:
            await reverse_sale_cashback(ledger, sale, reason="SALE_CANCELLED_BY_INTEGRATION")
            if sale.client_id is not None:
                client = await self._db.get(Client, sale.client_id, with_for_update=True)
                if client is not None:
                    forget_purchase(client, value=to_money(sale.total_value))
            sale.status = SaleStatus.CANCELLED
            sale.total_value = to_money(record.total_value)
            sale.metadata_json = {**(sale.metadata_json or {}), "feed": record.model_dump(mode="json")}
            summary.cancelled += 1
            return

        if sale.status == SaleStatus.VALID and to_money(record.total_value) != to_money(sale.total_value):
            logger.warning(
                "Sales feed changed the value of an imported sale; cashback is not recomputed",
                sale_id=str(sale.id),
                external_id=record.external_id,
                stored=str(sale.total_value),
                received=str(record.total_value),
            )
            sale.total_value = to_money(record.total_value)
            sale.metadata_json = {**(sale.metadata_json or {}), "feed": record.model_dump(mode="json")}
            summary.updated += 1
            return

        summary.unchanged += 1

    async def _resolve_client(
        self, record: ExternalSaleRecord, directory: ClientDirectory, summary: ImportSummary
    ) -> tuple[Client | None, bool]:
        client = await directory.match(
            document=record.client_document, phone=record.client_phone, name=record.client_name, for_update=True
        )
        if client is not None:
            return client, False
        if not record.client_name or not record.client_name.strip():
            return None, False
        client = await directory.register(
            name=record.client_name,
            phone=record.client_phone,
            document=record.client_document,
            acquisition_channel=INTEGRATION_CHANNEL,
            require_phone=False,
        )
        summary.clients_created += 1
        return client, True

    async def _find_partner(self, code: str | None) -> Partner | None:
        if not code:
            return None
        stmt = select(Partner).where(
            Partner.organization_id == self.organization_id,
            Partner.code == code,
            Partner.is_active.is_(True),
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def _import_new(
        self,
        record: ExternalSaleRecord,
        directory: ClientDirectory,
        ledger: CashbackLedgerService,
        engine: CampaignEngine,
        summary: ImportSummary,
    ) -> None:
        client, client_is_new = await self._resolve_client(record, directory, summary)
        partner = await self._find_partner(record.partner_code)
        sale_value = to_money(record.total_value)

        sale = Sale(
            organization_id=self.organization_id,
            client_id=client.id if client else None,
            partner_id=partner.id if partner else None,
            external_id=record.external_id,
            total_value=sale_value,
            status=SaleStatus.CANCELLED if record.is_cancelled else SaleStatus.VALID,
            sold_at=record.sold_at or self.now,
            metadata_json={"source": INTEGRATION_CHANNEL, "feed": record.model_dump(mode="json")},
        )
        self._db.add(sale)
        await self._db.flush()
        summary.created += 1
        if sale.status != SaleStatus.VALID:
            return

        program = ledger.program
        accrued = ZERO
        if client is not None and program.accrue_via_integration:
            accrual = await ledger.accrue(
                client.id,
                sale_value=sale_value,
                sale_id=sale.id,
                metadata={"source": INTEGRATION_CHANNEL, "external_id": record.external_id},
            )
            accrued = accrual.amount
            if accrual.entry is not None:
                summary.accruals += 1
            await engine.fire_on_accrual(
                client,
                accrued=accrued,
                available=to_money(accrual.balance.available),
                sale_id=sale.id,
                sale_value=sale_value,
            )

        if partner is not None and partner.client_id is not None and program.accrue_via_integration:
            partner_accrual = await ledger.accrue(
                partner.client_id,
                sale_value=sale_value,
                policy=AccrualPolicy.from_program(program, partner=True),
                sale_id=sale.id,
                metadata={"source": "PARTNER", "partner_code": partner.code, "external_id": record.external_id},
            )
            if partner_accrual.entry is not None:
                summary.partner_accruals += 1

        if client is None:
            return

        is_first_sale = record_purchase(client, sale_id=sale.id, sold_at=sale.sold_at, value=sale_value)
        balance = await ledger.ensure_balance(client.id)
        ctx = TriggerContext(
            segment=client.segment,
            sale_value=sale_value,
            accrued=accrued,
            available=to_money(balance.available),
            purchase_count=client.purchase_count,
            purchase_value=to_money(client.purchase_value),
            client_is_new=client_is_new,
            is_first_sale=is_first_sale,
        )
        await engine.fire_on_sale(client, ctx, sale_id=sale.id)


async def import_organization_sales(
    session: AsyncSession,
    organization: Organization,
    *,
    queue: DispatchQueue | None = None,
    since: datetime | None = None,
) -> ImportSummary:
    return await SalesImportService(session, organization, queue=queue).run(since=since)
