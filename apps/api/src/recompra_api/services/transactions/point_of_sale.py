"""Point-of-sale transaction orchestration.

A transaction walks through the stages below inside one database
transaction; any error rolls every write back and empties the dispatch
queue, so nothing is delivered for a sale that was never committed::

    RESOLVE_OPERATOR -> RESOLVE_CLIENT -> REDEMPTION? -> ACCRUAL?
        -> SALE_PERSISTENCE? -> CLIENT_METADATA_UPDATE -> CAMPAIGN_EVALUATION -> COMMIT

Redemption always runs before accrual so cashback earned by a sale can
never pay for that same sale.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from recompra_api.models.client import Client
from recompra_api.models.organization import Operator, Organization, OrganizationMembership
from recompra_api.models.sale import Sale, SaleStatus
from recompra_api.observability.tracing import get_tracer
from recompra_api.services.campaigns.dispatch import DispatchQueue
from recompra_api.services.campaigns.engine import CampaignEngine
from recompra_api.services.campaigns.triggers import TriggerContext
from recompra_api.services.cashback.errors import (
    BadRequestError,
    NotFoundError,
    UnauthorizedOperatorError,
)
from recompra_api.services.cashback.ledger import ZERO, AccrualPolicy, compute_accrual, to_money
from recompra_api.services.cashback.service import CashbackLedgerService, load_program
from recompra_api.services.transactions.clients import ClientDirectory, record_purchase

POINT_OF_INTERACTION_CHANNEL = "POINT_OF_INTERACTION"


class TransactionStage(str, Enum):
    RESOLVE_OPERATOR = "RESOLVE_OPERATOR"
    RESOLVE_CLIENT = "RESOLVE_CLIENT"
    REDEMPTION = "REDEMPTION"
    ACCRUAL = "ACCRUAL"
    SALE_PERSISTENCE = "SALE_PERSISTENCE"
    CLIENT_METADATA_UPDATE = "CLIENT_METADATA_UPDATE"
    CAMPAIGN_EVALUATION = "CAMPAIGN_EVALUATION"
    COMMIT = "COMMIT"


@dataclass(slots=True)
class NewClientData:
    name: str
    phone: str
    document: str | None = None


@dataclass(slots=True)
class TransactionRequest:
    organization_id: UUID
    operator_pin: str
    sale_value: Decimal
    client_id: UUID | None = None
    new_client: NewClientData | None = None
    apply_cashback: bool = False
    cashback_amount: Decimal = ZERO

    @property
    def requires_redemption(self) -> bool:
        return self.apply_cashback and to_money(self.cashback_amount) > ZERO


@dataclass(slots=True)
class TransactionResult:
    client_id: UUID
    sale_id: UUID | None
    accrued: Decimal
    available: Decimal
    visual_accrued: Decimal
    visual_available: Decimal
    stages: list[TransactionStage] = field(default_factory=list)
    interaction_ids: list[UUID] = field(default_factory=list)
    ledger_entry_ids: list[UUID] = field(default_factory=list)


@dataclass(slots=True)
class RedemptionResult:
    client_id: UUID
    transaction_id: UUID
    amount: Decimal
    available: Decimal


async def resolve_operator(session: AsyncSession, organization_id: UUID, pin: str) -> Operator:
    """Operator owning ``pin`` with an active membership in the organization."""

    operator = (
        await session.execute(
            select(Operator).where(Operator.organization_id == organization_id, Operator.pin == pin)
        )
    ).scalar_one_or_none()
    if operator is None:
        raise UnauthorizedOperatorError("Operator not found")

    membership = (
        await session.execute(
            select(OrganizationMembership.id).where(
                OrganizationMembership.organization_id == organization_id,
                OrganizationMembership.operator_id == operator.id,
                OrganizationMembership.is_active.is_(True),
            )
        )
    ).first()
    if membership is None:
        raise UnauthorizedOperatorError("Operator not found or not a member of this organization")
    return operator


class PointOfSaleService:
    """Register sales, redemptions and client signups made at the counter."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        queue: DispatchQueue | None = None,
        now: datetime | None = None,
    ) -> None:
        self._db = session
        self._queue = queue
        self._now = now
        self.stage: TransactionStage | None = None

    @property
    def now(self) -> datetime:
        return self._now or datetime.now(timezone.utc)

    def _enter(self, stage: TransactionStage, result_stages: list[TransactionStage]) -> None:
        self.stage = stage
        result_stages.append(stage)

    async def register_transaction(self, request: TransactionRequest) -> TransactionResult:
        """Run the whole sale flow and commit it, or roll all of it back."""

        with get_tracer().start_as_current_span("point_of_sale.transaction") as span:
            span.set_attribute("recompra.organization_id", str(request.organization_id))
            try:
                result = await self._run_transaction(request)
                self._enter(TransactionStage.COMMIT, result.stages)
                await self._db.commit()
            except Exception as exc:
                span.set_attribute("recompra.failed_stage", self.stage.value if self.stage else "")
                await self._abort(request, exc)
                raise

        logger.info(
            "Point-of-sale transaction committed",
            organization_id=str(request.organization_id),
            client_id=str(result.client_id),
            sale_id=str(result.sale_id) if result.sale_id else None,
            accrued=str(result.accrued),
            available=str(result.available),
            interactions=len(result.interaction_ids),
        )
        return result

    async def _abort(self, request: TransactionRequest, exc: Exception) -> None:
        await self._db.rollback()
        if self._queue is not None:
            self._queue.discard()
        logger.warning(
            "Point-of-sale transaction aborted",
            organization_id=str(request.organization_id),
            stage=self.stage.value if self.stage else None,
            error=str(exc),
        )

    async def _load_organization(self, organization_id: UUID) -> Organization:
        organization = await self._db.get(Organization, organization_id)
        if organization is None:
            raise NotFoundError("Organization not found")
        return organization

    async def _run_transaction(self, request: TransactionRequest) -> TransactionResult:
        sale_value = to_money(request.sale_value)
        if sale_value <= ZERO:
            raise BadRequestError("Sale value must be greater than zero")

        program = await load_program(self._db, request.organization_id)
        organization = await self._load_organization(request.organization_id)
        stages: list[TransactionStage] = []

        self._enter(TransactionStage.RESOLVE_OPERATOR, stages)
        operator = await resolve_operator(self._db, request.organization_id, request.operator_pin)

        ledger = CashbackLedgerService(self._db, program)
        engine = await CampaignEngine.for_organization(
            self._db, request.organization_id, queue=self._queue, ledger=ledger, now=self.now
        )

        self._enter(TransactionStage.RESOLVE_CLIENT, stages)
        client, client_is_new = await self._resolve_client(request)
        balance = await ledger.ensure_balance(client.id)

        redemption_amount = to_money(request.cashback_amount) if request.requires_redemption else ZERO
        visual_accrued = compute_accrual(sale_value, AccrualPolicy.from_program(program))
        visual_available = to_money(balance.available) - redemption_amount + visual_accrued

        entries = []
        if request.requires_redemption:
            self._enter(TransactionStage.REDEMPTION, stages)
            entries.append(
                await ledger.redeem(
                    client.id,
                    redemption_amount,
                    sale_value=sale_value,
                    operator_id=operator.id,
                )
            )

        accrued = ZERO
        if program.accrue_via_point_of_interaction:
            self._enter(TransactionStage.ACCRUAL, stages)
            accrual = await ledger.accrue(client.id, sale_value=sale_value, operator_id=operator.id)
            accrued = accrual.amount
            if accrual.entry is not None:
                entries.append(accrual.entry)
            await engine.fire_on_accrual(
                client, accrued=accrued, available=to_money(balance.available), sale_value=sale_value
            )

        sale: Sale | None = None
        if not organization.integration_type:
            self._enter(TransactionStage.SALE_PERSISTENCE, stages)
            sale = Sale(
                organization_id=request.organization_id,
                client_id=client.id,
                operator_id=operator.id,
                external_id=f"POI-{uuid4().hex}",
                total_value=sale_value - redemption_amount,
                status=SaleStatus.VALID,
                sold_at=self.now,
                metadata_json={
                    "source": POINT_OF_INTERACTION_CHANNEL,
                    "gross_value": str(sale_value),
                    "cashback_applied": str(redemption_amount),
                    "operator_name": operator.name,
                },
            )
            self._db.add(sale)
            await self._db.flush()
            for entry in entries + engine.ledger_entries:
                entry.sale_id = sale.id
            for interaction in engine.interactions:
                if interaction.sale_id is None:
                    interaction.sale_id = sale.id

            self._enter(TransactionStage.CLIENT_METADATA_UPDATE, stages)
            is_first_sale = record_purchase(client, sale_id=sale.id, sold_at=sale.sold_at, value=sale_value)

            self._enter(TransactionStage.CAMPAIGN_EVALUATION, stages)
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
            await self._db.flush()

        return TransactionResult(
            client_id=client.id,
            sale_id=sale.id if sale else None,
            accrued=accrued,
            available=to_money(balance.available),
            visual_accrued=visual_accrued,
            visual_available=visual_available,
            stages=stages,
            interaction_ids=[interaction.id for interaction in engine.interactions],
            ledger_entry_ids=[entry.id for entry in entries + engine.ledger_entries],
        )

    async def _resolve_client(self, request: TransactionRequest) -> tuple[Client, bool]:
        directory = ClientDirectory(self._db, request.organization_id)
        if request.client_id is None:
            if request.new_client is None:
                raise BadRequestError("Either an existing client or new client data is required")
            client = await directory.register(
                name=request.new_client.name,
                phone=request.new_client.phone,
                document=request.new_client.document,
                acquisition_channel=POINT_OF_INTERACTION_CHANNEL,
            )
            return client, True

        client = await directory.get(request.client_id, for_update=True)
        if client is None:
            raise NotFoundError("Client not found")
        return client, False

    async def register_redemption(
        self,
        *,
        organization_id: UUID,
        operator_pin: str,
        client_id: UUID,
        sale_value: Decimal,
        amount: Decimal,
    ) -> RedemptionResult:
        """Redeem cashback without registering a sale."""

        try:
            program = await load_program(self._db, organization_id)
            operator = await resolve_operator(self._db, organization_id, operator_pin)
            client = await ClientDirectory(self._db, organization_id).get(client_id)
            if client is None:
                raise NotFoundError("Client not found")
            ledger = CashbackLedgerService(self._db, program)
            entry = await ledger.redeem(
                client.id,
                amount,
                sale_value=sale_value,
                operator_id=operator.id,
                metadata={"source": POINT_OF_INTERACTION_CHANNEL, "standalone": True},
            )
            available = to_money((await ledger.ensure_balance(client.id)).available)
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise

        return RedemptionResult(client_id=client.id, transaction_id=entry.id, amount=to_money(entry.amount), available=available)

    async def register_client(
        self,
        *,
        organization_id: UUID,
        name: str,
        phone: str,
        document: str | None = None,
    ) -> Client:
        """Sign a client up at the counter and open its cashback balance."""

        try:
            await self._load_organization(organization_id)
            client = await ClientDirectory(self._db, organization_id).register(
                name=name,
                phone=phone,
                document=document,
                acquisition_channel=POINT_OF_INTERACTION_CHANNEL,
            )
            try:
                program = await load_program(self._db, organization_id)
            except NotFoundError:
                program = None
            if program is not None:
                await CashbackLedgerService(self._db, program).ensure_balance(client.id)
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise
        return client
