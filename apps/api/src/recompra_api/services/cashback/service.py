"""Persistence side of the cashback ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from recompra_api.core.settings import settings
from recompra_api.models.cashback import (
    CashbackProgram,
    CashbackProgramBalance,
    CashbackProgramTransaction,
    CashbackTransactionStatus,
    CashbackTransactionType,
)
from recompra_api.observability.cashback import CashbackObservabilityStore, get_cashback_store
from recompra_api.services.cashback.balance_cache import BalanceCache
from recompra_api.services.cashback.errors import NotFoundError, PersistenceError
from recompra_api.services.cashback.ledger import (
    ZERO,
    AccrualPolicy,
    BalanceSnapshot,
    LedgerMovement,
    apply_accrual,
    apply_expiration,
    apply_redemption,
    compute_accrual,
    redemption_limit_for,
    replay_available,
    to_money,
)

# Entry types that grant redeemable cashback tracked through ``remaining``.
GRANT_TYPES = (CashbackTransactionType.ACCRUAL, CashbackTransactionType.CANCELLATION)


@dataclass(slots=True)
class AccrualResult:
    amount: Decimal
    entry: CashbackProgramTransaction | None
    balance: CashbackProgramBalance


@dataclass(slots=True)
class LedgerVerification:
    client_id: UUID
    entries: int
    replayed_available: Decimal
    available: Decimal

    @property
    def is_consistent(self) -> bool:
        return self.replayed_available == self.available


async def load_program(session: AsyncSession, organization_id: UUID, *, active_only: bool = True) -> CashbackProgram:
    """Program of ``organization_id``; a deactivated program counts as missing unless ``active_only`` is off."""

    stmt = select(CashbackProgram).where(CashbackProgram.organization_id == organization_id)
    program = (await session.execute(stmt)).scalar_one_or_none()
    if program is None:
        raise NotFoundError("Cashback program not found")
    if active_only and not program.is_active:
        raise NotFoundError("Cashback program is inactive")
    return program


class CashbackLedgerService:
    """Apply ledger movements to balances and append the matching entries.

    Every write happens on the caller's session; committing (or rolling
    back) is the caller's decision so a whole sale flow stays atomic.
    """

    def __init__(
        self,
        session: AsyncSession,
        program: CashbackProgram,
        *,
        cache: BalanceCache | None = None,
        metrics: CashbackObservabilityStore | None = None,
    ) -> None:
        self._db = session
        self.program = program
        self.cache = cache or BalanceCache(
            session, organization_id=program.organization_id, program_id=program.id
        )
        self._metrics = metrics or get_cashback_store()

    @property
    def session(self) -> AsyncSession:
        return self._db

    @property
    def metrics(self) -> CashbackObservabilityStore:
        return self._metrics

    async def ensure_balance(self, client_id: UUID) -> CashbackProgramBalance:
        return await self.cache.ensure_entry(client_id)

    async def record_movement(
        self,
        client_id: UUID,
        movement: LedgerMovement,
        *,
        remaining: Decimal = ZERO,
        status: CashbackTransactionStatus = CashbackTransactionStatus.ACTIVE,
        status_reason: str | None = None,
        sale_id: UUID | None = None,
        sale_value: Decimal | None = None,
        campaign_id: UUID | None = None,
        operator_id: UUID | None = None,
        expires_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CashbackProgramTransaction:
        """Write ``movement`` onto the client's balance and append its ledger entry."""

        balance = await self.ensure_balance(client_id)
        if BalanceSnapshot.of(balance) != movement.before:
            raise PersistenceError("Balance changed while a ledger movement was being applied")

        after = movement.after
        balance.available = after.available
        balance.accumulated_total = after.accumulated_total
        balance.redeemed_total = after.redeemed_total
        balance.expired_total = after.expired_total
        balance.entry_count = (balance.entry_count or 0) + 1

        entry = CashbackProgramTransaction(
            organization_id=self.program.organization_id,
            program_id=self.program.id,
            balance_id=balance.id,
            client_id=client_id,
            sale_id=sale_id,
            sale_value=to_money(sale_value) if sale_value is not None else None,
            campaign_id=campaign_id,
            operator_id=operator_id,
            entry_type=movement.entry_type,
            status=status,
            status_reason=status_reason,
            amount=movement.amount,
            remaining=remaining,
            balance_before=movement.balance_before,
            balance_after=movement.balance_after,
            sequence=balance.entry_count,
            expires_at=expires_at,
            metadata_json=metadata or {},
        )
        self._db.add(entry)
        await self._db.flush()
        if entry.id is None:
            raise PersistenceError("Ledger entry was not persisted")

        self._metrics.record_ledger_entry(movement.entry_type.value)
        logger.info(
            "Recorded cashback ledger entry",
            client_id=str(client_id),
            entry_type=movement.entry_type.value,
            amount=str(movement.amount),
            balance_before=str(movement.balance_before),
            balance_after=str(movement.balance_after),
            sale_id=str(sale_id) if sale_id else None,
        )
        return entry

    def default_expiration(self, now: datetime | None = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        return now + timedelta(days=self.program.expiration_days or settings.cashback_default_expiration_days)

    async def accrue(
        self,
        client_id: UUID,
        *,
        sale_value: Any,
        policy: AccrualPolicy | None = None,
        amount: Any = None,
        sale_id: UUID | None = None,
        campaign_id: UUID | None = None,
        operator_id: UUID | None = None,
        expires_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AccrualResult:
        """Credit cashback earned by a sale; no entry is written when it computes to zero."""

        if amount is None:
            amount = compute_accrual(sale_value, policy or AccrualPolicy.from_program(self.program))
        amount = to_money(amount)
        balance = await self.ensure_balance(client_id)
        if amount <= ZERO:
            return AccrualResult(ZERO, None, balance)

        movement = apply_accrual(BalanceSnapshot.of(balance), amount)
        entry = await self.record_movement(
            client_id,
            movement,
            remaining=movement.amount,
            sale_id=sale_id,
            sale_value=sale_value,
            campaign_id=campaign_id,
            operator_id=operator_id,
            expires_at=expires_at or self.default_expiration(),
            metadata=metadata,
        )
        return AccrualResult(movement.amount, entry, balance)

    async def redeem(
        self,
        client_id: UUID,
        amount: Any,
        *,
        sale_value: Any,
        sale_id: UUID | None = None,
        operator_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CashbackProgramTransaction:
        """Debit cashback against a sale, consuming the oldest grants first."""

        balance = await self.ensure_balance(client_id)
        movement = apply_redemption(
            BalanceSnapshot.of(balance),
            amount,
            sale_value=sale_value,
            limit=redemption_limit_for(self.program),
        )
        await self.consume_grants(client_id, movement.amount, reason=CashbackTransactionType.REDEMPTION.value)
        return await self.record_movement(
            client_id,
            movement,
            sale_id=sale_id,
            sale_value=sale_value,
            operator_id=operator_id,
            metadata=metadata,
        )

    async def consume_grants(self, client_id: UUID, amount: Decimal, *, reason: str) -> Decimal:
        """Draw ``amount`` from the ``remaining`` of active grants, soonest expiry first.

        Returns whatever could not be matched to a grant.
        """

        outstanding = to_money(amount)
        if outstanding <= ZERO:
            return ZERO

        stmt = (
            select(CashbackProgramTransaction)
            .where(
                CashbackProgramTransaction.client_id == client_id,
                CashbackProgramTransaction.program_id == self.program.id,
                CashbackProgramTransaction.entry_type.in_(GRANT_TYPES),
                CashbackProgramTransaction.status == CashbackTransactionStatus.ACTIVE,
                CashbackProgramTransaction.remaining > 0,
            )
            .order_by(
                CashbackProgramTransaction.expires_at.asc().nulls_last(),
                CashbackProgramTransaction.sequence.asc(),
            )
        )
        for grant in (await self._db.execute(stmt)).scalars().all():
            available = to_money(grant.remaining)
            consume = min(available, outstanding)
            grant.remaining = available - consume
            if grant.remaining <= ZERO:
                grant.status = CashbackTransactionStatus.CONSUMED
                grant.status_reason = reason
            outstanding -= consume
            if outstanding <= ZERO:
                break

        if outstanding > ZERO:
            logger.warning(
                "Cashback debit exceeded tracked grants",
                client_id=str(client_id),
                unmatched=str(outstanding),
            )
        return outstanding

    async def expire_due(self, *, reference_time: datetime | None = None) -> list[CashbackProgramTransaction]:
        """Expire what is left of every grant whose expiration date has passed."""

        horizon = reference_time or datetime.now(timezone.utc)
        stmt = (
            select(CashbackProgramTransaction)
            .where(
                CashbackProgramTransaction.program_id == self.program.id,
                CashbackProgramTransaction.entry_type.in_(GRANT_TYPES),
                CashbackProgramTransaction.status == CashbackTransactionStatus.ACTIVE,
                CashbackProgramTransaction.remaining > 0,
                CashbackProgramTransaction.expires_at <= horizon,
            )
            .order_by(CashbackProgramTransaction.expires_at.asc(), CashbackProgramTransaction.sequence.asc())
        )
        expirations: list[CashbackProgramTransaction] = []
        for grant in (await self._db.execute(stmt)).scalars().all():
            balance = await self.ensure_balance(grant.client_id)
            snapshot = BalanceSnapshot.of(balance)
            remaining = to_money(grant.remaining)
            grant.remaining = ZERO
            grant.status = CashbackTransactionStatus.EXPIRED
            grant.status_reason = CashbackTransactionType.EXPIRATION.value
            if snapshot.available <= ZERO:
                logger.warning(
                    "Expired grant had no available balance left",
                    transaction_id=str(grant.id),
                    remaining=str(remaining),
                )
                continue
            movement = apply_expiration(snapshot, remaining)
            entry = await self.record_movement(
                grant.client_id,
                movement,
                status_reason=CashbackTransactionType.EXPIRATION.value,
                metadata={"source_transaction_id": str(grant.id)},
            )
            if movement.amount < remaining:
                logger.warning(
                    "Expiration left unadjusted balance",
                    transaction_id=str(grant.id),
                    remaining=str(remaining - movement.amount),
                )
            expirations.append(entry)

        if expirations:
            logger.info(
                "Expired cashback grants",
                program_id=str(self.program.id),
                count=len(expirations),
            )
        return expirations

    async def list_transactions(
        self, client_id: UUID, *, limit: int = 50, offset: int = 0
    ) -> Sequence[CashbackProgramTransaction]:
        stmt = (
            select(CashbackProgramTransaction)
            .where(
                CashbackProgramTransaction.client_id == client_id,
                CashbackProgramTransaction.program_id == self.program.id,
            )
            .order_by(CashbackProgramTransaction.sequence.desc())
            .limit(limit)
            .offset(offset)
        )
        return (await self._db.execute(stmt)).scalars().all()

    async def verify_ledger(self, client_id: UUID) -> LedgerVerification:
        """Replay the client's entries in insertion order against the stored balance."""

        balance = await self.ensure_balance(client_id)
        stmt = (
            select(CashbackProgramTransaction.balance_before, CashbackProgramTransaction.balance_after)
            .where(CashbackProgramTransaction.balance_id == balance.id)
            .order_by(CashbackProgramTransaction.sequence.asc())
        )
        rows = [(before, after) for before, after in (await self._db.execute(stmt)).all()]
        return LedgerVerification(
            client_id=client_id,
            entries=len(rows),
            replayed_available=replay_available(rows),
            available=to_money(balance.available),
        )
