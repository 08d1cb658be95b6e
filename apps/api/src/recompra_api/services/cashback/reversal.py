"""Compensating ledger entries for sales cancelled after the fact."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, or_, select, update

from recompra_api.models.campaign import Interaction, InteractionStatus
from recompra_api.models.cashback import (
    CashbackProgramTransaction,
    CashbackTransactionStatus,
    CashbackTransactionType,
)
from recompra_api.models.sale import Sale
from recompra_api.services.cashback.ledger import (
    ZERO,
    BalanceSnapshot,
    apply_accrual_reversal,
    apply_redemption_reversal,
    to_money,
)
from recompra_api.services.cashback.service import CashbackLedgerService

CANCELLATION_REASON = CashbackTransactionType.CANCELLATION.value
# Grants drawn down to cover another sale's cancellation; their own accrual is still reversible.
CANCELLATION_OFFSET_REASON = "CANCELLATION_OFFSET"


@dataclass(slots=True)
class ReversalSummary:
    sale_id: UUID
    reversed_entries: int = 0
    debited: Decimal = ZERO
    recredited: Decimal = ZERO
    discrepancy: Decimal = ZERO
    cancelled_interactions: int = 0


async def reverse_sale_cashback(
    ledger: CashbackLedgerService,
    sale: Sale,
    *,
    reason: str = "SALE_CANCELLED",
) -> ReversalSummary:
    """Undo every accrual and redemption tied to ``sale``.

    Accruals are taken back from available and accumulated totals, clamped
    at the available balance; the part that could not be taken back is
    recorded as a discrepancy on the cancellation entry instead of raising.
    Redemptions are credited back as a new redeemable grant. Pending
    interactions fired by the sale are cancelled. Entries already reversed
    or expired are left alone, so running this twice is a no-op.
    """

    session = ledger.session
    summary = ReversalSummary(sale_id=sale.id)
    stmt = (
        select(CashbackProgramTransaction)
        .where(
            CashbackProgramTransaction.sale_id == sale.id,
            CashbackProgramTransaction.entry_type.in_(
                (CashbackTransactionType.ACCRUAL, CashbackTransactionType.REDEMPTION)
            ),
            CashbackProgramTransaction.status.in_(
                (CashbackTransactionStatus.ACTIVE, CashbackTransactionStatus.CONSUMED)
            ),
            or_(
                CashbackProgramTransaction.status_reason.is_(None),
                CashbackProgramTransaction.status_reason != CANCELLATION_REASON,
            ),
        )
        .order_by(CashbackProgramTransaction.sequence.asc())
    )
    entries = (await session.execute(stmt)).scalars().all()
    campaign_ids = {entry.campaign_id for entry in entries if entry.campaign_id}

    for entry in entries:
        amount = to_money(entry.amount)
        snapshot = BalanceSnapshot.of(await ledger.ensure_balance(entry.client_id))
        metadata = {"source_transaction_id": str(entry.id), "reason": reason}

        if entry.entry_type == CashbackTransactionType.ACCRUAL:
            movement = apply_accrual_reversal(snapshot, amount)
            unspent = to_money(entry.remaining)
            entry.remaining = ZERO
            entry.status = CashbackTransactionStatus.CONSUMED
            entry.status_reason = CANCELLATION_REASON
            # What this grant no longer covers comes out of the client's other grants.
            if movement.amount > unspent:
                await ledger.consume_grants(
                    entry.client_id, movement.amount - unspent, reason=CANCELLATION_OFFSET_REASON
                )
            if movement.shortfall > ZERO:
                metadata["discrepancy"] = str(movement.shortfall)
                logger.warning(
                    "Cashback reversal clamped at available balance",
                    sale_id=str(sale.id),
                    transaction_id=str(entry.id),
                    requested=str(amount),
                    applied=str(movement.amount),
                    discrepancy=str(movement.shortfall),
                )
            await ledger.record_movement(
                entry.client_id,
                movement,
                status_reason=CANCELLATION_REASON,
                sale_id=sale.id,
                sale_value=entry.sale_value,
                campaign_id=entry.campaign_id,
                metadata=metadata,
            )
            summary.debited += movement.amount
            summary.discrepancy += movement.shortfall
        else:
            movement = apply_redemption_reversal(snapshot, amount)
            entry.status = CashbackTransactionStatus.CONSUMED
            entry.status_reason = CANCELLATION_REASON
            await ledger.record_movement(
                entry.client_id,
                movement,
                remaining=movement.amount,
                status_reason=CANCELLATION_REASON,
                sale_id=sale.id,
                sale_value=entry.sale_value,
                expires_at=ledger.default_expiration(),
                metadata=metadata,
            )
            summary.recredited += movement.amount
        summary.reversed_entries += 1

    pending_filter = [Interaction.sale_id == sale.id]
    if campaign_ids and sale.client_id is not None:
        pending_filter.append(
            and_(Interaction.client_id == sale.client_id, Interaction.campaign_id.in_(campaign_ids))
        )
    result = await session.execute(
        update(Interaction)
        .where(
            Interaction.organization_id == sale.organization_id,
            Interaction.status == InteractionStatus.PENDING,
            or_(*pending_filter),
        )
        .values(
            status=InteractionStatus.CANCELLED,
            error_message=f"Sale cancelled at {datetime.now(timezone.utc).isoformat()}",
        )
        .execution_options(synchronize_session="fetch")
    )
    summary.cancelled_interactions = result.rowcount or 0

    ledger.metrics.record_reversal(discrepancy=summary.discrepancy > ZERO)
    logger.info(
        "Reversed sale cashback",
        sale_id=str(sale.id),
        reason=reason,
        reversed_entries=summary.reversed_entries,
        debited=str(summary.debited),
        recredited=str(summary.recredited),
        discrepancy=str(summary.discrepancy),
        cancelled_interactions=summary.cancelled_interactions,
    )
    return summary
