from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from recompra_api.models.cashback import (
    CashbackProgramTransaction,
    CashbackTransactionStatus,
    CashbackTransactionType,
)
from recompra_api.models.sale import Sale
from recompra_api.observability.cashback import get_cashback_store
from recompra_api.services.cashback import (
    BalanceCache,
    CashbackLedgerService,
    InsufficientBalanceError,
    load_program,
    reverse_sale_cashback,
)
from recompra_api.services.cashback.ledger import BalanceSnapshot


async def _sale(session, organization_id, client_id, external_id: str, value: str) -> Sale:
    sale = Sale(
        organization_id=organization_id,
        client_id=client_id,
        external_id=external_id,
        total_value=Decimal(value),
        sold_at=datetime.now(timezone.utc),
    )
    session.add(sale)
    await session.flush()
    return sale


@pytest.mark.asyncio
async def test_balance_cache_reuses_rows_within_unit_of_work(session_factory, seed_organization, create_client) -> None:
    seeded = await seed_organization()
    client_id = await create_client(seeded.organization_id)

    async with session_factory() as session:
        cache = BalanceCache(session, organization_id=seeded.organization_id, program_id=seeded.program_id)
        first = await cache.ensure_entry(client_id)
        second = await cache.ensure_entry(client_id)

        assert first is second
        assert client_id in cache
        assert cache.creations == 1
        assert cache.loads == 0
        await session.commit()

    async with session_factory() as session:
        cache = BalanceCache(session, organization_id=seeded.organization_id, program_id=seeded.program_id)
        await cache.ensure_entry(client_id)
        assert cache.loads == 1
        assert cache.creations == 0


@pytest.mark.asyncio
async def test_accrual_and_redemption_append_linked_entries(session_factory, seed_organization, create_client) -> None:
    seeded = await seed_organization(accrual_value="10")
    client_id = await create_client(seeded.organization_id)

    async with session_factory() as session:
        ledger = CashbackLedgerService(session, await load_program(session, seeded.organization_id))
        accrual = await ledger.accrue(client_id, sale_value=Decimal("100"))
        redemption = await ledger.redeem(client_id, Decimal("4"), sale_value=Decimal("50"))
        await session.commit()

        assert accrual.amount == Decimal("10.00")
        assert accrual.entry.sequence == 1
        assert redemption.sequence == 2
        assert redemption.balance_before == accrual.entry.balance_after
        assert Decimal(redemption.balance_after) == Decimal("6.00")

        balance = await ledger.ensure_balance(client_id)
        assert BalanceSnapshot.of(balance).is_consistent
        verification = await ledger.verify_ledger(client_id)
        assert verification.entries == 2
        assert verification.is_consistent

    snapshot = get_cashback_store().snapshot()
    assert snapshot.ledger["ACCRUAL"] == 1
    assert snapshot.ledger["REDEMPTION"] == 1


@pytest.mark.asyncio
async def test_zero_accrual_writes_no_entry(session_factory, seed_organization, create_client) -> None:
    seeded = await seed_organization(minimum_sale_value=Decimal("100"))
    client_id = await create_client(seeded.organization_id)

    async with session_factory() as session:
        ledger = CashbackLedgerService(session, await load_program(session, seeded.organization_id))
        result = await ledger.accrue(client_id, sale_value=Decimal("99"))
        assert result.amount == Decimal("0")
        assert result.entry is None

        with pytest.raises(InsufficientBalanceError):
            await ledger.redeem(client_id, Decimal("1"), sale_value=Decimal("99"))


@pytest.mark.asyncio
async def test_redemption_consumes_soonest_expiring_grant_first(
    session_factory, seed_organization, create_client
) -> None:
    seeded = await seed_organization(accrual_value="10")
    client_id = await create_client(seeded.organization_id)
    now = datetime.now(timezone.utc)

    async with session_factory() as session:
        ledger = CashbackLedgerService(session, await load_program(session, seeded.organization_id))
        late = await ledger.accrue(client_id, sale_value=Decimal("100"), expires_at=now + timedelta(days=60))
        early = await ledger.accrue(client_id, sale_value=Decimal("50"), expires_at=now + timedelta(days=5))
        await ledger.redeem(client_id, Decimal("7"), sale_value=Decimal("70"))
        await session.commit()

        assert early.entry.status == CashbackTransactionStatus.CONSUMED
        assert Decimal(early.entry.remaining) == Decimal("0")
        assert Decimal(late.entry.remaining) == Decimal("8.00")
        assert late.entry.status == CashbackTransactionStatus.ACTIVE


@pytest.mark.asyncio
async def test_expire_due_moves_remaining_to_expired_total(session_factory, seed_organization, create_client) -> None:
    seeded = await seed_organization(accrual_value="10")
    client_id = await create_client(seeded.organization_id)
    now = datetime.now(timezone.utc)

    async with session_factory() as session:
        ledger = CashbackLedgerService(session, await load_program(session, seeded.organization_id))
        stale = await ledger.accrue(client_id, sale_value=Decimal("100"), expires_at=now - timedelta(days=1))
        await ledger.accrue(client_id, sale_value=Decimal("30"), expires_at=now + timedelta(days=30))
        await ledger.redeem(client_id, Decimal("4"), sale_value=Decimal("40"))

        expired = await ledger.expire_due(reference_time=now)
        await session.commit()

        assert len(expired) == 1
        assert expired[0].entry_type == CashbackTransactionType.EXPIRATION
        assert Decimal(expired[0].amount) == Decimal("6.00")
        assert stale.entry.status == CashbackTransactionStatus.EXPIRED

        balance = await ledger.ensure_balance(client_id)
        assert Decimal(balance.available) == Decimal("3.00")
        assert Decimal(balance.expired_total) == Decimal("6.00")
        assert BalanceSnapshot.of(balance).is_consistent

        assert await ledger.expire_due(reference_time=now) == []


@pytest.mark.asyncio
async def test_reversal_clamps_at_available_and_is_idempotent(
    session_factory, seed_organization, create_client
) -> None:
    seeded = await seed_organization(accrual_value="10")
    client_id = await create_client(seeded.organization_id)

    async with session_factory() as session:
        ledger = CashbackLedgerService(session, await load_program(session, seeded.organization_id))
        sale_a = await _sale(session, seeded.organization_id, client_id, "A-1", "100")
        sale_b = await _sale(session, seeded.organization_id, client_id, "B-1", "70")
        await ledger.accrue(client_id, sale_value=Decimal("100"), sale_id=sale_a.id)
        await ledger.redeem(client_id, Decimal("7"), sale_value=Decimal("70"), sale_id=sale_b.id)

        summary = await reverse_sale_cashback(ledger, sale_a)
        await session.commit()

        assert summary.reversed_entries == 1
        assert summary.debited == Decimal("3.00")
        assert summary.discrepancy == Decimal("7.00")

        balance = await ledger.ensure_balance(client_id)
        assert Decimal(balance.available) == Decimal("0.00")
        assert BalanceSnapshot.of(balance).is_consistent

        cancellation = (
            await session.execute(
                select(CashbackProgramTransaction).where(
                    CashbackProgramTransaction.entry_type == CashbackTransactionType.CANCELLATION
                )
            )
        ).scalar_one()
        assert cancellation.metadata_json["discrepancy"] == "7.00"

        again = await reverse_sale_cashback(ledger, sale_a)
        assert again.reversed_entries == 0
        assert (await ledger.verify_ledger(client_id)).is_consistent

    snapshot = get_cashback_store().snapshot()
    assert snapshot.reversals["discrepancies"] == 1


@pytest.mark.asyncio
async def test_reversing_a_redemption_credits_a_new_grant(session_factory, seed_organization, create_client) -> None:
    seeded = await seed_organization(accrual_value="10")
    client_id = await create_client(seeded.organization_id)

    async with session_factory() as session:
        ledger = CashbackLedgerService(session, await load_program(session, seeded.organization_id))
        await ledger.accrue(client_id, sale_value=Decimal("100"))
        sale = await _sale(session, seeded.organization_id, client_id, "R-1", "40")
        await ledger.redeem(client_id, Decimal("4"), sale_value=Decimal("40"), sale_id=sale.id)

        summary = await reverse_sale_cashback(ledger, sale)
        await session.commit()

        assert summary.recredited == Decimal("4.00")
        balance = await ledger.ensure_balance(client_id)
        assert Decimal(balance.available) == Decimal("10.00")
        assert Decimal(balance.redeemed_total) == Decimal("0.00")

        # The credited amount is redeemable again.
        await ledger.redeem(client_id, Decimal("10"), sale_value=Decimal("40"))
        assert Decimal(balance.available) == Decimal("0.00")


@pytest.mark.asyncio
async def test_grant_drawn_down_by_another_cancellation_is_still_reversed(
    session_factory, seed_organization, create_client
) -> None:
    seeded = await seed_organization(accrual_value="10")
    client_id = await create_client(seeded.organization_id)

    async with session_factory() as session:
        ledger = CashbackLedgerService(session, await load_program(session, seeded.organization_id))
        sale_a = await _sale(session, seeded.organization_id, client_id, "A-2", "100")
        sale_b = await _sale(session, seeded.organization_id, client_id, "B-2", "50")
        await ledger.accrue(client_id, sale_value=Decimal("100"), sale_id=sale_a.id)
        grant_b = (await ledger.accrue(client_id, sale_value=Decimal("50"), sale_id=sale_b.id)).entry
        await ledger.redeem(client_id, Decimal("8"), sale_value=Decimal("80"))

        first = await reverse_sale_cashback(ledger, sale_a)
        assert first.debited == Decimal("7.00")
        assert grant_b.status == CashbackTransactionStatus.CONSUMED
        assert grant_b.status_reason == "CANCELLATION_OFFSET"

        second = await reverse_sale_cashback(ledger, sale_b)
        await session.commit()

        assert second.reversed_entries == 1
        assert second.debited == Decimal("0.00")
        assert second.discrepancy == Decimal("5.00")
        assert grant_b.status_reason == "CANCELLATION"

        cancellation = (
            await session.execute(
                select(CashbackProgramTransaction).where(
                    CashbackProgramTransaction.entry_type == CashbackTransactionType.CANCELLATION,
                    CashbackProgramTransaction.sale_id == sale_b.id,
                )
            )
        ).scalar_one()
        assert cancellation.metadata_json["discrepancy"] == "5.00"
        assert cancellation.metadata_json["source_transaction_id"] == str(grant_b.id)

        balance = await ledger.ensure_balance(client_id)
        assert Decimal(balance.available) == Decimal("0.00")
        assert BalanceSnapshot.of(balance).is_consistent
        assert (await reverse_sale_cashback(ledger, sale_b)).reversed_entries == 0


# Steps are (action, sale key, amount). Accruals earn 10% of the amount.
LEDGER_SEQUENCES = {
    "redeem_across_grants_then_cancel_both": (
        [
            ("accrue", "A", "100"),
            ("accrue", "B", "50"),
            ("redeem", "R", "8"),
            ("cancel", "A", None),
            ("cancel", "B", None),
        ],
        "0.00",
    ),
    "cancel_redemption_between_accruals": (
        [
            ("accrue", "A", "100"),
            ("redeem", "R", "4"),
            ("accrue", "B", "200"),
            ("cancel", "R", None),
            ("cancel", "A", None),
            ("redeem", "S", "10"),
            ("cancel", "B", None),
        ],
        "0.00",
    ),
    "recredited_grant_covers_later_cancellation": (
        [
            ("accrue", "A", "100"),
            ("accrue", "B", "100"),
            ("redeem", "R", "15"),
            ("cancel", "B", None),
            ("cancel", "R", None),
            ("cancel", "A", None),
        ],
        "5.00",
    ),
}


@pytest.mark.asyncio
@pytest.mark.parametrize("steps,final_available", LEDGER_SEQUENCES.values(), ids=list(LEDGER_SEQUENCES))
async def test_balance_stays_consistent_across_mixed_sequences(
    session_factory, seed_organization, create_client, steps, final_available
) -> None:
    seeded = await seed_organization(accrual_value="10")
    client_id = await create_client(seeded.organization_id)

    async with session_factory() as session:
        ledger = CashbackLedgerService(session, await load_program(session, seeded.organization_id))
        sales: dict[str, Sale] = {}

        for action, key, amount in steps:
            if action == "cancel":
                await reverse_sale_cashback(ledger, sales[key])
            else:
                sales[key] = await _sale(session, seeded.organization_id, client_id, f"SEQ-{key}", "100")
                if action == "accrue":
                    await ledger.accrue(client_id, sale_value=Decimal(amount), sale_id=sales[key].id)
                else:
                    await ledger.redeem(client_id, Decimal(amount), sale_value=Decimal("100"), sale_id=sales[key].id)

            snapshot = BalanceSnapshot.of(await ledger.ensure_balance(client_id))
            assert snapshot.is_consistent, (action, key, snapshot)
            assert (await ledger.verify_ledger(client_id)).is_consistent, (action, key)

        await session.commit()
        assert snapshot.available == Decimal(final_available)

        cancelled = {key for action, key, _ in steps if action == "cancel"}
        for key in cancelled:
            assert (await reverse_sale_cashback(ledger, sales[key])).reversed_entries == 0
