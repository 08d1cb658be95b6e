"""Pure cashback arithmetic: accrual rules, redemption caps and balance moves.

Nothing here touches the database. Program and campaign configuration is
turned into explicit rule objects at the boundary (``AccrualPolicy.from_program``,
``redemption_limit_for``) and every balance change is expressed as a
``LedgerMovement`` carrying the snapshot before and after it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Union

from recompra_api.models.cashback import CashbackRuleType, CashbackTransactionType
from recompra_api.services.cashback.errors import InsufficientBalanceError, RedemptionLimitExceededError

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_money(value: Any) -> Decimal:
    """Coerce ``value`` into a Decimal rounded to cents."""

    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class FixedRule:
    value: Decimal


@dataclass(frozen=True, slots=True)
class PercentageRule:
    value: Decimal

    def of(self, base: Decimal) -> Decimal:
        return to_money(base * self.value / HUNDRED)


@dataclass(frozen=True, slots=True)
class UnlimitedRedemption:
    """No configured cap: the sale value itself bounds the redemption."""


AccrualRule = Union[FixedRule, PercentageRule]
RedemptionLimit = Union[FixedRule, PercentageRule, UnlimitedRedemption]


def rule_from(rule_type: CashbackRuleType | str | None, value: Any) -> AccrualRule | None:
    """Build a tagged rule from a stored ``(type, value)`` pair; unknown types yield ``None``."""

    if rule_type is None or value is None:
        return None
    try:
        kind = CashbackRuleType(getattr(rule_type, "value", rule_type))
    except ValueError:
        return None
    if kind is CashbackRuleType.FIXED:
        return FixedRule(to_money(value))
    return PercentageRule(Decimal(str(value)))


@dataclass(frozen=True, slots=True)
class AccrualPolicy:
    rule: AccrualRule | None
    minimum_sale_value: Decimal = ZERO

    @classmethod
    def from_program(cls, program: Any, *, partner: bool = False) -> "AccrualPolicy":
        value = program.partner_accrual_value if partner else program.accrual_value
        return cls(
            rule=rule_from(program.accrual_type, value),
            minimum_sale_value=to_money(program.minimum_sale_value),
        )


def redemption_limit_for(program: Any) -> RedemptionLimit:
    rule = rule_from(program.redemption_limit_type, program.redemption_limit_value)
    return rule if rule is not None else UnlimitedRedemption()


def compute_accrual(sale_value: Any, policy: AccrualPolicy) -> Decimal:
    """Cashback earned by a sale; zero below the minimum sale value or without a rule."""

    sale_value = to_money(sale_value)
    if sale_value < policy.minimum_sale_value:
        return ZERO
    rule = policy.rule
    if isinstance(rule, FixedRule):
        return rule.value
    if isinstance(rule, PercentageRule):
        return rule.of(sale_value)
    return ZERO


def compute_redemption_limit(sale_value: Any, limit: RedemptionLimit) -> Decimal:
    sale_value = to_money(sale_value)
    if isinstance(limit, FixedRule):
        return limit.value
    if isinstance(limit, PercentageRule):
        return limit.of(sale_value)
    return sale_value


def compute_max_redeemable(available: Any, sale_value: Any, limit: RedemptionLimit) -> Decimal:
    """Largest amount redeemable on a sale: ``min(available, sale, limit)``, never negative."""

    cap = min(to_money(available), to_money(sale_value), compute_redemption_limit(sale_value, limit))
    return max(cap, ZERO)


@dataclass(frozen=True, slots=True)
class BalanceSnapshot:
    available: Decimal = ZERO
    accumulated_total: Decimal = ZERO
    redeemed_total: Decimal = ZERO
    expired_total: Decimal = ZERO

    @classmethod
    def of(cls, balance: Any) -> "BalanceSnapshot":
        return cls(
            available=to_money(balance.available),
            accumulated_total=to_money(balance.accumulated_total),
            redeemed_total=to_money(balance.redeemed_total),
            expired_total=to_money(balance.expired_total),
        )

    @property
    def is_consistent(self) -> bool:
        expected = self.accumulated_total - self.redeemed_total - self.expired_total
        return self.available >= ZERO and self.available == expected


@dataclass(frozen=True, slots=True)
class LedgerMovement:
    """A single balance change ready to be persisted as a ledger entry."""

    entry_type: CashbackTransactionType
    amount: Decimal
    before: BalanceSnapshot
    after: BalanceSnapshot
    shortfall: Decimal = ZERO

    @property
    def balance_before(self) -> Decimal:
        return self.before.available

    @property
    def balance_after(self) -> Decimal:
        return self.after.available


def _positive(amount: Any) -> Decimal:
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValueError("Ledger movements require a positive amount")
    return amount


def apply_accrual(snapshot: BalanceSnapshot, amount: Any) -> LedgerMovement:
    amount = _positive(amount)
    after = replace(
        snapshot,
        available=snapshot.available + amount,
        accumulated_total=snapshot.accumulated_total + amount,
    )
    return LedgerMovement(CashbackTransactionType.ACCRUAL, amount, snapshot, after)


def apply_redemption(
    snapshot: BalanceSnapshot,
    amount: Any,
    *,
    sale_value: Any,
    limit: RedemptionLimit,
) -> LedgerMovement:
    """Debit ``amount``; the configured limit is checked before the balance."""

    amount = _positive(amount)
    cap = compute_redemption_limit(sale_value, limit)
    if amount > cap:
        raise RedemptionLimitExceededError(amount, cap)
    if amount > snapshot.available:
        raise InsufficientBalanceError(amount, snapshot.available)
    after = replace(
        snapshot,
        available=snapshot.available - amount,
        redeemed_total=snapshot.redeemed_total + amount,
    )
    return LedgerMovement(CashbackTransactionType.REDEMPTION, amount, snapshot, after)


def apply_expiration(snapshot: BalanceSnapshot, amount: Any) -> LedgerMovement:
    amount = min(_positive(amount), snapshot.available)
    after = replace(
        snapshot,
        available=snapshot.available - amount,
        expired_total=snapshot.expired_total + amount,
    )
    return LedgerMovement(CashbackTransactionType.EXPIRATION, amount, snapshot, after)


def apply_accrual_reversal(snapshot: BalanceSnapshot, amount: Any) -> LedgerMovement:
    """Take back an accrual, clamping at the available balance.

    Whatever could not be deducted (already redeemed or expired) is
    reported as ``shortfall`` instead of driving the balance negative.
    """

    requested = _positive(amount)
    applied = min(requested, snapshot.available)
    after = replace(
        snapshot,
        available=snapshot.available - applied,
        accumulated_total=snapshot.accumulated_total - applied,
    )
    return LedgerMovement(
        CashbackTransactionType.CANCELLATION,
        applied,
        snapshot,
        after,
        shortfall=requested - applied,
    )


def apply_redemption_reversal(snapshot: BalanceSnapshot, amount: Any) -> LedgerMovement:
    amount = _positive(amount)
    after = replace(
        snapshot,
        available=snapshot.available + amount,
        redeemed_total=snapshot.redeemed_total - amount,
    )
    return LedgerMovement(CashbackTransactionType.CANCELLATION, amount, snapshot, after)


def replay_available(entries: list[tuple[Decimal, Decimal]]) -> Decimal:
    """Replay ``(balance_before, balance_after)`` pairs, checking each links to the previous one."""

    current = ZERO
    for position, (before, after) in enumerate(entries):
        if to_money(before) != current:
            raise ValueError(f"Ledger entry {position} starts at {before} but previous balance was {current}")
        current = to_money(after)
    return current
