"""Cashback ledger services."""

from .balance_cache import BalanceCache
from .errors import (
    BadRequestError,
    CashbackError,
    DuplicateClientError,
    InsufficientBalanceError,
    InvalidPhoneError,
    NotFoundError,
    PersistenceError,
    RedemptionLimitExceededError,
    UnauthorizedOperatorError,
)
from .ledger import (
    AccrualPolicy,
    BalanceSnapshot,
    FixedRule,
    LedgerMovement,
    PercentageRule,
    UnlimitedRedemption,
    compute_accrual,
    compute_max_redeemable,
    redemption_limit_for,
    to_money,
)
from .reversal import ReversalSummary, reverse_sale_cashback
from .service import AccrualResult, CashbackLedgerService, LedgerVerification, load_program

__all__ = [
    "AccrualPolicy",
    "AccrualResult",
    "BadRequestError",
    "BalanceCache",
    "BalanceSnapshot",
    "CashbackError",
    "CashbackLedgerService",
    "DuplicateClientError",
    "FixedRule",
    "InsufficientBalanceError",
    "InvalidPhoneError",
    "LedgerMovement",
    "LedgerVerification",
    "NotFoundError",
    "PercentageRule",
    "PersistenceError",
    "RedemptionLimitExceededError",
    "ReversalSummary",
    "UnauthorizedOperatorError",
    "UnlimitedRedemption",
    "compute_accrual",
    "compute_max_redeemable",
    "load_program",
    "redemption_limit_for",
    "reverse_sale_cashback",
    "to_money",
]
