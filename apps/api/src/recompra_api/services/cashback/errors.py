"""Domain errors raised by the cashback ledger and transaction flows.

Each error carries the HTTP status it maps to so endpoints can translate
it without a lookup table. Every one of them aborts the surrounding unit
of work.
"""

from __future__ import annotations

from decimal import Decimal

from fastapi import status


class CashbackError(RuntimeError):
    """Base exception for cashback and point-of-sale failures."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR


class NotFoundError(CashbackError):
    """Raised when a program, operator, client or campaign does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class UnauthorizedOperatorError(CashbackError):
    """Raised when an operator PIN is unknown or has no active membership."""

    status_code = status.HTTP_401_UNAUTHORIZED


class BadRequestError(CashbackError):
    status_code = status.HTTP_400_BAD_REQUEST


class DuplicateClientError(BadRequestError):
    """Raised when signing up a phone that already belongs to a client."""

    def __init__(self, phone: str) -> None:
        super().__init__("A client already exists for this phone")
        self.phone = phone


class InvalidPhoneError(BadRequestError):
    pass


class InsufficientBalanceError(BadRequestError):
    def __init__(self, requested: Decimal, available: Decimal) -> None:
        super().__init__(f"Insufficient balance: requested {requested:.2f}, available {available:.2f}")
        self.requested = requested
        self.available = available


class RedemptionLimitExceededError(BadRequestError):
    def __init__(self, requested: Decimal, limit: Decimal) -> None:
        super().__init__(f"Redemption exceeds the allowed limit. Maximum: {limit:.2f}")
        self.requested = requested
        self.limit = limit


class PersistenceError(CashbackError):
    """Raised when a write did not produce the expected row."""
