"""Translate cashback domain errors into HTTP responses."""

from fastapi import HTTPException

from recompra_api.services.cashback.errors import CashbackError


def http_error(error: CashbackError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=str(error))
