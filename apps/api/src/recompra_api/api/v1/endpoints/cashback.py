"""Read access to cashback balances and ledgers, plus operational triggers."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from recompra_api.api.dependencies.errors import http_error
from recompra_api.api.dependencies.security import require_internal_api_key
from recompra_api.db.session import get_session
from recompra_api.models.cashback import CashbackProgramTransaction
from recompra_api.services.cashback import CashbackLedgerService, NotFoundError, load_program
from recompra_api.services.cashback.errors import CashbackError
from recompra_api.services.transactions import ClientDirectory

router = APIRouter(prefix="/cashback/organizations/{organization_id}", tags=["Cashback"])


class BalanceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: UUID = Field(..., alias="clientId")
    available: float
    accumulated_total: float = Field(..., alias="accumulatedTotal")
    redeemed_total: float = Field(..., alias="redeemedTotal")
    expired_total: float = Field(..., alias="expiredTotal")
    entries: int
    is_consistent: bool = Field(..., alias="isConsistent")


class LedgerEntryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: UUID
    entry_type: str = Field(..., alias="type")
    status: str
    status_reason: str | None = Field(None, alias="statusReason")
    amount: float
    remaining: float
    balance_before: float = Field(..., alias="balanceBefore")
    balance_after: float = Field(..., alias="balanceAfter")
    sequence: int
    sale_id: UUID | None = Field(None, alias="saleId")
    campaign_id: UUID | None = Field(None, alias="campaignId")
    expires_at: datetime | None = Field(None, alias="expiresAt")
    created_at: datetime | None = Field(None, alias="createdAt")
    metadata: dict[str, Any] = Field(default_factory=dict)


class LedgerPageResponse(BaseModel):
    items: list[LedgerEntryResponse]
    limit: int
    offset: int


class ExpirationRunResponse(BaseModel):
    expired: int
    amount: float


def _serialize_entry(entry: CashbackProgramTransaction) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        id=entry.id,
        type=entry.entry_type.value,
        status=entry.status.value,
        statusReason=entry.status_reason,
        amount=float(entry.amount),
        remaining=float(entry.remaining or 0),
        balanceBefore=float(entry.balance_before),
        balanceAfter=float(entry.balance_after),
        sequence=entry.sequence,
        saleId=entry.sale_id,
        campaignId=entry.campaign_id,
        expiresAt=entry.expires_at,
        createdAt=entry.created_at,
        metadata=entry.metadata_json or {},
    )


async def _ledger_for_client(
    session: AsyncSession, organization_id: UUID, client_id: UUID
) -> CashbackLedgerService:
    program = await load_program(session, organization_id, active_only=False)
    if await ClientDirectory(session, organization_id).get(client_id) is None:
        raise NotFoundError("Client not found")
    return CashbackLedgerService(session, program)


@router.get("/clients/{client_id}/balance", response_model=BalanceResponse)
async def get_client_balance(
    organization_id: UUID,
    client_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> BalanceResponse:
    try:
        ledger = await _ledger_for_client(session, organization_id, client_id)
        balance = await ledger.ensure_balance(client_id)
        verification = await ledger.verify_ledger(client_id)
        await session.commit()
    except CashbackError as error:
        raise http_error(error) from error

    return BalanceResponse(
        clientId=client_id,
        available=float(balance.available),
        accumulatedTotal=float(balance.accumulated_total),
        redeemedTotal=float(balance.redeemed_total),
        expiredTotal=float(balance.expired_total),
        entries=verification.entries,
        isConsistent=verification.is_consistent,
    )


@router.get("/clients/{client_id}/transactions", response_model=LedgerPageResponse)
async def list_client_transactions(
    organization_id: UUID,
    client_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> LedgerPageResponse:
    try:
        ledger = await _ledger_for_client(session, organization_id, client_id)
        entries = await ledger.list_transactions(client_id, limit=limit, offset=offset)
    except CashbackError as error:
        raise http_error(error) from error

    return LedgerPageResponse(items=[_serialize_entry(entry) for entry in entries], limit=limit, offset=offset)


@router.post(
    "/expirations/run",
    response_model=ExpirationRunResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_internal_api_key)],
)
async def run_expirations(
    organization_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> ExpirationRunResponse:
    try:
        program = await load_program(session, organization_id)
        expired = await CashbackLedgerService(session, program).expire_due()
        amount = sum(float(entry.amount) for entry in expired)
        await session.commit()
    except CashbackError as error:
        await session.rollback()
        raise http_error(error) from error

    return ExpirationRunResponse(expired=len(expired), amount=amount)
