"""Point-of-interaction endpoints used by the counter application."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from recompra_api.api.dependencies.errors import http_error
from recompra_api.db.session import get_session, get_session_factory
from recompra_api.services.campaigns.dispatch import DispatchQueue
from recompra_api.services.cashback.errors import CashbackError
from recompra_api.services.messaging import MessageChannel, get_message_channel
from recompra_api.services.transactions import (
    NewClientData,
    PointOfSaleService,
    TransactionRequest,
)

router = APIRouter(prefix="/point-of-interaction", tags=["Point of interaction"])


class NewClientPayload(BaseModel):
    name: str = Field(..., min_length=1, validation_alias=AliasChoices("name", "nome"))
    phone: str = Field(..., min_length=1, validation_alias=AliasChoices("phone", "telefone"))
    document: str | None = Field(None, validation_alias=AliasChoices("document", "cpfCnpj"))


class ClientReference(BaseModel):
    id: UUID | None = None
    name: str | None = Field(None, validation_alias=AliasChoices("name", "nome"))
    phone: str | None = Field(None, validation_alias=AliasChoices("phone", "telefone"))
    document: str | None = Field(None, validation_alias=AliasChoices("document", "cpfCnpj"))

    @model_validator(mode="after")
    def _require_id_or_signup(self) -> "ClientReference":
        if self.id is None and not (self.name and self.phone):
            raise ValueError("client requires an id or a name and phone")
        return self


class CashbackUsage(BaseModel):
    apply: bool = Field(False, validation_alias=AliasChoices("apply", "aplicar"))
    value: Decimal = Field(Decimal("0"), ge=0, validation_alias=AliasChoices("value", "valor"))


class SalePayload(BaseModel):
    value: Decimal = Field(..., gt=0, validation_alias=AliasChoices("value", "valor"))
    cashback: CashbackUsage = Field(default_factory=CashbackUsage)


class TransactionPayload(BaseModel):
    organization_id: UUID = Field(..., validation_alias=AliasChoices("orgId", "organizationId"))
    operator_identifier: str = Field(..., min_length=1, alias="operatorIdentifier")
    client: ClientReference
    sale: SalePayload


class TransactionData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sale_id: UUID | None = Field(None, alias="saleId")
    client_id: UUID = Field(..., alias="clientId")
    client_accumulated_cashback_value: float = Field(..., alias="clientAccumulatedCashbackValue")
    client_new_overall_available_balance: float = Field(..., alias="clientNewOverallAvailableBalance")
    visual_client_accumulated_cashback_value: float = Field(..., alias="visualClientAccumulatedCashbackValue")
    visual_client_new_overall_available_balance: float = Field(..., alias="visualClientNewOverallAvailableBalance")


class TransactionResponse(BaseModel):
    data: TransactionData
    message: str


class RedemptionPayload(BaseModel):
    organization_id: UUID = Field(..., validation_alias=AliasChoices("orgId", "organizationId"))
    operator_identifier: str = Field(..., min_length=1, alias="operatorIdentifier")
    client_id: UUID = Field(..., alias="clientId")
    sale_value: Decimal = Field(..., gt=0, validation_alias=AliasChoices("saleValue", "valorVenda"))
    amount: Decimal = Field(..., gt=0, validation_alias=AliasChoices("amount", "valor"))


class RedemptionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: UUID = Field(..., alias="transactionId")
    client_id: UUID = Field(..., alias="clientId")
    amount: float
    available: float


class ClientSignupPayload(NewClientPayload):
    organization_id: UUID = Field(..., validation_alias=AliasChoices("orgId", "organizationId"))


class ClientResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: UUID
    name: str
    phone: str | None = None
    document: str | None = None
    segment: str


def _dispatch_queue(
    channel: MessageChannel = Depends(get_message_channel),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> DispatchQueue:
    return DispatchQueue(channel, session_factory=session_factory)


@router.post("/transactions", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def register_transaction(
    payload: TransactionPayload,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    queue: DispatchQueue = Depends(_dispatch_queue),
) -> TransactionResponse:
    new_client = None
    if payload.client.id is None:
        new_client = NewClientData(
            name=payload.client.name or "",
            phone=payload.client.phone or "",
            document=payload.client.document,
        )
    request = TransactionRequest(
        organization_id=payload.organization_id,
        operator_pin=payload.operator_identifier,
        sale_value=payload.sale.value,
        client_id=payload.client.id,
        new_client=new_client,
        apply_cashback=payload.sale.cashback.apply,
        cashback_amount=payload.sale.cashback.value,
    )
    try:
        result = await PointOfSaleService(session, queue=queue).register_transaction(request)
    except CashbackError as error:
        raise http_error(error) from error

    if len(queue):
        background_tasks.add_task(queue.drain)

    return TransactionResponse(
        data=TransactionData(
            saleId=result.sale_id,
            clientId=result.client_id,
            clientAccumulatedCashbackValue=float(result.accrued),
            clientNewOverallAvailableBalance=float(result.available),
            visualClientAccumulatedCashbackValue=float(result.visual_accrued),
            visualClientNewOverallAvailableBalance=float(result.visual_available),
        ),
        message="Transaction registered successfully",
    )


@router.post("/redemptions", response_model=RedemptionResponse, status_code=status.HTTP_201_CREATED)
async def register_redemption(
    payload: RedemptionPayload,
    session: AsyncSession = Depends(get_session),
) -> RedemptionResponse:
    try:
        result = await PointOfSaleService(session).register_redemption(
            organization_id=payload.organization_id,
            operator_pin=payload.operator_identifier,
            client_id=payload.client_id,
            sale_value=payload.sale_value,
            amount=payload.amount,
        )
    except CashbackError as error:
        raise http_error(error) from error

    return RedemptionResponse(
        transactionId=result.transaction_id,
        clientId=result.client_id,
        amount=float(result.amount),
        available=float(result.available),
    )


@router.post("/clients", response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
async def register_client(
    payload: ClientSignupPayload,
    session: AsyncSession = Depends(get_session),
) -> ClientResponse:
    try:
        client = await PointOfSaleService(session).register_client(
            organization_id=payload.organization_id,
            name=payload.name,
            phone=payload.phone,
            document=payload.document,
        )
    except CashbackError as error:
        raise http_error(error) from error

    return ClientResponse(
        id=client.id,
        name=client.name,
        phone=client.phone,
        document=client.document,
        segment=client.segment,
    )
