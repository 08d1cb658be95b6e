"""Client lookup and creation shared by the point of sale and the feed import."""

from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from recompra_api.models.client import RECENT_CLIENTS_SEGMENT, Client
from recompra_api.services.cashback.errors import DuplicateClientError, InvalidPhoneError

_NON_DIGITS = re.compile(r"\D")
COUNTRY_CODE = "55"


def normalize_phone(phone: str | None) -> str | None:
    """Reduce a Brazilian phone to ``DDD + 8 digits``.

    The country code and the mobile ninth digit are dropped so that
    ``+55 (11) 98765-4321`` and ``11 8765-4321`` compare equal. Returns
    ``None`` when the input cannot be a valid phone.
    """

    if not phone:
        return None
    digits = _NON_DIGITS.sub("", phone)
    if len(digits) in (12, 13) and digits.startswith(COUNTRY_CODE):
        digits = digits[len(COUNTRY_CODE):]
    if len(digits) == 11 and digits[2] == "9":
        digits = digits[:2] + digits[3:]
    if len(digits) != 10:
        return None
    return digits


def normalize_document(document: str | None) -> str | None:
    if not document:
        return None
    digits = _NON_DIGITS.sub("", document)
    return digits or None


class ClientDirectory:
    """Organization-scoped client lookups."""

    def __init__(self, session: AsyncSession, organization_id: UUID) -> None:
        self._db = session
        self.organization_id = organization_id

    async def get(self, client_id: UUID, *, for_update: bool = False) -> Client | None:
        """Load a client; ``for_update`` locks the row before its purchase counters change."""

        stmt = select(Client).where(Client.id == client_id, Client.organization_id == self.organization_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def find_by_phone(self, phone: str | None) -> Client | None:
        phone_base = normalize_phone(phone)
        if phone_base is None:
            return None
        stmt = (
            select(Client)
            .where(Client.organization_id == self.organization_id, Client.phone_base == phone_base)
            .limit(1)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def find_by_document(self, document: str | None) -> Client | None:
        normalized = normalize_document(document)
        if normalized is None:
            return None
        stmt = (
            select(Client)
            .where(Client.organization_id == self.organization_id, Client.document == normalized)
            .limit(1)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def find_by_name(self, name: str | None) -> Client | None:
        if not name or not name.strip():
            return None
        stmt = (
            select(Client)
            .where(
                Client.organization_id == self.organization_id,
                func.lower(Client.name) == name.strip().lower(),
            )
            .limit(1)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def match(
        self,
        *,
        document: str | None,
        phone: str | None,
        name: str | None,
        for_update: bool = False,
    ) -> Client | None:
        """Resolve a feed customer: document first, then phone, then exact name."""

        client = (
            await self.find_by_document(document)
            or await self.find_by_phone(phone)
            or await self.find_by_name(name)
        )
        if client is not None and for_update:
            return await self.get(client.id, for_update=True)
        return client

    async def register(
        self,
        *,
        name: str,
        phone: str | None,
        document: str | None = None,
        acquisition_channel: str,
        require_phone: bool = True,
    ) -> Client:
        """Create a client, refusing invalid phones and phones already registered."""

        phone_base = normalize_phone(phone)
        if phone_base is None and require_phone:
            raise InvalidPhoneError("Invalid phone number")
        if phone_base is not None and await self.find_by_phone(phone) is not None:
            raise DuplicateClientError(phone or "")

        client = Client(
            organization_id=self.organization_id,
            name=name.strip(),
            phone=phone,
            phone_base=phone_base,
            document=normalize_document(document),
            acquisition_channel=acquisition_channel,
            rfm_segment=RECENT_CLIENTS_SEGMENT,
            purchase_count=0,
            purchase_value=0,
        )
        self._db.add(client)
        await self._db.flush()
        logger.info(
            "Registered client",
            client_id=str(client.id),
            organization_id=str(self.organization_id),
            acquisition_channel=acquisition_channel,
        )
        return client


def record_purchase(client: Client, *, sale_id: UUID, sold_at: datetime, value: Decimal) -> bool:
    """Bump the client's purchase counters; returns whether this was its first sale."""

    is_first_sale = client.first_sale_id is None and client.first_sale_at is None
    if is_first_sale:
        client.first_sale_id = sale_id
        client.first_sale_at = sold_at
    client.last_sale_id = sale_id
    client.last_sale_at = sold_at
    client.purchase_count = (client.purchase_count or 0) + 1
    client.purchase_value = Decimal(client.purchase_value or 0) + value
    return is_first_sale


def forget_purchase(client: Client, *, value: Decimal) -> None:
    """Undo the counters of a purchase that was cancelled."""

    client.purchase_count = max((client.purchase_count or 0) - 1, 0)
    client.purchase_value = max(Decimal(client.purchase_value or 0) - value, Decimal("0"))
