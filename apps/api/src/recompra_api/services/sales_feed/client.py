"""HTTP client for the external point-of-sale systems organizations integrate with."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

import httpx
from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError


class SalesFeedError(RuntimeError):
    """Raised when the sales feed cannot be read."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class ExternalSaleRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    external_id: str = Field(..., alias="externalId", validation_alias=AliasChoices("externalId", "id"))
    client_name: str | None = Field(None, alias="clientName")
    client_phone: str | None = Field(None, alias="clientPhone")
    client_document: str | None = Field(None, alias="clientDocument")
    partner_code: str | None = Field(None, alias="partnerCode")
    total_value: Decimal = Field(Decimal("0"), alias="totalValue")
    cancelled: bool = False
    sold_at: datetime | None = Field(None, alias="soldAt")

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled or self.total_value <= 0


@dataclass(slots=True)
class SalesFeedConfig:
    base_url: str
    token: str | None = None

    @classmethod
    def from_integration(cls, config: Mapping[str, Any] | None) -> "SalesFeedConfig | None":
        if not isinstance(config, Mapping):
            return None
        base_url = config.get("base_url") or config.get("baseUrl")
        if not isinstance(base_url, str) or not base_url.strip():
            return None
        token = config.get("token")
        return cls(base_url=base_url.rstrip("/"), token=token if isinstance(token, str) else None)


class SalesFeedClient:
    """Fetch sales changed since a point in time.

    Records that fail validation are skipped and logged; a transport error
    or a non-2xx answer fails the whole poll with ``SalesFeedError``.
    """

    def __init__(
        self,
        config: SalesFeedConfig,
        *,
        timeout_seconds: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._timeout = timeout_seconds
        self._transport = transport

    async def fetch_sales(self, *, since: datetime) -> list[ExternalSaleRecord]:
        url = f"{self._config.base_url}/sales"
        headers = {"Accept": "application/json"}
        if self._config.token:
            headers["Authorization"] = f"Bearer {self._config.token}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url, params={"since": since.isoformat()}, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SalesFeedError(f"Sales feed request failed: {exc}", url=url) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise SalesFeedError("Sales feed returned invalid JSON", url=url) from exc

        rows = payload.get("data", payload.get("sales", [])) if isinstance(payload, dict) else payload
        if not isinstance(rows, list):
            raise SalesFeedError("Sales feed payload is not a list", url=url)

        records: list[ExternalSaleRecord] = []
        for row in rows:
            try:
                records.append(ExternalSaleRecord.model_validate(row))
            except ValidationError as exc:
                logger.warning("Skipping malformed sales feed record", url=url, errors=exc.errors())
        return records
