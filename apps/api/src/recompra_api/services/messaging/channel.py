"""Outbound message channels used to deliver campaign interactions."""

from __future__ import annotations

from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, List, Protocol
from uuid import UUID

import httpx
from loguru import logger


@dataclass(slots=True)
class OutboundMessage:
    interaction_id: UUID
    organization_id: UUID
    client_id: UUID
    client_name: str
    client_phone: str
    template_name: str
    template_language: str
    channel_phone_id: str
    auth_token: str


@dataclass(slots=True)
class DeliveryResult:
    success: bool
    provider_message_id: str | None = None
    error: str | None = None
    telemetry: dict[str, Any] = field(default_factory=dict)


class MessageChannel(Protocol):
    async def send(self, message: OutboundMessage) -> DeliveryResult: ...


class WhatsappGatewayChannel:
    """Send template messages through a WhatsApp Cloud API compatible gateway."""

    def __init__(self, base_url: str, *, timeout_seconds: float = 10.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport

    def _payload(self, message: OutboundMessage) -> dict[str, Any]:
        first_name = (message.client_name or "").split(" ")[0]
        return {
            "messaging_product": "whatsapp",
            "to": message.client_phone,
            "type": "template",
            "template": {
                "name": message.template_name,
                "language": {"code": message.template_language},
                "components": [
                    {"type": "body", "parameters": [{"type": "text", "text": first_name}]},
                ],
            },
        }

    async def send(self, message: OutboundMessage) -> DeliveryResult:
        url = f"{self._base_url}/{message.channel_phone_id}/messages"
        headers = {"Authorization": f"Bearer {message.auth_token}", "Content-Type": "application/json"}
        start = perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, json=self._payload(message), headers=headers)
        except httpx.HTTPError as exc:
            return DeliveryResult(
                success=False,
                error=f"Gateway request failed: {exc}",
                telemetry={"latencyMs": int((perf_counter() - start) * 1000)},
            )

        telemetry = {"latencyMs": int((perf_counter() - start) * 1000), "statusCode": response.status_code}
        if not response.is_success:
            return DeliveryResult(
                success=False,
                error=f"Gateway responded with {response.status_code}: {response.text[:200]}",
                telemetry=telemetry,
            )
        try:
            body = response.json()
        except ValueError:
            body = {}
        messages = body.get("messages") if isinstance(body, dict) else None
        message_id = messages[0].get("id") if messages else None
        logger.debug(
            "WhatsApp template message accepted",
            interaction_id=str(message.interaction_id),
            provider_message_id=message_id,
        )
        return DeliveryResult(success=True, provider_message_id=message_id, telemetry=telemetry)


class InMemoryMessageChannel:
    """Channel capturing messages for tests and local development."""

    def __init__(self, *, failing_phones: set[str] | None = None) -> None:
        self.sent_messages: List[OutboundMessage] = []
        self._failing_phones = failing_phones or set()

    async def send(self, message: OutboundMessage) -> DeliveryResult:
        if message.client_phone in self._failing_phones:
            raise RuntimeError(f"Delivery refused for {message.client_phone}")
        self.sent_messages.append(message)
        return DeliveryResult(success=True, provider_message_id=f"memory-{len(self.sent_messages)}")
