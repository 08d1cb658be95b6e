"""Outbound messaging collaborators."""

from functools import lru_cache

from recompra_api.core.settings import settings

from .channel import DeliveryResult, InMemoryMessageChannel, MessageChannel, OutboundMessage, WhatsappGatewayChannel


@lru_cache
def get_message_channel() -> MessageChannel:
    return WhatsappGatewayChannel(
        settings.whatsapp_gateway_url,
        timeout_seconds=settings.whatsapp_gateway_timeout_seconds,
    )


__all__ = [
    "DeliveryResult",
    "InMemoryMessageChannel",
    "MessageChannel",
    "OutboundMessage",
    "WhatsappGatewayChannel",
    "get_message_channel",
]
