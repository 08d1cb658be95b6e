import json
from uuid import uuid4

import httpx
import pytest

from recompra_api.observability.cashback import get_cashback_store
from recompra_api.services.campaigns import DispatchQueue
from recompra_api.services.messaging import InMemoryMessageChannel, OutboundMessage, WhatsappGatewayChannel


def _message(phone: str = "5511987654321") -> OutboundMessage:
    return OutboundMessage(
        interaction_id=uuid4(),
        organization_id=uuid4(),
        client_id=uuid4(),
        client_name="Paula Reis",
        client_phone=phone,
        template_name="recompra_obrigado",
        template_language="pt_BR",
        channel_phone_id="1029384756",
        auth_token="wa-token",
    )


@pytest.mark.asyncio
async def test_gateway_sends_template_with_first_name() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"messages": [{"id": "wamid.1"}]})

    channel = WhatsappGatewayChannel("https://graph.example.test/v19.0/", transport=httpx.MockTransport(handler))
    result = await channel.send(_message())

    assert result.success
    assert result.provider_message_id == "wamid.1"
    assert captured["url"] == "https://graph.example.test/v19.0/1029384756/messages"
    assert captured["auth"] == "Bearer wa-token"
    assert captured["body"]["template"]["components"][0]["parameters"][0]["text"] == "Paula"


@pytest.mark.asyncio
async def test_gateway_reports_rejections() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(400, text="template not approved"))
    result = await WhatsappGatewayChannel("https://graph.example.test", transport=transport).send(_message())

    assert not result.success
    assert "400" in result.error
    assert result.telemetry["statusCode"] == 400


@pytest.mark.asyncio
async def test_queue_delivers_items_independently() -> None:
    get_cashback_store().reset()
    channel = InMemoryMessageChannel(failing_phones={"000"})
    queue = DispatchQueue(channel, delay_seconds=0)
    ok, broken = _message(), _message(phone="000")
    queue.enqueue(broken)
    queue.enqueue(ok)

    report = await queue.drain()

    assert report.dispatched == [ok.interaction_id]
    assert report.failed == [broken.interaction_id]
    assert len(queue) == 0
    assert get_cashback_store().snapshot().dispatch == {"failed": 1, "dispatched": 1}


def test_discard_drops_pending_items() -> None:
    queue = DispatchQueue(InMemoryMessageChannel(), delay_seconds=0)
    queue.enqueue(_message())

    queue.discard()

    assert queue.pending == ()
