from uuid import uuid4

import httpx
import pytest
from sqlalchemy import select

from recompra_api.models.campaign import CampaignTrigger, Interaction, InteractionStatus


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


def _transaction_body(seeded, **overrides) -> dict:
    body = {
        "orgId": str(seeded.organization_id),
        "operatorIdentifier": seeded.pin,
        "client": {"nome": "Bruna Alves", "telefone": "(11) 98888-7777"},
        "sale": {"valor": 200, "cashback": {"aplicar": False, "valor": 0}},
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_transaction_returns_created_payload(app_with_db, seed_organization) -> None:
    app, _ = app_with_db
    seeded = await seed_organization()

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/point-of-interaction/transactions", json=_transaction_body(seeded)
        )

    assert response.status_code == 201
    payload = response.json()
    assert payload["message"] == "Transaction registered successfully"
    data = payload["data"]
    assert data["clientAccumulatedCashbackValue"] == 10.0
    assert data["clientNewOverallAvailableBalance"] == 10.0
    assert data["visualClientAccumulatedCashbackValue"] == 10.0
    assert data["visualClientNewOverallAvailableBalance"] == 10.0
    assert data["saleId"] is not None


@pytest.mark.asyncio
async def test_existing_client_redeems_through_transaction(app_with_db, seed_organization, create_client) -> None:
    app, _ = app_with_db
    seeded = await seed_organization()
    client_id = await create_client(seeded.organization_id)

    async with _client(app) as client:
        first = await client.post(
            "/api/v1/point-of-interaction/transactions",
            json=_transaction_body(seeded, client={"id": str(client_id)}),
        )
        second = await client.post(
            "/api/v1/point-of-interaction/transactions",
            json=_transaction_body(
                seeded,
                client={"id": str(client_id)},
                sale={"value": 100, "cashback": {"apply": True, "value": 4}},
            ),
        )

    assert first.status_code == 201
    assert second.status_code == 201
    data = second.json()["data"]
    assert data["clientId"] == str(client_id)
    assert data["visualClientNewOverallAvailableBalance"] == 11.0
    assert data["clientNewOverallAvailableBalance"] == 11.0


@pytest.mark.asyncio
async def test_transaction_error_statuses(app_with_db, seed_organization, create_client) -> None:
    app, _ = app_with_db
    seeded = await seed_organization()
    client_id = await create_client(seeded.organization_id)

    async with _client(app) as client:
        unauthorized = await client.post(
            "/api/v1/point-of-interaction/transactions",
            json=_transaction_body(seeded, operatorIdentifier="9999"),
        )
        insufficient = await client.post(
            "/api/v1/point-of-interaction/transactions",
            json=_transaction_body(
                seeded, client={"id": str(client_id)}, sale={"valor": 50, "cashback": {"aplicar": True, "valor": 5}}
            ),
        )
        unknown_client = await client.post(
            "/api/v1/point-of-interaction/transactions",
            json=_transaction_body(seeded, client={"id": str(uuid4())}),
        )
        unknown_program = await client.post(
            "/api/v1/point-of-interaction/transactions",
            json=_transaction_body(seeded, orgId=str(uuid4())),
        )
        invalid = await client.post(
            "/api/v1/point-of-interaction/transactions",
            json=_transaction_body(seeded, client={"nome": "Sem Telefone"}),
        )

    assert unauthorized.status_code == 401
    assert insufficient.status_code == 400
    assert "Insufficient balance" in insufficient.json()["detail"]
    assert unknown_client.status_code == 404
    assert unknown_program.status_code == 404
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_transaction_dispatches_campaign_after_response(
    app_with_db, seed_organization, create_campaign, message_channel
) -> None:
    app, session_factory = app_with_db
    seeded = await seed_organization()
    await create_campaign(seeded.organization_id, CampaignTrigger.FIRST_PURCHASE)

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/point-of-interaction/transactions", json=_transaction_body(seeded)
        )

    assert response.status_code == 201
    assert len(message_channel.sent_messages) == 1
    async with session_factory() as session:
        interaction = (await session.execute(select(Interaction))).scalar_one()
        assert interaction.status == InteractionStatus.DISPATCHED


@pytest.mark.asyncio
async def test_client_signup_and_duplicate(app_with_db, seed_organization) -> None:
    app, _ = app_with_db
    seeded = await seed_organization()
    body = {"orgId": str(seeded.organization_id), "nome": "Davi Rocha", "telefone": "11 97777-6666", "cpfCnpj": "123.456.789-09"}

    async with _client(app) as client:
        created = await client.post("/api/v1/point-of-interaction/clients", json=body)
        duplicate = await client.post("/api/v1/point-of-interaction/clients", json=body)
        invalid_phone = await client.post(
            "/api/v1/point-of-interaction/clients", json={**body, "telefone": "12345"}
        )

    assert created.status_code == 201
    assert created.json()["segment"] == "CLIENTES RECENTES"
    assert created.json()["document"] == "12345678909"
    assert duplicate.status_code == 400
    assert invalid_phone.status_code == 400


@pytest.mark.asyncio
async def test_standalone_redemption(app_with_db, seed_organization, create_client) -> None:
    app, _ = app_with_db
    seeded = await seed_organization()
    client_id = await create_client(seeded.organization_id)

    async with _client(app) as client:
        await client.post(
            "/api/v1/point-of-interaction/transactions",
            json=_transaction_body(seeded, client={"id": str(client_id)}),
        )
        response = await client.post(
            "/api/v1/point-of-interaction/redemptions",
            json={
                "orgId": str(seeded.organization_id),
                "operatorIdentifier": seeded.pin,
                "clientId": str(client_id),
                "saleValue": 30,
                "amount": 6,
            },
        )

    assert response.status_code == 201
    assert response.json()["available"] == 4.0
    assert response.json()["amount"] == 6.0
