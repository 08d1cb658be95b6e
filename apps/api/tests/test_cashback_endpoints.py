from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest

from recompra_api.core.settings import settings
from recompra_api.services.cashback import CashbackLedgerService, load_program


def _client(app, **headers) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test", headers=headers)


async def _seed_ledger(session_factory, organization_id, client_id) -> None:
    async with session_factory() as session:
        ledger = CashbackLedgerService(session, await load_program(session, organization_id))
        await ledger.accrue(client_id, sale_value=Decimal("100"))
        await ledger.accrue(
            client_id,
            sale_value=Decimal("40"),
            expires_at=datetime.now(timezone.utc) - timedelta(days=1),
        )
        await ledger.redeem(client_id, Decimal("1"), sale_value=Decimal("20"))
        await session.commit()


@pytest.mark.asyncio
async def test_balance_and_ledger_listing(app_with_db, seed_organization, create_client) -> None:
    app, session_factory = app_with_db
    seeded = await seed_organization()
    client_id = await create_client(seeded.organization_id)
    await _seed_ledger(session_factory, seeded.organization_id, client_id)
    base = f"/api/v1/cashback/organizations/{seeded.organization_id}/clients/{client_id}"

    async with _client(app) as client:
        balance = await client.get(f"{base}/balance")
        page = await client.get(f"{base}/transactions", params={"limit": 2})

    assert balance.status_code == 200
    assert balance.json() == {
        "clientId": str(client_id),
        "available": 6.0,
        "accumulatedTotal": 7.0,
        "redeemedTotal": 1.0,
        "expiredTotal": 0.0,
        "entries": 3,
        "isConsistent": True,
    }
    items = page.json()["items"]
    assert [item["sequence"] for item in items] == [3, 2]
    assert items[0]["type"] == "REDEMPTION"


@pytest.mark.asyncio
async def test_unknown_client_is_not_found(app_with_db, seed_organization) -> None:
    app, _ = app_with_db
    seeded = await seed_organization()

    async with _client(app) as client:
        response = await client.get(
            f"/api/v1/cashback/organizations/{seeded.organization_id}/clients/{uuid4()}/balance"
        )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_expiration_run_requires_api_key(app_with_db, seed_organization, create_client, monkeypatch) -> None:
    app, session_factory = app_with_db
    seeded = await seed_organization()
    client_id = await create_client(seeded.organization_id)
    await _seed_ledger(session_factory, seeded.organization_id, client_id)
    monkeypatch.setattr(settings, "internal_api_key", "secret")
    url = f"/api/v1/cashback/organizations/{seeded.organization_id}/expirations/run"

    async with _client(app) as client:
        rejected = await client.post(url)
    async with _client(app, **{"X-API-Key": "secret"}) as client:
        accepted = await client.post(url)

    assert rejected.status_code == 401
    assert accepted.status_code == 202
    assert accepted.json() == {"expired": 1, "amount": 1.0}


@pytest.mark.asyncio
async def test_inactive_program_keeps_history_readable_but_rejects_sales(
    app_with_db, seed_organization, create_client
) -> None:
    app, session_factory = app_with_db
    seeded = await seed_organization()
    client_id = await create_client(seeded.organization_id)
    await _seed_ledger(session_factory, seeded.organization_id, client_id)
    async with session_factory() as session:
        program = await load_program(session, seeded.organization_id)
        program.is_active = False
        await session.commit()

    async with _client(app) as client:
        balance = await client.get(
            f"/api/v1/cashback/organizations/{seeded.organization_id}/clients/{client_id}/balance"
        )
        sale = await client.post(
            "/api/v1/point-of-interaction/transactions",
            json={
                "orgId": str(seeded.organization_id),
                "operatorIdentifier": seeded.pin,
                "client": {"id": str(client_id)},
                "sale": {"valor": 100, "cashback": {"aplicar": True, "valor": 1}},
            },
        )

    assert balance.status_code == 200
    assert balance.json()["available"] == 6.0
    assert sale.status_code == 404
    assert sale.json()["detail"] == "Cashback program is inactive"
