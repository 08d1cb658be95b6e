from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from recompra_api.models.campaign import CampaignTrigger, Interaction, InteractionStatus
from recompra_api.models.cashback import CashbackProgramBalance
from recompra_api.services.cashback import CashbackLedgerService, load_program
from recompra_api.services.campaigns import DispatchQueue
from recompra_api.services.messaging import InMemoryMessageChannel, OutboundMessage
from recompra_api.services.sales_feed import ExternalSaleRecord, SalesFeedError
from recompra_api.tasks import sweeps
from recompra_api.workers import CashbackExpirationWorker, InteractionDispatchWorker, SalesImportWorker

NOW = datetime(2026, 10, 17, 10, 30, tzinfo=timezone.utc)


async def _interaction(session_factory, seeded, client_id, campaign_id, *, scheduled_for: date, time_block: str):
    async with session_factory() as session:
        interaction = Interaction(
            organization_id=seeded.organization_id,
            client_id=client_id,
            campaign_id=campaign_id,
            title="Automatic message",
            status=InteractionStatus.PENDING,
            scheduled_for=scheduled_for,
            time_block=time_block,
        )
        session.add(interaction)
        await session.commit()
        return interaction.id


@pytest.mark.asyncio
async def test_dispatch_worker_sends_due_interactions(
    session_factory, seed_organization, create_client, create_campaign
) -> None:
    seeded = await seed_organization()
    client_id = await create_client(seeded.organization_id)
    campaign_id = await create_campaign(seeded.organization_id, CampaignTrigger.NEW_PURCHASE)
    silent_id = await create_campaign(seeded.organization_id, CampaignTrigger.NEW_PURCHASE, with_template=False)

    today = NOW.date()
    overdue = await _interaction(
        session_factory, seeded, client_id, campaign_id, scheduled_for=today - timedelta(days=2), time_block="18:00"
    )
    due_now = await _interaction(session_factory, seeded, client_id, campaign_id, scheduled_for=today, time_block="09:00")
    later_today = await _interaction(
        session_factory, seeded, client_id, campaign_id, scheduled_for=today, time_block="15:00"
    )
    tomorrow = await _interaction(
        session_factory, seeded, client_id, campaign_id, scheduled_for=today + timedelta(days=1), time_block="09:00"
    )
    unconfigured = await _interaction(
        session_factory, seeded, client_id, silent_id, scheduled_for=today, time_block="00:00"
    )

    channel = InMemoryMessageChannel()
    worker = InteractionDispatchWorker(
        session_factory, channel_factory=lambda: channel, interval_seconds=1, now=lambda: NOW
    )
    summary = await worker.run_once()

    assert summary == {"selected": 2, "dispatched": 2, "failed": 0, "skipped": 0}
    assert {message.interaction_id for message in channel.sent_messages} == {overdue, due_now}

    async with session_factory() as session:
        statuses = {
            interaction.id: interaction.status
            for interaction in (await session.execute(select(Interaction))).scalars().all()
        }
    assert statuses[overdue] == InteractionStatus.DISPATCHED
    assert statuses[due_now] == InteractionStatus.DISPATCHED
    assert statuses[later_today] == InteractionStatus.PENDING
    assert statuses[tomorrow] == InteractionStatus.PENDING
    assert statuses[unconfigured] == InteractionStatus.PENDING


@pytest.mark.asyncio
async def test_dispatch_worker_marks_failed_deliveries(
    session_factory, seed_organization, create_client, create_campaign
) -> None:
    seeded = await seed_organization()
    client_id = await create_client(seeded.organization_id, phone="11912345678")
    campaign_id = await create_campaign(seeded.organization_id, CampaignTrigger.NEW_PURCHASE)
    interaction_id = await _interaction(
        session_factory, seeded, client_id, campaign_id, scheduled_for=NOW.date() - timedelta(days=1), time_block="06:00"
    )

    channel = InMemoryMessageChannel(failing_phones={"11912345678"})
    summary = await sweeps.run_interaction_dispatch(session_factory=session_factory, channel_factory=lambda: channel)

    assert summary["failed"] == 1
    async with session_factory() as session:
        interaction = await session.get(Interaction, interaction_id)
        assert interaction.status == InteractionStatus.FAILED
        assert interaction.error_message == "Delivery failed"


@pytest.mark.asyncio
async def test_undeliverable_interactions_do_not_hold_batch_slots(
    session_factory, seed_organization, create_client, create_campaign
) -> None:
    offline = await seed_organization(with_connection=False)
    offline_client = await create_client(offline.organization_id)
    offline_campaign = await create_campaign(offline.organization_id, CampaignTrigger.NEW_PURCHASE)
    stuck = await _interaction(
        session_factory, offline, offline_client, offline_campaign,
        scheduled_for=NOW.date() - timedelta(days=5), time_block="00:00",
    )

    online = await seed_organization()
    online_client = await create_client(online.organization_id)
    online_campaign = await create_campaign(online.organization_id, CampaignTrigger.NEW_PURCHASE)
    due = await _interaction(
        session_factory, online, online_client, online_campaign, scheduled_for=NOW.date(), time_block="09:00"
    )

    channel = InMemoryMessageChannel()
    worker = InteractionDispatchWorker(session_factory, channel_factory=lambda: channel, batch_size=1, now=lambda: NOW)
    summary = await worker.run_once()

    assert summary == {"selected": 1, "dispatched": 1, "failed": 0, "skipped": 0}
    assert [message.interaction_id for message in channel.sent_messages] == [due]
    assert (await worker.run_once())["selected"] == 0
    async with session_factory() as session:
        assert (await session.get(Interaction, stuck)).status == InteractionStatus.PENDING


@pytest.mark.asyncio
async def test_interaction_is_sent_by_one_drain_only(
    session_factory, seed_organization, create_client, create_campaign
) -> None:
    seeded = await seed_organization()
    client_id = await create_client(seeded.organization_id)
    campaign_id = await create_campaign(seeded.organization_id, CampaignTrigger.NEW_PURCHASE)
    interaction_id = await _interaction(
        session_factory, seeded, client_id, campaign_id, scheduled_for=NOW.date(), time_block="00:00"
    )
    message = OutboundMessage(
        interaction_id=interaction_id,
        organization_id=seeded.organization_id,
        client_id=client_id,
        client_name="Joana Lima",
        client_phone="5511987654321",
        template_name="recompra_obrigado",
        template_language="pt_BR",
        channel_phone_id="5511900000000",
        auth_token="wa-token",
    )
    channel = InMemoryMessageChannel()
    immediate = DispatchQueue(channel, session_factory=session_factory, delay_seconds=0)
    late = DispatchQueue(channel, session_factory=session_factory, delay_seconds=0)
    immediate.enqueue(message)
    late.enqueue(message)

    first = await immediate.drain()
    second = await late.drain()
    sweep = await InteractionDispatchWorker(session_factory, channel_factory=lambda: channel, now=lambda: NOW).run_once()

    assert first.dispatched == [interaction_id]
    assert second.skipped == [interaction_id]
    assert sweep["selected"] == 0
    assert len(channel.sent_messages) == 1


@pytest.mark.asyncio
async def test_claimed_interactions_are_left_out_of_the_sweep(
    session_factory, seed_organization, create_client, create_campaign
) -> None:
    seeded = await seed_organization()
    client_id = await create_client(seeded.organization_id)
    campaign_id = await create_campaign(seeded.organization_id, CampaignTrigger.NEW_PURCHASE)
    interaction_id = await _interaction(
        session_factory, seeded, client_id, campaign_id, scheduled_for=NOW.date(), time_block="00:00"
    )
    async with session_factory() as session:
        (await session.get(Interaction, interaction_id)).status = InteractionStatus.DISPATCHING
        await session.commit()

    channel = InMemoryMessageChannel()
    summary = await InteractionDispatchWorker(session_factory, channel_factory=lambda: channel, now=lambda: NOW).run_once()

    assert summary["selected"] == 0
    assert channel.sent_messages == []



@pytest.mark.asyncio
async def test_expiration_worker_expires_due_grants(session_factory, seed_organization, create_client) -> None:
    seeded = await seed_organization(accrual_value="10")
    client_id = await create_client(seeded.organization_id)
    async with session_factory() as session:
        ledger = CashbackLedgerService(session, await load_program(session, seeded.organization_id))
        await ledger.accrue(client_id, sale_value=Decimal("100"), expires_at=NOW - timedelta(hours=1))
        await ledger.accrue(client_id, sale_value=Decimal("20"), expires_at=NOW + timedelta(days=1))
        await session.commit()

    worker = CashbackExpirationWorker(session_factory, interval_seconds=1, now=lambda: NOW)
    summary = await worker.run_once()

    assert summary == {"programs": 1, "expired": 1, "failed": 0}
    async with session_factory() as session:
        balance = (await session.execute(select(CashbackProgramBalance))).scalar_one()
        assert Decimal(balance.available) == Decimal("2.00")
        assert Decimal(balance.expired_total) == Decimal("10.00")

    assert (await worker.run_once())["expired"] == 0


class _Feed:
    def __init__(self, rows=None, error: Exception | None = None) -> None:
        self._rows = rows or []
        self._error = error

    async def fetch_sales(self, *, since):
        if self._error is not None:
            raise self._error
        return [ExternalSaleRecord.model_validate(row) for row in self._rows]


@pytest.mark.asyncio
async def test_sales_import_worker_isolates_failing_organizations(session_factory, seed_organization) -> None:
    healthy = await seed_organization(integration_type="external-pos", accrue_via_integration=True)
    broken = await seed_organization(integration_type="external-pos")
    await seed_organization()

    feeds = {
        healthy.organization_id: _Feed(
            rows=[{"externalId": "EXT-1", "clientName": "Rita", "clientPhone": "11987654321", "totalValue": "80"}]
        ),
        broken.organization_id: _Feed(error=SalesFeedError("feed offline", url="https://pos.example.test/sales")),
    }
    worker = SalesImportWorker(
        session_factory,
        channel_factory=InMemoryMessageChannel,
        feed_client_factory=lambda organization: feeds[organization.id],
        interval_seconds=1,
        organization_ids=[],
    )

    summary = await worker.run_once()

    assert summary["organizations"] == 2
    assert summary["failed"] == 1
    assert summary["created"] == 1


@pytest.mark.asyncio
async def test_worker_start_and_stop(session_factory) -> None:
    worker = CashbackExpirationWorker(session_factory, interval_seconds=3600, now=lambda: NOW)
    worker.start()
    assert worker.is_running
    await worker.stop()
    assert not worker.is_running
