from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import recompra_api.models  # noqa: F401
from recompra_api.app import create_app
from recompra_api.db.base import Base
from recompra_api.db.session import get_session, get_session_factory
from recompra_api.models.campaign import Campaign, CampaignTrigger, MessageTemplate
from recompra_api.models.cashback import CashbackProgram, CashbackRuleType
from recompra_api.models.client import RECENT_CLIENTS_SEGMENT
from recompra_api.models.organization import Operator, Organization, OrganizationMembership, WhatsappConnection
from recompra_api.observability.cashback import get_cashback_store
from recompra_api.services.messaging import InMemoryMessageChannel, get_message_channel
from recompra_api.services.transactions import ClientDirectory

OPERATOR_PIN = "1234"


@dataclass
class SeededOrganization:
    organization_id: UUID
    operator_id: UUID
    program_id: UUID
    pin: str = OPERATOR_PIN


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    get_cashback_store().reset()

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def seed_organization(session_factory):
    """Create an organization with an active operator and a cashback program."""

    async def _seed(
        *,
        accrual_type: CashbackRuleType = CashbackRuleType.PERCENTAGE,
        accrual_value: str = "5",
        integration_type: str | None = None,
        integration_config: dict | None = None,
        with_connection: bool = True,
        **program_fields,
    ) -> SeededOrganization:
        async with session_factory() as session:
            organization = Organization(
                name="Loja Centro",
                integration_type=integration_type,
                integration_config=integration_config,
            )
            session.add(organization)
            await session.flush()

            operator = Operator(organization_id=organization.id, name="Ana", pin=OPERATOR_PIN)
            session.add(operator)
            await session.flush()
            session.add(OrganizationMembership(organization_id=organization.id, operator_id=operator.id))

            program = CashbackProgram(
                organization_id=organization.id,
                accrual_type=accrual_type,
                accrual_value=Decimal(accrual_value),
                **program_fields,
            )
            session.add(program)
            if with_connection:
                session.add(WhatsappConnection(organization_id=organization.id, token="wa-token"))
            await session.commit()
            return SeededOrganization(
                organization_id=organization.id,
                operator_id=operator.id,
                program_id=program.id,
            )

    return _seed


@pytest_asyncio.fixture
async def message_channel():
    return InMemoryMessageChannel()


@pytest_asyncio.fixture
async def app_with_db(session_factory, message_channel):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_message_channel] = lambda: message_channel

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def create_client(session_factory):
    async def _create(organization_id: UUID, *, name: str = "Maria Souza", phone: str | None = "11987654321") -> UUID:
        async with session_factory() as session:
            client = await ClientDirectory(session, organization_id).register(
                name=name,
                phone=phone,
                acquisition_channel="TEST",
                require_phone=phone is not None,
            )
            await session.commit()
            return client.id

    return _create


@pytest_asyncio.fixture
async def create_campaign(session_factory):
    """Create an active campaign, wired to a template and a channel unless told otherwise."""

    async def _create(
        organization_id: UUID,
        trigger: CampaignTrigger,
        *,
        title: str | None = None,
        segments: list[str] | None = None,
        with_template: bool = True,
        **fields,
    ) -> UUID:
        async with session_factory() as session:
            template_id = None
            if with_template:
                template = MessageTemplate(organization_id=organization_id, name="recompra_obrigado")
                session.add(template)
                await session.flush()
                template_id = template.id
            campaign = Campaign(
                organization_id=organization_id,
                title=title or trigger.value.title(),
                trigger=trigger,
                segments=[RECENT_CLIENTS_SEGMENT] if segments is None else segments,
                template_id=template_id,
                channel_phone_id="5511900000000" if with_template else None,
                **fields,
            )
            session.add(campaign)
            await session.commit()
            return campaign.id

    return _create
