"""
Pytest fixtures for dispatch tests.

Each test gets a fresh in-memory SQLite database with the dispatch schema and
two companies: one with a connected instance, a contact, a lead and
conversations, and one that owns nothing the tests look up.
"""

from dataclasses import dataclass
from uuid import UUID

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmcore.settings import Settings
from messaging_dispatch.persistence import (
    ChannelInstance,
    Contact,
    Conversation,
    DispatchBase,
    InstanceStatus,
    Lead,
)
from messaging_dispatch.providers.stub import StubChannelProvider
from messaging_dispatch.service import CompensationRunner, DispatchOrchestrator, OutboundDispatcher
from messaging_dispatch.storage import StubStorage

COMPANY_ID = UUID("12345678-1234-1234-1234-123456789012")
OTHER_COMPANY_ID = UUID("87654321-4321-4321-4321-210987654321")


@dataclass
class Seed:
    company_id: UUID
    other_company_id: UUID
    lead: Lead
    contact: Contact
    instance: ChannelInstance
    conversation: Conversation
    offline_instance: ChannelInstance
    offline_conversation: Conversation
    stub_instance: ChannelInstance
    stub_conversation: Conversation


@pytest.fixture
def engine():
    """In-memory SQLite engine shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    DispatchBase.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine) -> Session:
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment."""
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        ENCRYPTION_KEY=None,
        EVOLUTION_API_URL="",
        EVOLUTION_API_KEY="",
        EVOLUTION_WEBHOOK_KEY=None,
        STORAGE_URL=None,
        STORAGE_KEY=None,
        CREDITS_PER_TEXT=1,
        CREDITS_PER_ATTACHMENT=2,
    )


@pytest.fixture
def seed(db) -> Seed:
    lead = Lead(company_id=COMPANY_ID, title="Reforma cozinha")
    contact = Contact(
        company_id=COMPANY_ID,
        full_name="Maria Souza",
        first_name="Maria",
        phone="5511999999999",
    )
    instance = ChannelInstance(
        company_id=COMPANY_ID,
        name="loja-principal",
        provider="evolution",
        status=InstanceStatus.CONNECTED.value,
        api_url="https://evo.test",
        api_key="secret-key",
    )
    offline_instance = ChannelInstance(
        company_id=COMPANY_ID,
        name="loja-filial",
        provider="evolution",
        status=InstanceStatus.DISCONNECTED.value,
        api_url="https://evo.test",
        api_key="secret-key",
    )
    stub_instance = ChannelInstance(
        company_id=COMPANY_ID,
        name="sandbox",
        provider="stub",
        status=InstanceStatus.CONNECTED.value,
    )
    db.add_all([lead, contact, instance, offline_instance, stub_instance])
    db.flush()

    conversation = Conversation(
        company_id=COMPANY_ID,
        contact_id=contact.id,
        channel_instance_id=instance.id,
        external_id="5511999999999@s.whatsapp.net",
        title="Maria Souza",
    )
    offline_conversation = Conversation(
        company_id=COMPANY_ID,
        contact_id=contact.id,
        channel_instance_id=offline_instance.id,
        external_id="5511999999999@s.whatsapp.net",
    )
    stub_conversation = Conversation(
        company_id=COMPANY_ID,
        contact_id=contact.id,
        channel_instance_id=stub_instance.id,
        external_id="5511777777777@s.whatsapp.net",
    )
    db.add_all([conversation, offline_conversation, stub_conversation])
    db.commit()

    return Seed(
        company_id=COMPANY_ID,
        other_company_id=OTHER_COMPANY_ID,
        lead=lead,
        contact=contact,
        instance=instance,
        conversation=conversation,
        offline_instance=offline_instance,
        offline_conversation=offline_conversation,
        stub_instance=stub_instance,
        stub_conversation=stub_conversation,
    )


@pytest.fixture
def stub_provider() -> StubChannelProvider:
    return StubChannelProvider(instance_name="loja-principal")


@pytest.fixture
def stub_storage() -> StubStorage:
    return StubStorage()


@pytest.fixture
def compensation() -> CompensationRunner:
    """Compensation runner without backoff waits."""
    return CompensationRunner(attempts=3, backoff=0)


@pytest.fixture
def orchestrator(db, settings, stub_provider, stub_storage, compensation) -> DispatchOrchestrator:
    return DispatchOrchestrator(
        db,
        dispatcher=OutboundDispatcher(provider_factory=lambda endpoint: stub_provider, settings=settings),
        storage=stub_storage,
        compensation=compensation,
        settings=settings,
    )
