"""
Pytest fixtures for the Dispatch API.

The app runs against an in-memory SQLite database, the stub provider and
in-memory storage; every collaborator is swapped in via dependency_overrides.
"""

from types import SimpleNamespace
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from crmcore.db import get_db
from crmcore.settings import Settings, get_settings
from dispatch_api.main import app, get_blob_storage, get_compensation, get_dispatcher
from messaging_dispatch.persistence import (
    ChannelInstance,
    Contact,
    Conversation,
    DispatchBase,
    InstanceStatus,
    Lead,
)
from messaging_dispatch.providers.stub import StubChannelProvider
from messaging_dispatch.service import CompensationRunner, OutboundDispatcher
from messaging_dispatch.storage import StubStorage

COMPANY_ID = UUID("12345678-1234-1234-1234-123456789012")
OTHER_COMPANY_ID = UUID("87654321-4321-4321-4321-210987654321")


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    DispatchBase.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def settings() -> Settings:
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
def seed(db):
    lead = Lead(company_id=COMPANY_ID, title="Reforma banheiro")
    contact = Contact(company_id=COMPANY_ID, full_name="Carlos Lima", phone="5511988887777")
    instance = ChannelInstance(
        company_id=COMPANY_ID,
        name="loja-principal",
        provider="evolution",
        status=InstanceStatus.CONNECTED.value,
        api_url="https://evo.test",
        api_key="secret-key",
    )
    offline = ChannelInstance(
        company_id=COMPANY_ID,
        name="loja-filial",
        provider="evolution",
        status=InstanceStatus.DISCONNECTED.value,
    )
    db.add_all([lead, contact, instance, offline])
    db.flush()

    conversation = Conversation(
        company_id=COMPANY_ID,
        contact_id=contact.id,
        channel_instance_id=instance.id,
        external_id="5511988887777@s.whatsapp.net",
    )
    offline_conversation = Conversation(
        company_id=COMPANY_ID,
        contact_id=contact.id,
        channel_instance_id=offline.id,
        external_id="5511988887777@s.whatsapp.net",
    )
    db.add_all([conversation, offline_conversation])
    db.commit()

    return SimpleNamespace(
        company_id=COMPANY_ID,
        other_company_id=OTHER_COMPANY_ID,
        lead=lead,
        conversation=conversation,
        offline_conversation=offline_conversation,
    )


@pytest.fixture
def stub_provider() -> StubChannelProvider:
    return StubChannelProvider(instance_name="loja-principal")


@pytest.fixture
def stub_storage() -> StubStorage:
    return StubStorage()


@pytest.fixture
def client(db, settings, stub_provider, stub_storage):
    """TestClient with every external collaborator replaced."""

    def override_get_db():
        yield db

    compensation = CompensationRunner(attempts=1, backoff=0)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_blob_storage] = lambda: stub_storage
    app.dependency_overrides[get_compensation] = lambda: compensation
    app.dependency_overrides[get_dispatcher] = lambda: OutboundDispatcher(
        provider_factory=lambda endpoint: stub_provider,
        settings=settings,
    )

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    return {"X-Company-Id": str(COMPANY_ID)}
