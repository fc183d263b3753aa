"""Shared test fixtures for the roadside escrow test suite.

Provides:
    - In-memory SQLite database (aiosqlite, SAVEPOINT-capable) and sessions
    - Customer and provider profiles with their actors
    - The in-process Paystack sandbox and a client bound to it
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from roadside_escrow.config import Settings
from roadside_escrow.domain.enums import ActorRole, ProfileRole
from roadside_escrow.domain.state_machine import Actor
from roadside_escrow.infrastructure.database.engine import enable_sqlite_savepoints
from roadside_escrow.infrastructure.database.orm_models import Base, Profile
from roadside_escrow.infrastructure.paystack import PaystackClient
from roadside_escrow.infrastructure.paystack_sandbox import PaystackSandbox
from roadside_escrow.services.lifecycle_service import LifecycleService
from roadside_escrow.services.settlement_service import SettlementService
from tests.helpers import CUSTOMER_POINT, TEST_SECRET, RecordingObserver, make_profile, north_of

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        paystack_secret_key=TEST_SECRET,
        provider_flush_interval_seconds=0.02,
        customer_flush_interval_seconds=0.02,
    )


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:  # noqa: ANN001
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:  # noqa: ANN001
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Profile Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def customer(session) -> Profile:  # noqa: ANN001
    return await make_profile(session, ProfileRole.CUSTOMER, "Ama Owusu", email="ama@example.com")


@pytest_asyncio.fixture
async def provider(session) -> Profile:  # noqa: ANN001
    return await make_profile(
        session,
        ProfileRole.PROVIDER,
        "Kofi Mensah",
        position=north_of(*CUSTOMER_POINT, 1.0),
        email="kofi@example.com",
        payout_details={
            "bank_code": "MTN",
            "account_number": "0241234567",
            "account_type": "mobile_money",
        },
    )


@pytest.fixture
def customer_actor(customer: Profile) -> Actor:
    return Actor(ActorRole.CUSTOMER, customer.id)


@pytest.fixture
def provider_actor(provider: Profile) -> Actor:
    return Actor(ActorRole.PROVIDER, provider.id)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def lifecycle(session, observer) -> LifecycleService:  # noqa: ANN001
    return LifecycleService(session, observers=[observer])


@pytest.fixture
def sandbox() -> PaystackSandbox:
    return PaystackSandbox(secret_key=TEST_SECRET)


@pytest_asyncio.fixture
async def gateway(sandbox: PaystackSandbox) -> AsyncGenerator[PaystackClient, None]:
    client = PaystackClient(secret_key=TEST_SECRET, transport=sandbox.transport())
    yield client
    await client.close()


@pytest.fixture
def settlement(session, gateway, lifecycle, settings) -> SettlementService:  # noqa: ANN001
    return SettlementService(session, gateway, lifecycle, settings)
