"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

import itertools
import json
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from outreach.calls.dependencies import get_flow_config
from outreach.calls.lifecycle import CallLifecycleManager
from outreach.calls.models import CallSession, CallStatus
from outreach.dialogue.flow import FlowConfig, FlowController
from outreach.dialogue.state import CallStateStore, get_call_state_store
from outreach.members.models import Member, MemberStatus
from outreach.shared.database import Base, get_db_session
from outreach.shared.locks import KeyedLocks
from outreach.telephony.adapters.mock import MockTelephonyProvider
from outreach.telephony.config import ProviderType, TelephonyConfig
from outreach.telephony.factory import get_telephony_config, get_telephony_provider
from outreach.telephony.webhooks.dedup import ProcessedEventRegistry, get_event_registry
from outreach.telephony.webhooks.handler import EventRouter

CALLBACK_BASE_URL = "https://outreach.example.org"


# ---------------------------------------------------------------------------
# Database (in-memory SQLite shared by every session of one test)
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def provider() -> MockTelephonyProvider:
    return MockTelephonyProvider()


@pytest.fixture
def call_states() -> CallStateStore:
    return CallStateStore()


@pytest.fixture
def registry() -> ProcessedEventRegistry:
    return ProcessedEventRegistry()


@pytest.fixture
def flow_config() -> FlowConfig:
    return FlowConfig(
        detection_timeout_seconds=5,
        question_timeout_seconds=10,
        inter_tone_timeout_seconds=2,
        max_invalid_retries=2,
    )


@pytest.fixture
def telephony_config() -> TelephonyConfig:
    return TelephonyConfig(
        provider_type=ProviderType.MOCK,
        from_number="+15550000000",
        callback_base_url=CALLBACK_BASE_URL,
    )


@pytest.fixture
def flow(
    db_session: AsyncSession,
    provider: MockTelephonyProvider,
    call_states: CallStateStore,
    flow_config: FlowConfig,
) -> FlowController:
    return FlowController(
        session=db_session,
        provider=provider,
        call_states=call_states,
        config=flow_config,
        call_locks=KeyedLocks(),
    )


@pytest.fixture
def lifecycle(
    db_session: AsyncSession,
    provider: MockTelephonyProvider,
    flow: FlowController,
    telephony_config: TelephonyConfig,
) -> CallLifecycleManager:
    return CallLifecycleManager(
        session=db_session,
        provider=provider,
        flow=flow,
        telephony_config=telephony_config,
        member_locks=KeyedLocks(),
    )


@pytest.fixture
def event_router(
    registry: ProcessedEventRegistry,
    lifecycle: CallLifecycleManager,
    flow: FlowController,
) -> EventRouter:
    return EventRouter(registry=registry, lifecycle=lifecycle, flow=flow)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_member(db_session: AsyncSession) -> Callable[..., Awaitable[Member]]:
    counter = itertools.count(1)

    async def _make(status: MemberStatus = MemberStatus.ACTIVE, **overrides: Any) -> Member:
        n = next(counter)
        fields: dict[str, Any] = {
            "first_name": "Jordan",
            "last_name": f"Rivera{n}",
            "phone_number": f"+1555010{n:04d}",
            "program": "Community Health Plan",
            "status": status,
        }
        fields.update(overrides)
        member = Member(**fields)
        db_session.add(member)
        await db_session.commit()
        return member

    return _make


@pytest.fixture
def make_call_session(db_session: AsyncSession) -> Callable[..., Awaitable[CallSession]]:
    async def _make(
        member: Member,
        status: CallStatus = CallStatus.CONNECTED,
        call_connection_id: str | None = "conn-1",
    ) -> CallSession:
        call_session = CallSession(
            member_id=member.id,
            status=status,
            call_connection_id=call_connection_id,
        )
        db_session.add(call_session)
        await db_session.commit()
        return call_session

    return _make


@pytest.fixture
def make_event() -> Callable[..., bytes]:
    """Build a raw provider event body."""

    def _make(
        event_type: str,
        call_connection_id: str | None = "conn-1",
        event_id: str | None = None,
        **data: Any,
    ) -> bytes:
        payload_data: dict[str, Any] = dict(data)
        if call_connection_id is not None:
            payload_data["callConnectionId"] = call_connection_id
        envelope = {
            "id": event_id or str(uuid.uuid4()),
            "type": f"Microsoft.Communication.{event_type}",
            "time": "2026-10-18T09:30:00Z",
            "data": payload_data,
        }
        return json.dumps(envelope).encode()

    return _make


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    provider: MockTelephonyProvider,
    call_states: CallStateStore,
    registry: ProcessedEventRegistry,
    telephony_config: TelephonyConfig,
    flow_config: FlowConfig,
) -> AsyncGenerator[AsyncClient, None]:
    from outreach.main import app

    async def _override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = _override_get_db_session
    app.dependency_overrides[get_telephony_provider] = lambda: provider
    app.dependency_overrides[get_call_state_store] = lambda: call_states
    app.dependency_overrides[get_event_registry] = lambda: registry
    app.dependency_overrides[get_telephony_config] = lambda: telephony_config
    app.dependency_overrides[get_flow_config] = lambda: flow_config

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
