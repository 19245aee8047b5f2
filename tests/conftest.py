"""Shared test fixtures and configuration."""
import asyncio
import os
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("TELNYX_API_KEY", "test-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CALL_CONTROL_APP_ID", "test-app")
os.environ.setdefault("TELNYX_DEFAULT_CALLER_ID", "+15550000000")

from dispo_voice.main import app
from dispo_voice.db.database import get_db
from dispo_voice.db.models import Base
from dispo_voice.core.config import Settings
from dispo_voice.core.dependencies import get_call_control_client, get_settings
from dispo_voice.services.call_control.models import CommandAck
from dispo_voice.services.legs.models import LegRole
from dispo_voice.services.legs.registry import CallLegRegistry
from dispo_voice.services.transfer.ledger import TransferLedger
from dispo_voice.services.transfer.orchestrator import TransferOrchestrator
from dispo_voice.services.webhooks.processor import CallEventProcessor


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeCallControlClient:
    """
    Records every command instead of sending it.

    ``fail(action, error)`` makes the next and all later calls of ``action``
    raise ``error``. ``hooks[action]`` is awaited before ``action`` is
    recorded. Setting ``transfer_gate`` holds ``transfer`` open until the
    gate is set.
    """

    def __init__(self, dial_leg_id: str = "K1"):
        self.calls: List[Tuple[str, Optional[str], Dict[str, Any]]] = []
        self.failures: Dict[str, Exception] = {}
        self.dial_leg_id = dial_leg_id
        self.transfer_started = asyncio.Event()
        self.transfer_gate: Optional[asyncio.Event] = None
        self.hooks: Dict[str, Callable[[], Awaitable[Any]]] = {}

    def fail(self, action: str, error: Exception) -> None:
        self.failures[action] = error

    def actions(self) -> List[str]:
        return [action for action, _, _ in self.calls]

    def calls_for(self, action: str) -> List[Tuple[str, Optional[str], Dict[str, Any]]]:
        return [call for call in self.calls if call[0] == action]

    async def _command(self, action: str, leg_id: str, **kwargs) -> CommandAck:
        if action in self.hooks:
            await self.hooks[action]()
        self.calls.append((action, leg_id, kwargs))
        if action in self.failures:
            raise self.failures[action]
        return CommandAck(
            leg_id=leg_id,
            action=action,
            command_id=kwargs.get("command_id"),
            result="ok",
            data={"result": "ok"},
        )

    async def dial(self, to, from_, connection_id, webhook_url=None, client_state=None, command_id=None):
        self.calls.append((
            "dial",
            None,
            {
                "to": to,
                "from_": from_,
                "connection_id": connection_id,
                "webhook_url": webhook_url,
                "client_state": client_state,
                "command_id": command_id,
            },
        ))
        if "dial" in self.failures:
            raise self.failures["dial"]
        return self.dial_leg_id

    async def bridge(self, leg_id, target_leg_id, command_id):
        return await self._command("bridge", leg_id, target_leg_id=target_leg_id, command_id=command_id)

    async def transfer(self, leg_id, to, command_id):
        self.transfer_started.set()
        if self.transfer_gate is not None:
            await self.transfer_gate.wait()
        return await self._command("transfer", leg_id, to=to, command_id=command_id)

    async def hangup(self, leg_id, command_id=None):
        return await self._command("hangup", leg_id, command_id=command_id)

    async def playback_start(self, leg_id, audio_url, command_id=None, loop="infinity", target_legs="both"):
        return await self._command("playback_start", leg_id, audio_url=audio_url, command_id=command_id)

    async def playback_stop(self, leg_id, command_id=None):
        return await self._command("playback_stop", leg_id, command_id=command_id)

    async def record_start(self, leg_id, channels="single", command_id=None):
        return await self._command("record_start", leg_id, channels=channels, command_id=command_id)


@pytest.fixture
def test_settings():
    """Override settings for testing."""
    return Settings(
        telnyx_api_key="test-key",
        telnyx_api_url="https://api.telnyx.test/v2",
        call_control_app_id="test-app",
        telnyx_default_caller_id="+15550000000",
        call_control_webhook_url="https://crm.test/webhooks/telnyx/voice",
        hold_music_url="https://crm.test/sounds/on-hold.mp3",
        database_url=TEST_DATABASE_URL,
    )


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def test_db(test_db_engine):
    """Create test database session."""
    async_session = async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


@pytest.fixture
async def session_factory(tmp_path):
    """Sessionmaker on a file database, for tests that need independent connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'dispo.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def broken_db():
    """Session on a database without tables, so every query fails."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def fake_call_control():
    """Call-control client that records commands."""
    return FakeCallControlClient()


@pytest.fixture
def registry(test_db):
    return CallLegRegistry(test_db)


@pytest.fixture
def ledger(test_db):
    return TransferLedger(test_db)


@pytest.fixture
def orchestrator(registry, ledger, fake_call_control, test_settings):
    return TransferOrchestrator(registry, ledger, fake_call_control, test_settings)


@pytest.fixture
def processor(registry, ledger):
    return CallEventProcessor(registry, ledger)


@pytest.fixture
async def session_s1(registry):
    """Session s1 with customer leg C1 and agent leg A1."""
    await registry.set_leg("s1", LegRole.CUSTOMER, "C1", agent_id="agent-1")
    await registry.set_leg("s1", LegRole.AGENT, "A1")
    return "s1"


@pytest.fixture
def override_get_db(test_db):
    """Override get_db dependency with test database."""
    async def _override_get_db():
        yield test_db
    return _override_get_db


@pytest.fixture
async def api_client(override_get_db, fake_call_control, test_settings):
    """Async HTTP client bound to the app with test overrides."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_call_control_client] = lambda: fake_call_control
    app.dependency_overrides[get_settings] = lambda: test_settings

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    # Clear overrides
    app.dependency_overrides.clear()


# Pytest configuration
def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test"
    )
