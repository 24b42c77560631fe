"""
Pytest configuration and fixtures for the questledger test suite.

Purpose
-------
Centralized fixtures for database, services, catalog and mocks.

Responsibilities
----------------
- Point Config at a throwaway SQLite database before any questledger import
- Per-test schema on a file-backed sqlite+aiosqlite database
- Service instances wired to a fresh EventBus and a fast retry policy
- Event recording and mock collaborators for unit tests

Architecture Notes
------------------
- Unit tests use mocks or pure functions (fast, isolated)
- Integration tests run the real services against SQLite; optimistic
  version checks and composite-key receipts behave the same as on PostgreSQL
- Every database fixture provides a clean slate per test
"""

from __future__ import annotations

import os

# Config and logging are set up at import time; the environment must be in
# place before the first questledger import.
os.environ["ENVIRONMENT"] = "testing"
os.environ["LOG_TO_FILE"] = "false"
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./questledger_test.db")

from pathlib import Path  # noqa: E402
from typing import Any, AsyncGenerator, Dict, List, Tuple  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from questledger.core.clock import ServerClock  # noqa: E402
from questledger.core.config.config import Config  # noqa: E402
from questledger.core.config.manager import ConfigManager  # noqa: E402
from questledger.core.database.retry_policy import (  # noqa: E402
    DatabaseRetryConfig,
    DatabaseRetryPolicy,
)
from questledger.core.database.service import DatabaseService  # noqa: E402
from questledger.core.event.bus import EventBus  # noqa: E402
from questledger.core.infra.audit_logger import AuditLogger  # noqa: E402
from questledger.core.logging.logger import clear_log_context, get_logger  # noqa: E402
from questledger.modules.catalog.loader import load_catalog, reset_catalog_cache  # noqa: E402
from questledger.modules.catalog.models import ChapterCatalog  # noqa: E402
from questledger.modules.lobby.service import LobbyService  # noqa: E402
from questledger.modules.progression.service import ProgressionService  # noqa: E402
from questledger.modules.rewards.service import RewardLedgerService  # noqa: E402

logger = get_logger(__name__)

CATALOG_PATH = Path(__file__).resolve().parents[1] / "config" / "catalog" / "chapters.yaml"


# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================


def pytest_configure(config):
    """Configure pytest environment."""
    os.environ["ENVIRONMENT"] = "testing"
    os.environ["LOG_TO_FILE"] = "false"


# ============================================================================
# ISOLATION
# ============================================================================


@pytest.fixture(autouse=True)
def reset_global_state() -> Any:
    """Drop config overrides, audit counters and log context between tests."""
    yield
    ConfigManager.clear_overrides()
    AuditLogger.reset_metrics()
    reset_catalog_cache()
    clear_log_context()


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncGenerator[str, None]:
    """
    Fresh SQLite database with the full schema.

    Scope: function (one database file per test)
    """
    url = f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"
    await DatabaseService.shutdown()
    await DatabaseService.initialize(database_url=url)
    await DatabaseService.create_all()

    yield url

    await DatabaseService.shutdown()


@pytest.fixture
def retry_policy() -> DatabaseRetryPolicy:
    """Generous attempts with millisecond backoff so contention tests stay fast."""
    return DatabaseRetryPolicy(
        DatabaseRetryConfig(
            max_attempts=25,
            initial_backoff_ms=1,
            max_backoff_ms=20,
            jitter_ms=5,
        )
    )


# ============================================================================
# DOMAIN FIXTURES
# ============================================================================


@pytest.fixture
def catalog() -> ChapterCatalog:
    return load_catalog(CATALOG_PATH, always_eligible=[1, 2])


@pytest.fixture
def clock() -> ServerClock:
    return ServerClock()


@pytest.fixture
def event_bus() -> EventBus:
    """Isolated bus; the module-level singleton is never touched by tests."""
    return EventBus()


class EventRecorder:
    """Collects (event_name, payload) pairs published on a bus."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def listen(self, *event_names: str) -> "EventRecorder":
        for name in event_names:
            self._bus.subscribe(name, self._make_listener(name), identifier=f"recorder@{name}")
        return self

    def _make_listener(self, name: str):
        async def _record(payload: Dict[str, Any]) -> None:
            self.events.append((name, dict(payload)))

        return _record

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def payloads(self, event_name: str) -> List[Dict[str, Any]]:
        return [payload for name, payload in self.events if name == event_name]


@pytest.fixture
def recorder(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus)


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def progression_service(
    database: str,
    catalog: ChapterCatalog,
    event_bus: EventBus,
    retry_policy: DatabaseRetryPolicy,
    clock: ServerClock,
) -> ProgressionService:
    return ProgressionService(
        ConfigManager,
        event_bus,
        get_logger("tests.progression"),
        catalog=catalog,
        retry_policy=retry_policy,
        clock=clock,
    )


@pytest.fixture
def reward_service(
    database: str,
    event_bus: EventBus,
    retry_policy: DatabaseRetryPolicy,
    clock: ServerClock,
) -> RewardLedgerService:
    return RewardLedgerService(
        ConfigManager,
        event_bus,
        get_logger("tests.rewards"),
        retry_policy=retry_policy,
        clock=clock,
    )


@pytest.fixture
def lobby_service(
    database: str,
    event_bus: EventBus,
    retry_policy: DatabaseRetryPolicy,
    clock: ServerClock,
) -> LobbyService:
    return LobbyService(
        ConfigManager,
        event_bus,
        get_logger("tests.lobby"),
        retry_policy=retry_policy,
        clock=clock,
    )


# ============================================================================
# MOCK FIXTURES
# ============================================================================


@pytest.fixture
def mock_event_bus(mocker):
    """Mock event bus for unit tests."""
    bus = mocker.MagicMock()
    bus.publish = mocker.AsyncMock(return_value=[])
    bus.subscribe = mocker.MagicMock()
    return bus


@pytest.fixture
def mock_config_manager(mocker):
    """Mock config manager returning each key's default unless overridden."""
    values: Dict[str, Any] = {}
    manager = mocker.MagicMock()
    manager.get = mocker.MagicMock(side_effect=lambda key, default=None: values.get(key, default))
    manager.values = values
    return manager


@pytest.fixture
def testing_config() -> type:
    """The loaded Config class (asserted to be in testing mode)."""
    assert Config.is_testing()
    return Config
