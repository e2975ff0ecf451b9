"""Test fixtures using an in-memory SQLite database (aiosqlite).

Every test gets a fresh schema, so tests can commit freely.
"""

import pytest
import pytest_asyncio

from switchboard.config import Settings
from switchboard.orchestration.schemas import OrchestrationState
from switchboard.storage.database import Database
from switchboard.storage.store import AuditLog, MessageLog, StateStore

# ---------------------------------------------------------------------------
# Settings / database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """In-memory SQLite, debounce off."""
    return Settings(DATABASE_URL="sqlite+aiosqlite://", debounce_enabled=False)


@pytest_asyncio.fixture
async def db(settings):
    """Function-scoped database with all tables created."""
    database = Database(settings)
    await database.connect()
    await database.create_all()
    yield database
    await database.disconnect()


@pytest.fixture
def store(db) -> StateStore:
    return StateStore(db)


@pytest.fixture
def message_log(db) -> MessageLog:
    return MessageLog(db)


@pytest.fixture
def audit_log(db) -> AuditLog:
    return AuditLog(db)


@pytest.fixture
def state() -> OrchestrationState:
    return OrchestrationState()
