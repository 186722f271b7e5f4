# ==== SHARED TEST FIXTURES AND CONFIGURATION ==== #

"""
Shared test fixtures.

Unit suites run against the in-memory collaborators in ``tests.fakes``;
integration suites get a fresh in-memory SQLite database per test.
"""

import os

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Settings are read at import time
os.environ.update({
    "ENVIRONMENT": "development",
    "DATABASE_URL": "sqlite+aiosqlite://",
    "MAIL_TRANSPORT": "disabled",
    "AUDIT_INTERVAL_SECONDS": "0",
    "RUN_SWEEP_ON_STARTUP": "false",
    "LOG_LEVEL": "WARNING",
    "THRESHOLD_POLICY_PATH": "tests/does-not-exist.yaml",
})

from orderflow.config import settings  # noqa: E402
from orderflow.infrastructure import database  # noqa: E402
from orderflow.main import app as fastapi_app  # noqa: E402
from orderflow.sla.application import (  # noqa: E402
    AuditSweepEngine,
    DwellEvaluator,
    NotificationDispatcher,
    SweepCoordinator,
)
from orderflow.sla.domain import ThresholdPolicy  # noqa: E402
from orderflow.sla.infrastructure import ThresholdPolicyManager  # noqa: E402
from orderflow.sla.infrastructure.factory import build_audit_components  # noqa: E402

from tests.fakes import (  # noqa: E402
    FakeClock,
    InMemoryJournal,
    InMemoryOrderRepository,
    RecordingTransport,
    StaticDirectory,
    StaticPolicyProvider,
)


# ==== UNIT FIXTURES ==== #

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryOrderRepository()


@pytest.fixture
def journal():
    return InMemoryJournal()


@pytest.fixture
def directory():
    return StaticDirectory()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def policy():
    return ThresholdPolicy.default()


@pytest.fixture
def engine(store, journal, directory, transport, clock):
    """Sweep engine wired to the in-memory collaborators."""
    return AuditSweepEngine(
        order_source=store,
        journal=journal,
        directory=directory,
        dispatcher=NotificationDispatcher(transport, timeout_seconds=1.0),
        evaluator=DwellEvaluator(clock),
        clock=clock,
    )


@pytest.fixture
def coordinator(engine, policy):
    return SweepCoordinator(engine, StaticPolicyProvider(policy))


# ==== DATABASE FIXTURES ==== #

@pytest_asyncio.fixture
async def db():
    """Fresh in-memory SQLite database with all tables."""
    database.init_database("sqlite+aiosqlite://")
    await database.create_tables()
    yield database.get_session_maker()
    await database.close_database()


# ==== APPLICATION FIXTURES ==== #

@pytest_asyncio.fixture
async def app(db):
    """FastAPI app with the audit components wired to the test database."""
    policy_manager = ThresholdPolicyManager()
    policy_manager.load(settings.threshold_policy_path)
    audit = build_audit_components(settings, db, policy_manager)

    fastapi_app.state.policy_manager = policy_manager
    fastapi_app.state.dwell_evaluator = audit.evaluator
    fastapi_app.state.notification_journal = audit.journal
    fastapi_app.state.sweep_coordinator = audit.coordinator
    fastapi_app.state.audit_scheduler = None
    yield fastapi_app


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
