"""
Pytest fixtures for the roster test suite.

Provides:
- A file-backed SQLite database per test (tables + immutability listeners)
- A session factory bound to it
- A DeterministicClock
- An InMemoryEntityStore seeded with three employees
- A fully wired BulkEditOrchestrator (and a factory for custom wiring)
- Captured structured logs
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO

import pytest
from sqlalchemy.orm import sessionmaker

from roster_batch.entities.base import InMemoryEntityStore
from roster_batch.orchestrator import BulkEditOrchestrator
from roster_batch.services.change_store import ChangeBatchStore, ChangeLogStore
from roster_config import get_active_config
from roster_kernel.db.engine import build_engine, create_tables
from roster_kernel.domain.clock import DeterministicClock
from roster_kernel.exceptions import StorageError
from roster_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

FIXED_TIME = datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc)

SEED_EMPLOYEES = {
    "e1": {
        "full_name": "Ada Lovelace",
        "department": "Sales",
        "dept": "Sales",
        "base_salary": 100000,
        "job_level": "L3",
    },
    "e2": {
        "full_name": "Grace Hopper",
        "department": "Marketing",
        "dept": "Marketing",
        "base_salary": 120000,
        "job_level": "L4",
    },
    "e3": {
        "full_name": "Edsger Dijkstra",
        "department": "Research",
        "dept": "Research",
        "base_salary": 130000,
        "job_level": "L5",
    },
}


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture roster logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.submit_batch(...)
            logs = captured_logs()
            assert any(r["message"] == "batch_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("roster")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    """File-backed SQLite engine with all roster tables."""
    engine = build_engine(f"sqlite:///{tmp_path / 'roster.db'}")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def engine(db_engine):
    return db_engine


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def batch_store(session_factory):
    return ChangeBatchStore(session_factory)


@pytest.fixture
def log_store(session_factory):
    return ChangeLogStore(session_factory)


# =============================================================================
# Engine collaborators
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(fixed_time=FIXED_TIME)


@pytest.fixture(scope="session")
def roster_config():
    return get_active_config()


@pytest.fixture
def entity_store():
    return InMemoryEntityStore(SEED_EMPLOYEES)


class FailingLogStore(ChangeLogStore):
    """Log store whose inserts always fail (reads still work)."""

    def append_many(self, batch_id, drafts, created_at, submitter_id=None):
        raise StorageError("log.append_many", "simulated insert failure")


@pytest.fixture
def make_orchestrator(session_factory, entity_store, roster_config, clock):
    """Factory for orchestrators with overridden collaborators."""

    def _make(**overrides) -> BulkEditOrchestrator:
        kwargs = {
            "session_factory": session_factory,
            "entity_store": entity_store,
            "config": roster_config,
            "clock": clock,
        }
        if overrides.pop("failing_logs", False):
            kwargs["log_store"] = FailingLogStore(session_factory)
        kwargs.update(overrides)
        return BulkEditOrchestrator(**kwargs)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()

