"""
Pytest fixtures for the KIISHA job subsystem test suite.

Provides:
- Structured logging configured for every test, plus a capture fixture
- In-memory SQLite engine and sessions with the real ORM models
- A DeterministicClock (naive datetimes; SQLite strips tzinfo)
- Callers and service instances shared by the jobs tests
"""

import json
import logging
from datetime import datetime
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from kiisha_kernel.db.base import Base
from kiisha_kernel.domain.clock import DeterministicClock
from kiisha_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

# Register every table on Base.metadata
import kiisha_jobs.models  # noqa: F401

from kiisha_jobs.domain.access import Caller
from kiisha_jobs.services.access import JobAccessGuard
from kiisha_jobs.services.job_log import JobLog
from kiisha_jobs.services.lifecycle import JobLifecycleManager


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
    Capture kiisha logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, lifecycle):
            lifecycle.create_job("email_send")
            logs = captured_logs()
            assert any(r["message"] == "job_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("kiisha")
    old_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(old_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    eng = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    # Naive datetimes for SQLite compatibility (SQLite strips tzinfo)
    return DeterministicClock(fixed_time=datetime(2026, 2, 1, 12, 0, 0))


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def owner():
    return Caller(user_id=uuid4())


@pytest.fixture
def other_user():
    return Caller(user_id=uuid4())


@pytest.fixture
def admin():
    return Caller(user_id=uuid4(), is_admin=True)


@pytest.fixture
def job_log(db_session, clock):
    return JobLog(db_session, clock=clock)


@pytest.fixture
def lifecycle(db_session, clock, job_log):
    return JobLifecycleManager(db_session, clock=clock, job_log=job_log)


@pytest.fixture
def guard(lifecycle, job_log):
    return JobAccessGuard(lifecycle, job_log)
