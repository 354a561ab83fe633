"""
Shared pytest fixtures and configuration for ledgersync tests.

This module provides:
- An in-memory SQLite connection with the pipeline schema applied
- A manually advanced clock for deterministic timing
- Submission factories and a seeded repository
- A queue manager, stub ledger, and inline worker wired to one connection

Usage:
    Fixtures are auto-discovered by pytest. Simply use them as function
    arguments (pytest injects them automatically).

    def test_something(manager, worker, seed_submissions):
        seed_submissions(3)
        ...
"""

import sys
from collections.abc import Callable, Generator
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

# Ensure ledgersync package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ledgersync.core.connection import SqliteConnection
from ledgersync.core.schema import create_core_tables
from ledgersync.core.settings import LedgerSyncSettings
from ledgersync.core.timestamps import FrozenClock
from ledgersync.domain.submissions import (
    SubmissionRecord,
    SubmissionRepository,
    SubmissionStatus,
    TimeEntry,
)
from ledgersync.execution.ledger_client import StubLedgerClient
from ledgersync.execution.queue import SyncQueueManager
from ledgersync.execution.worker import SyncWorker
from ledgersync.observability.metrics import MetricsRegistry, SyncMetrics

START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if test_path.parts and test_path.parts[0] in ("api", "cli"):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Storage
# =============================================================================


@pytest.fixture
def conn() -> Generator[SqliteConnection, None, None]:
    """In-memory connection with every pipeline table created."""
    connection = SqliteConnection(":memory:")
    create_core_tables(connection)
    yield connection
    connection.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def settings() -> LedgerSyncSettings:
    """Settings with jitter off so backoff delays are exact."""
    return LedgerSyncSettings(
        database_url=":memory:",
        backoff_jitter_range=0.0,
        liveness_timeout_seconds=60.0,
        migration_wave_timeout_seconds=600.0,
        migration_poll_interval_seconds=1.0,
    )


@pytest.fixture
def metrics() -> SyncMetrics:
    """Metrics on a private registry so counts do not leak between tests."""
    return SyncMetrics(MetricsRegistry())


# =============================================================================
# Submissions
# =============================================================================


def build_submission(
    submission_id: str = "TS-100",
    *,
    period_start: date = date(2026, 1, 5),
    status: SubmissionStatus = SubmissionStatus.APPROVED,
    **overrides: Any,
) -> SubmissionRecord:
    """A valid approved weekly submission; *overrides* replace any field."""
    fields: dict[str, Any] = {
        "id": submission_id,
        "user_id": "u-1",
        "user_email": "dana@example.com",
        "status": status,
        "period_start": period_start,
        "period_end": period_start + timedelta(days=6),
        "approved_at": START,
        "amount": 1200.0,
        "entries": [
            TimeEntry(
                id=f"{submission_id}-e1",
                work_date=period_start.isoformat(),
                minutes=480,
                client_id="c-1",
                project_id="p-1",
                billable=True,
                bill_rate=150.0,
            )
        ],
    }
    fields.update(overrides)
    return SubmissionRecord(**fields)


@pytest.fixture
def make_submission() -> Callable[..., SubmissionRecord]:
    return build_submission


@pytest.fixture
def repository(conn, clock) -> SubmissionRepository:
    return SubmissionRepository(conn, clock=clock)


@pytest.fixture
def seed_submissions(repository) -> Callable[..., list[str]]:
    """Insert *count* valid submissions, one per week from 2026-01-05."""

    def _seed(count: int, *, prefix: str = "TS", start: int = 1, **overrides: Any) -> list[str]:
        ids = []
        for n in range(start, start + count):
            record = build_submission(
                f"{prefix}-{n:03d}",
                period_start=date(2026, 1, 5) + timedelta(weeks=n - start),
                **overrides,
            )
            repository.save(record)
            ids.append(record.id)
        return ids

    return _seed


# =============================================================================
# Pipeline
# =============================================================================


@pytest.fixture
def manager(conn, repository, settings, clock, metrics) -> SyncQueueManager:
    return SyncQueueManager(
        conn,
        repository=repository,
        settings=settings,
        clock=clock,
        metrics=metrics,
    )


@pytest.fixture
def ledger() -> StubLedgerClient:
    return StubLedgerClient()


@pytest.fixture
def worker(manager, ledger, metrics) -> SyncWorker:
    """Worker used inline through ``run_once`` / ``drain``."""
    return SyncWorker(manager, ledger, pool_size=1, worker_id="w-test", metrics=metrics)
