"""Shared fixtures for API tests: a file-backed database and a TestClient."""

from __future__ import annotations

from collections.abc import Generator
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from ledgersync.api.app import create_app
from ledgersync.api.settings import LedgerSyncAPISettings
from ledgersync.core.connection import SqliteConnection, create_connection
from ledgersync.domain.submissions import SubmissionRepository
from ledgersync.quarantine.store import QuarantineStore


@pytest.fixture()
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'ledgersync.db'}"


@pytest.fixture()
def api_settings(database_url) -> LedgerSyncAPISettings:
    return LedgerSyncAPISettings(
        database_url=database_url,
        run_migrations=False,
        backoff_jitter_range=0.0,
    )


@pytest.fixture()
def client(api_settings) -> Generator[TestClient, None, None]:
    app = create_app(settings=api_settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def db(client, database_url) -> Generator[SqliteConnection, None, None]:
    """Side connection for seeding and inspecting the API's database."""
    conn, _info = create_connection(database_url, init_schema=True)
    yield conn
    conn.close()


@pytest.fixture()
def seed(db, make_submission):
    """Save *count* approved submissions ``TS-001``.. and return their ids."""

    def _seed(count: int) -> list[str]:
        repository = SubmissionRepository(db)
        ids = []
        for n in range(1, count + 1):
            record = make_submission(f"TS-{n:03d}", period_start=date(2026, 1, 5) + timedelta(weeks=n - 1))
            repository.save(record)
            ids.append(record.id)
        return ids

    return _seed


@pytest.fixture()
def quarantine_store(db) -> QuarantineStore:
    return QuarantineStore(db)
