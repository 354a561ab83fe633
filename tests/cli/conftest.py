"""Shared fixtures for CLI tests: a temp database and a CliRunner."""

from __future__ import annotations

import json
import logging
from datetime import date, timedelta

import pytest
import structlog
from typer.testing import CliRunner

from ledgersync.cli.app import app
from ledgersync.core.connection import create_connection
from ledgersync.domain.submissions import SubmissionRepository
from ledgersync.quarantine.store import QuarantineStore


@pytest.fixture(autouse=True)
def _reset_logging():
    """Each invocation points logging at the runner's stderr; detach afterwards."""
    yield
    logging.basicConfig(force=True, handlers=[logging.NullHandler()])
    structlog.reset_defaults()


@pytest.fixture()
def database(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture()
def db(database):
    conn, _info = create_connection(database, init_schema=True)
    yield conn
    conn.close()


@pytest.fixture()
def seed(db, make_submission):
    """Save *count* approved submissions ``TS-001``.. weekly from 2026-01-05."""

    def _seed(count: int) -> list[str]:
        repository = SubmissionRepository(db)
        for n in range(1, count + 1):
            repository.save(make_submission(f"TS-{n:03d}", period_start=date(2026, 1, 5) + timedelta(weeks=n - 1)))
        return [f"TS-{n:03d}" for n in range(1, count + 1)]

    return _seed


@pytest.fixture()
def quarantine_store(db) -> QuarantineStore:
    return QuarantineStore(db)


@pytest.fixture()
def cli(database):
    """Invoke the app against the temp database: ``cli("sync", "list")``."""
    runner = CliRunner()

    def _invoke(*args: str):
        return runner.invoke(app, [*args, "--database", database])

    return _invoke


@pytest.fixture()
def cli_json(cli):
    """Invoke with ``--json`` and decode stdout."""

    def _invoke(*args: str):
        result = cli(*args, "--json")
        assert result.exit_code == 0, result.output
        return json.loads(result.stdout)

    return _invoke
