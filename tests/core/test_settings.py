"""Tests for ``ledgersync.core.settings``."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from ledgersync.core.settings import LedgerSyncSettings


class TestLedgerSyncSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LEDGERSYNC_DATABASE_URL", raising=False)
        settings = LedgerSyncSettings(_env_file=None)
        assert settings.database_url == "sqlite:///ledgersync.db"
        assert settings.liveness_timeout_seconds == 300.0
        assert settings.migration_failure_threshold == 0.5
        assert settings.migration_wave_timeout_seconds == 3600.0
        assert settings.ledger_api_token is None

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("LEDGERSYNC_WORKER_POOL_SIZE", "8")
        monkeypatch.setenv("LEDGERSYNC_LEDGER_API_TOKEN", "s3cret")
        settings = LedgerSyncSettings(_env_file=None)
        assert settings.worker_pool_size == 8
        assert settings.ledger_api_token.get_secret_value() == "s3cret"
        assert "s3cret" not in repr(settings)

    @pytest.mark.parametrize(
        "field, value",
        [
            ("worker_pool_size", 0),
            ("backoff_jitter_range", 1.5),
            ("migration_failure_threshold", 0),
            ("liveness_timeout_seconds", -1),
        ],
    )
    def test_out_of_range_rejected(self, field, value):
        with pytest.raises(ValidationError):
            LedgerSyncSettings(_env_file=None, **{field: value})

    @pytest.mark.parametrize(
        "url, path",
        [
            ("sqlite:///data/ls.db", "data/ls.db"),
            ("memory", ":memory:"),
            ("sqlite://", ":memory:"),
            ("./ls.db", "./ls.db"),
        ],
    )
    def test_sqlite_path(self, url, path):
        assert LedgerSyncSettings(_env_file=None, database_url=url).sqlite_path == path
