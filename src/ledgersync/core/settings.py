"""Process-wide settings for ledgersync.

Settings are read once at startup from ``LEDGERSYNC_*`` environment
variables and an optional ``.env`` file.  Components receive the values
they need explicitly (constructor arguments), so tests can build them
without touching the environment.

Examples:
    >>> settings = LedgerSyncSettings(worker_pool_size=2)
    >>> settings.sqlite_path
    'ledgersync.db'

Tags:
    settings, configuration, pydantic, environment, ledgersync
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSyncSettings(BaseSettings):
    """Pipeline settings shared by the worker, the API, and the CLI.

    Fields
    ──────
    database_url               : ``sqlite:///path.db``, a bare path, or ``:memory:``
    worker_pool_size           : Upper bound on concurrent ledger calls per worker process
    liveness_timeout_seconds   : Heartbeat age after which an active job is requeued
    migration_failure_threshold: Wave failure ratio that fails a migration
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGERSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite:///ledgersync.db",
        description="Connection URL for the durable job store",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    # ── Workers ──────────────────────────────────────────────────
    worker_pool_size: int = Field(default=4, ge=1, le=64)
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    liveness_timeout_seconds: float = Field(default=300.0, gt=0)
    heartbeat_interval_seconds: float = Field(default=15.0, gt=0)

    # ── Backoff ──────────────────────────────────────────────────
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    backoff_max_delay_seconds: float = Field(default=3600.0, gt=0)
    backoff_jitter_range: float = Field(default=0.25, ge=0.0, le=1.0)

    # ── Batch migration ──────────────────────────────────────────
    migration_failure_threshold: float = Field(default=0.5, gt=0.0, le=1.0)
    migration_wave_timeout_seconds: float = Field(default=3600.0, gt=0)
    migration_poll_interval_seconds: float = Field(default=2.0, gt=0)

    # ── Ledger connection ────────────────────────────────────────
    ledger_base_url: str = "http://localhost:9100"
    ledger_api_token: SecretStr | None = None
    ledger_timeout_seconds: float = Field(default=30.0, gt=0)

    @property
    def sqlite_path(self) -> str:
        """Filesystem path (or ``:memory:``) for the SQLite backend."""
        url = self.database_url
        if url.startswith("sqlite:///"):
            return url[len("sqlite:///"):]
        if url in ("memory", "sqlite://"):
            return ":memory:"
        return url


@lru_cache(maxsize=1)
def get_settings() -> LedgerSyncSettings:
    """Cached settings, loaded once per process."""
    return LedgerSyncSettings()
