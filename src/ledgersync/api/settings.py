"""
API-specific settings.

Extends :class:`~ledgersync.core.settings.LedgerSyncSettings` with the
parameters that govern the REST transport (bind address, prefix, CORS).

All values can be overridden via ``LEDGERSYNC_*`` environment variables.
"""

from __future__ import annotations

from pydantic import Field

from ledgersync.core.settings import LedgerSyncSettings


class LedgerSyncAPISettings(LedgerSyncSettings):
    """Settings for the ledgersync REST API.

    Order of precedence (highest → lowest):
        1. Environment variables (``LEDGERSYNC_API_PREFIX``, etc.)
        2. ``.env`` file
        3. Defaults below
    """

    # ── Server ───────────────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8700, description="Bind port")
    debug: bool = Field(default=False, description="Expose exception text in 500 responses")

    # ── API ──────────────────────────────────────────────────────────────
    api_prefix: str = Field(default="/api/v1", description="URL prefix for all endpoints")
    api_title: str = Field(default="ledgersync API", description="OpenAPI title")
    api_version: str = Field(default="0.1.0", description="OpenAPI version string")

    # ── CORS ─────────────────────────────────────────────────────────────
    cors_origins: list[str] = Field(default=["*"], description="Allowed CORS origins")

    # ── Migrations ───────────────────────────────────────────────────────
    run_migrations: bool = Field(
        default=True,
        description="Drive started migrations on an in-process background thread",
    )
