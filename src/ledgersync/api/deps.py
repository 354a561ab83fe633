"""
FastAPI dependency injection: shared singletons and per-request factories.

Usage in routers::

    from ledgersync.api.deps import OpContext

    @router.get("/things")
    def list_things(ctx: OpContext):
        ...
"""

from __future__ import annotations

import uuid
from collections.abc import Generator
from functools import lru_cache
from typing import Annotated, Any

from fastapi import Depends, Header, Request

from ledgersync.api.runner import MigrationRunner
from ledgersync.api.settings import LedgerSyncAPISettings
from ledgersync.core.connection import create_connection
from ledgersync.ops.context import OperationContext

# ── Settings (singleton) ─────────────────────────────────────────────────


@lru_cache(maxsize=1)
def get_settings() -> LedgerSyncAPISettings:
    """Cached settings, loaded once per process."""
    return LedgerSyncAPISettings()


# ── Database connection (per-request) ────────────────────────────────────


def get_connection(
    settings: Annotated[LedgerSyncAPISettings, Depends(get_settings)],
) -> Generator[Any, None, None]:
    """Yield a database connection for the request lifespan."""
    conn, _info = create_connection(settings.database_url)
    try:
        yield conn
    finally:
        conn.close()


# ── Actor identity (per-request) ─────────────────────────────────────────


def get_actor(
    x_actor_id: Annotated[str | None, Header(alias="X-Actor-ID")] = None,
) -> str:
    """Acting identity from ``X-Actor-ID`` (``system`` when absent)."""
    return x_actor_id or "system"


# ── Operation context (per-request) ──────────────────────────────────────


def get_operation_context(
    request: Request,
    conn: Annotated[Any, Depends(get_connection)],
    settings: Annotated[LedgerSyncAPISettings, Depends(get_settings)],
    actor: Annotated[str, Depends(get_actor)],
) -> OperationContext:
    """Build an :class:`OperationContext` from the current request."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    return OperationContext(
        conn=conn,
        request_id=request_id,
        caller="api",
        user=actor,
        settings=settings,
    )


# ── Migration runner (application-owned) ─────────────────────────────────


def get_migration_runner(request: Request) -> MigrationRunner | None:
    """The app's background migration runner, ``None`` when disabled."""
    return getattr(request.app.state, "migration_runner", None)


# ── Convenience type aliases ─────────────────────────────────────────────

Settings = Annotated[LedgerSyncAPISettings, Depends(get_settings)]
Conn = Annotated[Any, Depends(get_connection)]
Actor = Annotated[str, Depends(get_actor)]
OpContext = Annotated[OperationContext, Depends(get_operation_context)]
Runner = Annotated[MigrationRunner | None, Depends(get_migration_runner)]
