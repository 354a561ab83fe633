"""
FastAPI application factory.

``create_app()`` wires middleware, routers, error handlers, and
lifespan events into a single ``FastAPI`` instance.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from ledgersync.api.deps import get_settings
from ledgersync.api.middleware.errors import unhandled_exception_handler
from ledgersync.api.middleware.request_id import RequestIDMiddleware
from ledgersync.api.middleware.timing import TimingMiddleware
from ledgersync.api.runner import MigrationRunner
from ledgersync.api.settings import LedgerSyncAPISettings
from ledgersync.core.connection import create_connection
from ledgersync.core.logging import get_logger

log = get_logger("ledgersync.api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Apply the schema on startup and resume an open migration; stop runners on shutdown."""
    settings: LedgerSyncAPISettings = app.state.settings
    log.info("api_starting", version=app.version)

    conn, info = create_connection(settings.database_url, init_schema=True)
    try:
        log.info("database_initialized", backend=info.backend, path=info.resolved_path)
        runner: MigrationRunner | None = app.state.migration_runner
        if runner is not None:
            from ledgersync.migration.store import MigrationStore

            open_run = MigrationStore(conn).get_open()
            if open_run is not None:
                log.info("resuming_open_migration", migration_id=open_run.id, state=open_run.state.value)
                runner.submit(open_run.id)
    finally:
        conn.close()

    yield

    if app.state.migration_runner is not None:
        app.state.migration_runner.shutdown()
    log.info("api_stopped")


def create_app(*, settings: LedgerSyncAPISettings | None = None) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : LedgerSyncAPISettings | None
        Override settings (useful for testing).  When ``None`` the cached
        singleton from :func:`get_settings` is used.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )

    app.state.settings = settings
    app.state.migration_runner = MigrationRunner(settings) if settings.run_migrations else None
    app.dependency_overrides[get_settings] = lambda: settings

    # ── Middleware (outermost → innermost) ────────────────────────────
    app.add_middleware(TimingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────
    from ledgersync.api.routers import health, jobs, migrations, overrides, quarantine, queues, sync

    prefix = settings.api_prefix

    # Health at root level (no prefix) for container healthchecks
    app.include_router(health.router, tags=["health"])

    app.include_router(sync.router, prefix=prefix, tags=["sync"])
    app.include_router(jobs.router, prefix=prefix, tags=["jobs"])
    app.include_router(queues.router, prefix=prefix, tags=["queues"])
    app.include_router(migrations.router, prefix=prefix, tags=["migrations"])
    app.include_router(quarantine.router, prefix=prefix, tags=["quarantine"])
    app.include_router(overrides.router, prefix=prefix, tags=["validation-overrides"])

    # ── Metrics endpoint (root-level, Prometheus format) ─────────
    @app.get("/metrics", tags=["observability"], response_class=PlainTextResponse)
    async def metrics_endpoint():
        """Export Prometheus-compatible metrics."""
        from ledgersync.observability.metrics import get_metrics_registry

        return PlainTextResponse(
            content=get_metrics_registry().export_prometheus(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    return app
