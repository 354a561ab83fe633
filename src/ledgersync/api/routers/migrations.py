"""
Migrations router: supervised batch replays of historical submissions.

Endpoints:
    POST /migrations                 Start a migration (runs in the background)
    GET  /migrations                 List migrations, newest first
    GET  /migrations/analyze         Pre-flight estimate, no writes
    GET  /migrations/validate        Validation report over the dataset
    GET  /migrations/{id}            Progress snapshot
    POST /migrations/{id}/control    pause | resume | cancel
"""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Path, Query, Request

from ledgersync.api.deps import OpContext, Runner
from ledgersync.api.schemas.common import PagedResponse, PageMeta, SuccessResponse
from ledgersync.api.schemas.domains import (
    MigrationControlBody,
    MigrationSummarySchema,
    StartMigrationBody,
)
from ledgersync.api.utils import _dc, _handle_error

router = APIRouter(prefix="/migrations")


@router.post("", status_code=202, response_model=SuccessResponse[MigrationSummarySchema])
def start_migration(ctx: OpContext, body: StartMigrationBody, request: Request, runner: Runner):
    """Freeze the dataset and start a migration.

    Returns as soon as the migration is ``running``; waves are generated on
    a background thread owned by the application.  Poll
    ``GET /migrations/{id}`` for progress.

    Raises:
        400 VALIDATION_FAILED: invalid config (batch size, date range).
        409 CONFLICT: another migration is still open.
    """
    from ledgersync.ops.migrations import start_migration as _start
    from ledgersync.ops.requests import StartMigrationRequest

    result = _start(
        ctx,
        StartMigrationRequest(
            batch_size=body.batch_size,
            delay_between_batches=body.delay_between_batches,
            max_retries=body.max_retries,
            dry_run=body.dry_run,
            date_from=body.date_from,
            date_to=body.date_to,
            include_rejected=body.include_rejected,
        ),
    )
    if not result.success:
        return _handle_error(result, str(request.url))
    warnings = list(result.warnings)
    if runner is not None:
        runner.submit(result.data.id)
    else:
        warnings.append(f"Background runner disabled; run 'ledgersync migration run {result.data.id}'")
    return SuccessResponse(
        data=MigrationSummarySchema(**_dc(result.data)),
        elapsed_ms=result.elapsed_ms,
        warnings=warnings,
    )


@router.get("", response_model=PagedResponse[MigrationSummarySchema])
def list_migrations(
    ctx: OpContext,
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    from ledgersync.ops.migrations import list_migrations as _list

    result = _list(ctx, limit=limit, offset=offset)
    if not result.success:
        return _handle_error(result, str(request.url))
    return PagedResponse(
        data=[MigrationSummarySchema(**_dc(m)) for m in (result.data or [])],
        page=PageMeta(total=result.total, limit=result.limit, offset=result.offset, has_more=result.has_more),
        elapsed_ms=result.elapsed_ms,
    )


@router.get("/analyze", response_model=SuccessResponse[dict[str, Any]])
def analyze_migration(
    ctx: OpContext,
    request: Request,
    date_from: date | None = Query(None, description="First work date included"),
    date_to: date | None = Query(None, description="Last work date included"),
    batch_size: int = Query(50, ge=1, le=500),
    delay_between_batches: float = Query(0.0, ge=0, description="Seconds between waves"),
):
    """Approved-record counts, date span, wave count and duration estimate."""
    from ledgersync.ops.migrations import analyze_migration as _analyze
    from ledgersync.ops.requests import AnalyzeMigrationRequest

    result = _analyze(
        ctx,
        AnalyzeMigrationRequest(
            date_from=date_from,
            date_to=date_to,
            batch_size=batch_size,
            delay_between_batches=delay_between_batches,
        ),
    )
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.get("/validate", response_model=SuccessResponse[dict[str, Any]])
def validate_migration(
    ctx: OpContext,
    request: Request,
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    include_rejected: bool = Query(False),
):
    """Per-record validation issues for the records a migration would replay."""
    from ledgersync.ops.migrations import validate_migration as _validate
    from ledgersync.ops.requests import ValidateMigrationRequest

    result = _validate(
        ctx,
        ValidateMigrationRequest(date_from=date_from, date_to=date_to, include_rejected=include_rejected),
    )
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms, warnings=result.warnings)


@router.get("/{migration_id}", response_model=SuccessResponse[dict[str, Any]])
def migration_progress(
    ctx: OpContext,
    request: Request,
    migration_id: str = Path(..., description="Migration ID"),
):
    """Counters, current wave, estimated completion, and the latest errors."""
    from ledgersync.ops.migrations import get_migration_progress
    from ledgersync.ops.requests import GetMigrationRequest

    result = get_migration_progress(ctx, GetMigrationRequest(migration_id=migration_id))
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.post("/{migration_id}/control", response_model=SuccessResponse[dict[str, Any]])
def control_migration(
    ctx: OpContext,
    body: MigrationControlBody,
    request: Request,
    runner: Runner,
    migration_id: str = Path(..., description="Migration ID"),
):
    """Pause, resume or cancel.  Only the generation of new waves is affected."""
    from ledgersync.ops.migrations import control_migration as _control
    from ledgersync.ops.requests import MigrationControlRequest

    result = _control(ctx, MigrationControlRequest(migration_id=migration_id, action=body.action))
    if not result.success:
        return _handle_error(result, str(request.url))
    if body.action == "resume" and runner is not None:
        # No-op while this process still has a thread polling the paused migration.
        runner.submit(migration_id)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)
