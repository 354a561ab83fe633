"""
Sync operations: enqueue, batch sync, job inspection, cancellation.

Wraps :class:`~ledgersync.execution.queue.SyncQueueManager` with typed
contracts.  The acting identity (``ctx.user``) is stored in job metadata.
"""

from __future__ import annotations

from ledgersync.core.errors import LedgerSyncError
from ledgersync.core.logging import get_logger
from ledgersync.core.timestamps import to_iso8601
from ledgersync.execution.models import EnqueueOptions, SyncJob
from ledgersync.ops.components import queue_manager
from ledgersync.ops.context import OperationContext
from ledgersync.ops.requests import (
    CancelJobRequest,
    EnqueueBatchSyncRequest,
    EnqueueSyncRequest,
    GetJobRequest,
    ListJobsRequest,
)
from ledgersync.ops.responses import EnqueueSyncResult, JobDetail, JobSummary
from ledgersync.ops.result import OperationResult, PagedResult, fail_from_error, start_timer

logger = get_logger(__name__)


def enqueue_sync(
    ctx: OperationContext,
    request: EnqueueSyncRequest,
) -> OperationResult[EnqueueSyncResult]:
    """Enqueue a sync for one entity, or coalesce into its live job."""
    timer = start_timer()

    if not request.entity_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "entity_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        options = EnqueueOptions(
            operation=request.operation,
            priority=request.priority,
            trigger=request.trigger,
            entity_type=request.entity_type,
            metadata={**request.metadata, "actor": ctx.actor},
        )
        if ctx.dry_run:
            return OperationResult.ok(
                EnqueueSyncResult(job_id="", created=False, state="dry_run",
                                  queue_name="", priority=options.priority.value),
                elapsed_ms=timer.elapsed_ms,
            )
        result = queue_manager(ctx).enqueue(request.entity_id, options)
        return OperationResult.ok(
            EnqueueSyncResult(
                job_id=result.job_id,
                created=result.created,
                state=result.job.state.value,
                queue_name=result.job.queue_name.value,
                priority=result.job.priority.value,
            ),
            warnings=[] if result.created else [f"Coalesced into live job {result.job_id}"],
            elapsed_ms=timer.elapsed_ms,
        )
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to enqueue sync: {exc}", elapsed_ms=timer.elapsed_ms
        )


def enqueue_batch_sync(
    ctx: OperationContext,
    request: EnqueueBatchSyncRequest,
) -> OperationResult[EnqueueSyncResult]:
    """Enqueue the coordinating job for a date-range batch sync."""
    timer = start_timer()

    if request.date_from is None or request.date_to is None:
        return OperationResult.fail(
            "VALIDATION_FAILED", "date_from and date_to are required", elapsed_ms=timer.elapsed_ms
        )

    try:
        result = queue_manager(ctx).enqueue_batch_sync(
            request.date_from,
            request.date_to,
            entity_ids=list(request.entity_ids),
            force=request.force,
            actor=ctx.actor,
        )
        return OperationResult.ok(
            EnqueueSyncResult(
                job_id=result.job_id,
                created=result.created,
                state=result.job.state.value,
                queue_name=result.job.queue_name.value,
                priority=result.job.priority.value,
            ),
            elapsed_ms=timer.elapsed_ms,
        )
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to enqueue batch sync: {exc}", elapsed_ms=timer.elapsed_ms
        )


def list_jobs(
    ctx: OperationContext,
    request: ListJobsRequest,
) -> PagedResult[JobSummary]:
    """List sync jobs, newest first."""
    timer = start_timer()

    try:
        jobs, total = queue_manager(ctx).list_jobs(
            state=request.state,
            queue=request.queue_name,
            entity_id=request.entity_id,
            migration_id=request.migration_id,
            limit=request.limit,
            offset=request.offset,
        )
        return PagedResult.from_items(
            [_job_summary(j) for j in jobs],
            total=total,
            limit=request.limit,
            offset=request.offset,
            elapsed_ms=timer.elapsed_ms,
        )
    except LedgerSyncError as exc:
        failed = fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
        return PagedResult(success=False, error=failed.error, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return PagedResult(
            success=False,
            error=OperationResult.fail("INTERNAL", f"Failed to list jobs: {exc}").error,
            elapsed_ms=timer.elapsed_ms,
        )


def get_job(
    ctx: OperationContext,
    request: GetJobRequest,
) -> OperationResult[JobDetail]:
    """One job with its event trail."""
    timer = start_timer()

    if not request.job_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "job_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        manager = queue_manager(ctx)
        job = manager.get_job(request.job_id)
        return OperationResult.ok(
            JobDetail(job=_job_summary(job), metadata=job.metadata, events=manager.jobs.events(job.id)),
            elapsed_ms=timer.elapsed_ms,
        )
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to get job: {exc}", elapsed_ms=timer.elapsed_ms
        )


def cancel_job(
    ctx: OperationContext,
    request: CancelJobRequest,
) -> OperationResult[JobSummary]:
    """Cancel a waiting or delayed job."""
    timer = start_timer()

    if not request.job_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "job_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        job = queue_manager(ctx).cancel(request.job_id, actor=ctx.actor)
        return OperationResult.ok(_job_summary(job), elapsed_ms=timer.elapsed_ms)
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to cancel job: {exc}", elapsed_ms=timer.elapsed_ms
        )


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _job_summary(job: SyncJob) -> JobSummary:
    return JobSummary(
        id=job.id,
        entity_type=job.entity_type,
        entity_id=job.entity_id,
        operation=job.operation.value,
        priority=job.priority.value,
        state=job.state.value,
        queue_name=job.queue_name.value,
        trigger=job.trigger.value,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        migration_id=job.migration_id,
        created_at=to_iso8601(job.created_at),
        updated_at=to_iso8601(job.updated_at),
        next_attempt_at=to_iso8601(job.next_attempt_at),
        finished_at=to_iso8601(job.finished_at),
        last_error=job.last_error,
        error_category=job.error_category,
        external_ref=job.external_ref,
    )
