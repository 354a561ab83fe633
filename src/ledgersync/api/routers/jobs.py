"""
Jobs router: inspect and cancel sync jobs.

Endpoints:
    GET  /jobs               List jobs with filtering
    GET  /jobs/{id}          One job with its event trail
    POST /jobs/{id}/cancel   Cancel a waiting or delayed job
"""

from __future__ import annotations

from fastapi import APIRouter, Path, Query, Request

from ledgersync.api.deps import OpContext
from ledgersync.api.schemas.common import PagedResponse, PageMeta, SuccessResponse
from ledgersync.api.schemas.domains import JobDetailSchema, JobSchema, JobState
from ledgersync.api.utils import _dc, _handle_error

router = APIRouter(prefix="/jobs")


@router.get("", response_model=PagedResponse[JobSchema])
def list_jobs(
    ctx: OpContext,
    request: Request,
    state: JobState | None = Query(None, description="Filter by job state"),
    queue: str | None = Query(None, description="Filter by queue (high, normal, batch)"),
    entity_id: str | None = Query(None, description="Filter by entity id"),
    migration_id: str | None = Query(None, description="Filter by batch migration"),
    limit: int = Query(50, ge=1, le=500, description="Maximum items to return (1-500)"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
):
    """List sync jobs, newest first."""
    from ledgersync.ops.requests import ListJobsRequest
    from ledgersync.ops.sync import list_jobs as _list

    result = _list(
        ctx,
        ListJobsRequest(
            state=state,
            queue_name=queue,
            entity_id=entity_id,
            migration_id=migration_id,
            limit=limit,
            offset=offset,
        ),
    )
    if not result.success:
        return _handle_error(result, str(request.url))
    items = [JobSchema(**_dc(j)) for j in (result.data or [])]
    return PagedResponse(
        data=items,
        page=PageMeta(
            total=result.total,
            limit=result.limit,
            offset=result.offset,
            has_more=result.has_more,
        ),
        elapsed_ms=result.elapsed_ms,
        warnings=result.warnings,
    )


@router.get("/{job_id}", response_model=SuccessResponse[JobDetailSchema])
def get_job(ctx: OpContext, request: Request, job_id: str = Path(..., description="Sync job ID")):
    """One job with its metadata and ordered event trail."""
    from ledgersync.ops.requests import GetJobRequest
    from ledgersync.ops.sync import get_job as _get

    result = _get(ctx, GetJobRequest(job_id=job_id))
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=JobDetailSchema(**_dc(result.data)), elapsed_ms=result.elapsed_ms)


@router.post("/{job_id}/cancel", response_model=SuccessResponse[JobSchema])
def cancel_job(ctx: OpContext, request: Request, job_id: str = Path(..., description="Sync job ID")):
    """Cancel a waiting or delayed job.

    Raises:
        404 NOT_FOUND: unknown job.
        409 INVALID_TRANSITION: the job is active or already terminal.
    """
    from ledgersync.ops.requests import CancelJobRequest
    from ledgersync.ops.sync import cancel_job as _cancel

    result = _cancel(ctx, CancelJobRequest(job_id=job_id))
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=JobSchema(**_dc(result.data)), elapsed_ms=result.elapsed_ms)
