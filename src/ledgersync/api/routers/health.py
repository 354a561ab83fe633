"""
Health router (root level, no prefix) for container healthchecks.

Endpoints:
    GET /health   healthy | degraded (dispatch held) | unhealthy
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ledgersync.api.deps import OpContext
from ledgersync.api.schemas.common import SuccessResponse
from ledgersync.api.schemas.domains import HealthSchema
from ledgersync.api.utils import _dc

router = APIRouter()


@router.get("/health", response_model=SuccessResponse[HealthSchema])
def health(ctx: OpContext):
    """Aggregate health.  Returns 503 when the database is unreachable."""
    from ledgersync.ops.health import get_health

    result = get_health(ctx)
    body = SuccessResponse(
        data=HealthSchema(**_dc(result.data)),
        elapsed_ms=result.elapsed_ms,
        warnings=result.warnings,
    )
    if result.data.status == "unhealthy":
        return JSONResponse(status_code=503, content=body.model_dump())
    return body
