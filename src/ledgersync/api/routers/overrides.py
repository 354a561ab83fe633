"""
Validation overrides router.

Endpoints:
    GET   /validation-overrides         Filtered list, newest first
    GET   /validation-overrides/rules   Rule names an override may bypass
    POST  /validation-overrides         Create (active, or pending approval)
    GET   /validation-overrides/{id}    One override with its audit trail
    PATCH /validation-overrides/{id}    approve | reject | revoke | extend
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Path, Query, Request

from ledgersync.api.deps import OpContext
from ledgersync.api.schemas.common import PagedResponse, PageMeta, SuccessResponse
from ledgersync.api.schemas.domains import CreateOverrideBody, OverrideActionBody, OverrideSchema
from ledgersync.api.utils import _dc, _handle_error

router = APIRouter(prefix="/validation-overrides")


@router.get("", response_model=PagedResponse[OverrideSchema])
def list_overrides(
    ctx: OpContext,
    request: Request,
    entity_id: str | None = Query(None),
    entity_type: str | None = Query(None),
    status: str | None = Query(None, description="pending_approval | active | rejected | revoked"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    from ledgersync.ops.overrides import list_overrides as _list
    from ledgersync.ops.requests import ListOverridesRequest

    result = _list(
        ctx,
        ListOverridesRequest(
            entity_type=entity_type, entity_id=entity_id, status=status, limit=limit, offset=offset
        ),
    )
    if not result.success:
        return _handle_error(result, str(request.url))
    return PagedResponse(
        data=[OverrideSchema(**_dc(o)) for o in (result.data or [])],
        page=PageMeta(total=result.total, limit=result.limit, offset=result.offset, has_more=result.has_more),
        elapsed_ms=result.elapsed_ms,
    )


@router.get("/rules", response_model=SuccessResponse[dict[str, str]])
def validation_rules(ctx: OpContext):
    from ledgersync.ops.overrides import list_validation_rules

    result = list_validation_rules(ctx)
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.post("", status_code=201, response_model=SuccessResponse[OverrideSchema])
def create_override(ctx: OpContext, body: CreateOverrideBody, request: Request):
    """Bypass named validation rules for one entity.

    Example:
        POST /api/v1/validation-overrides
        {"entityId": "TS-100", "rules": ["amount_non_negative"],
         "justification": "credit note agreed with client", "requiresApproval": true}
    """
    from ledgersync.ops.overrides import create_override as _create
    from ledgersync.ops.requests import CreateOverrideRequest

    result = _create(
        ctx,
        CreateOverrideRequest(
            entity_id=body.entity_id,
            entity_type=body.entity_type,
            rules=tuple(body.rules),
            justification=body.justification,
            override_type=body.override_type,
            expires_at=body.expires_at,
            requires_approval=body.requires_approval,
        ),
    )
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=OverrideSchema(**_dc(result.data)), elapsed_ms=result.elapsed_ms)


@router.get("/{override_id}", response_model=SuccessResponse[dict[str, Any]])
def get_override(ctx: OpContext, request: Request, override_id: str = Path(..., description="Override ID")):
    from ledgersync.ops.overrides import get_override as _get
    from ledgersync.ops.requests import GetOverrideRequest

    result = _get(ctx, GetOverrideRequest(override_id=override_id))
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=result.data, elapsed_ms=result.elapsed_ms)


@router.patch("/{override_id}", response_model=SuccessResponse[OverrideSchema])
def control_override(
    ctx: OpContext,
    body: OverrideActionBody,
    request: Request,
    override_id: str = Path(..., description="Override ID"),
):
    """Approve, reject, revoke, or extend an override.

    Raises:
        400 VALIDATION_FAILED: ``extend`` without a future ``newExpiryDate``.
        404 NOT_FOUND: unknown override.
        409 INVALID_TRANSITION: the override's status does not allow the action.
    """
    from ledgersync.ops.overrides import control_override as _control
    from ledgersync.ops.requests import OverrideActionRequest

    result = _control(
        ctx,
        OverrideActionRequest(
            override_id=override_id,
            action=body.action,
            comments=body.comments,
            new_expires_at=body.new_expiry_date,
        ),
    )
    if not result.success:
        return _handle_error(result, str(request.url))
    return SuccessResponse(data=OverrideSchema(**_dc(result.data)), elapsed_ms=result.elapsed_ms)
