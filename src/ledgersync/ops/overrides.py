"""
Validation override operations.

Wraps :class:`~ledgersync.domain.overrides.ValidationOverrideStore`.  The
creating and approving identity is ``ctx.actor``.
"""

from __future__ import annotations

from typing import Any

from ledgersync.core.errors import InvalidConfigError, LedgerSyncError
from ledgersync.core.logging import get_logger
from ledgersync.core.timestamps import to_iso8601
from ledgersync.domain.overrides import OverrideStatus, ValidationOverride
from ledgersync.domain.validation import VALIDATION_RULES
from ledgersync.ops.components import override_store
from ledgersync.ops.context import OperationContext
from ledgersync.ops.requests import (
    CreateOverrideRequest,
    GetOverrideRequest,
    ListOverridesRequest,
    OverrideActionRequest,
)
from ledgersync.ops.responses import OverrideSummary
from ledgersync.ops.result import OperationResult, PagedResult, fail_from_error, start_timer

logger = get_logger(__name__)


def list_validation_rules(ctx: OperationContext) -> OperationResult[dict[str, str]]:
    """Rule names an override may bypass, with their descriptions."""
    timer = start_timer()
    return OperationResult.ok(dict(VALIDATION_RULES), elapsed_ms=timer.elapsed_ms)


def list_overrides(
    ctx: OperationContext,
    request: ListOverridesRequest,
) -> PagedResult[OverrideSummary]:
    timer = start_timer()
    try:
        status = None
        if request.status:
            try:
                status = OverrideStatus(request.status)
            except ValueError as exc:
                raise InvalidConfigError("status", request.status) from exc
        overrides, total = override_store(ctx).list(
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            status=status,
            limit=request.limit,
            offset=request.offset,
        )
        now = ctx.clock()
        return PagedResult.from_items(
            [_summary(o, now) for o in overrides],
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
            error=OperationResult.fail("INTERNAL", f"Failed to list overrides: {exc}").error,
            elapsed_ms=timer.elapsed_ms,
        )


def get_override(
    ctx: OperationContext,
    request: GetOverrideRequest,
) -> OperationResult[dict[str, Any]]:
    """One override with its audit trail."""
    timer = start_timer()

    if not request.override_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "override_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        store = override_store(ctx)
        override = store.require(request.override_id)
        return OperationResult.ok(
            {"override": override.to_dict(ctx.clock()), "audit": store.audit(override.id)},
            elapsed_ms=timer.elapsed_ms,
        )
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to get override: {exc}", elapsed_ms=timer.elapsed_ms
        )


def create_override(
    ctx: OperationContext,
    request: CreateOverrideRequest,
) -> OperationResult[OverrideSummary]:
    """Record an override; it is active at once unless approval is required."""
    timer = start_timer()
    try:
        override = override_store(ctx).create(
            request.entity_type,
            request.entity_id,
            request.rules,
            request.justification,
            ctx.actor,
            override_type=request.override_type,
            expires_at=request.expires_at,
            requires_approval=request.requires_approval,
        )
        return OperationResult.ok(_summary(override, ctx.clock()), elapsed_ms=timer.elapsed_ms)
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to create override: {exc}", elapsed_ms=timer.elapsed_ms
        )


def control_override(
    ctx: OperationContext,
    request: OverrideActionRequest,
) -> OperationResult[OverrideSummary]:
    """Approve, reject, revoke, or extend an override.

    An action the override's status does not allow fails with
    ``INVALID_TRANSITION``.
    """
    timer = start_timer()

    if not request.override_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "override_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        override = override_store(ctx).apply(
            request.override_id,
            request.action,
            ctx.actor,
            comments=request.comments,
            new_expires_at=request.new_expires_at,
        )
        return OperationResult.ok(_summary(override, ctx.clock()), elapsed_ms=timer.elapsed_ms)
    except LedgerSyncError as exc:
        return fail_from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to update override: {exc}", elapsed_ms=timer.elapsed_ms
        )


def _summary(override: ValidationOverride, now) -> OverrideSummary:
    return OverrideSummary(
        id=override.id,
        entity_type=override.entity_type,
        entity_id=override.entity_id,
        rules=list(override.rules),
        justification=override.justification,
        override_type=override.override_type.value,
        status=override.status.value,
        effective=override.is_effective(now),
        created_by=override.created_by,
        expires_at=to_iso8601(override.expires_at),
        created_at=to_iso8601(override.created_at),
        approved_by=override.approved_by,
        approved_at=to_iso8601(override.approved_at),
        revoked_by=override.revoked_by,
        revoked_at=to_iso8601(override.revoked_at),
    )
