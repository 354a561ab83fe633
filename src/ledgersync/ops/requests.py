"""
Typed request objects for operations.

Each dataclass represents the *input* contract for a single operation
function.  Requests carry only transport-agnostic data: no raw HTTP
bodies, no Typer params.  Enum-valued fields stay plain strings here and
are validated by the pipeline components, so every transport gets the
same error for a bad value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

# ------------------------------------------------------------------ #
# Database operations
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class DatabaseInitRequest:
    """Request for :func:`ledgersync.ops.database.initialize_database`."""


# ------------------------------------------------------------------ #
# Sync operations
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class EnqueueSyncRequest:
    """Request for :func:`ledgersync.ops.sync.enqueue_sync`.

    Attributes:
        entity_id: Domain record to push (e.g. ``"TS-100"``).
        operation: ``create``, ``update`` or ``reconcile``.
        priority: ``high``, ``medium`` or ``low``.
        trigger: ``manual``, ``scheduled`` or ``event``.
        entity_type: Kind of domain record.
        metadata: Free-form key/value pairs (``reason``, ``actor``, …).
    """

    entity_id: str = ""
    operation: str = "update"
    priority: str = "medium"
    trigger: str = "manual"
    entity_type: str = "submission"
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class EnqueueBatchSyncRequest:
    """Request for :func:`ledgersync.ops.sync.enqueue_batch_sync`."""

    date_from: date | None = None
    date_to: date | None = None
    entity_ids: list[str] = field(default_factory=list)
    force: bool = False


@dataclass(frozen=True, slots=True)
class ListJobsRequest:
    """Request for :func:`ledgersync.ops.sync.list_jobs`."""

    state: str | None = None
    queue_name: str | None = None
    entity_id: str | None = None
    migration_id: str | None = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True, slots=True)
class GetJobRequest:
    job_id: str = ""


@dataclass(frozen=True, slots=True)
class CancelJobRequest:
    job_id: str = ""


# ------------------------------------------------------------------ #
# Queue operations
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class QueueStatusRequest:
    """Request for :func:`ledgersync.ops.queues.get_queue_status`.

    ``queue_name=None`` reports every named queue plus totals.
    """

    queue_name: str | None = None


@dataclass(frozen=True, slots=True)
class QueueControlRequest:
    """Request for :func:`ledgersync.ops.queues.control_queue`.

    Attributes:
        queue_name: ``high``, ``normal`` or ``batch``; ``None`` applies
            ``retryFailed`` / ``clearFailed`` to every queue.
        action: ``pause``, ``resume``, ``clearFailed`` or ``retryFailed``.
    """

    queue_name: str | None = None
    action: str = ""


# ------------------------------------------------------------------ #
# Migration operations
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class AnalyzeMigrationRequest:
    date_from: date | None = None
    date_to: date | None = None
    batch_size: int = 50
    delay_between_batches: float = 0.0


@dataclass(frozen=True, slots=True)
class ValidateMigrationRequest:
    date_from: date | None = None
    date_to: date | None = None
    include_rejected: bool = False


@dataclass(frozen=True, slots=True)
class StartMigrationRequest:
    """Request for :func:`ledgersync.ops.migrations.start_migration`."""

    batch_size: int = 50
    delay_between_batches: float = 0.0
    max_retries: int = 3
    dry_run: bool = False
    date_from: date | None = None
    date_to: date | None = None
    include_rejected: bool = False


@dataclass(frozen=True, slots=True)
class GetMigrationRequest:
    migration_id: str = ""


@dataclass(frozen=True, slots=True)
class MigrationControlRequest:
    """``action`` is one of ``pause``, ``resume``, ``cancel``."""

    migration_id: str = ""
    action: str = ""


# ------------------------------------------------------------------ #
# Quarantine operations
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class ListQuarantineRequest:
    """Request for :func:`ledgersync.ops.quarantine.list_quarantine`.

    Ordered by priority (high first), then oldest first.
    """

    entity_type: str | None = None
    statuses: list[str] = field(default_factory=list)
    priorities: list[str] = field(default_factory=list)
    reason: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True, slots=True)
class GetQuarantineRequest:
    record_id: str = ""


@dataclass(frozen=True, slots=True)
class ReviewQuarantineRequest:
    """Request for :func:`ledgersync.ops.quarantine.review_quarantine`."""

    record_id: str = ""
    decision: str = ""
    notes: str | None = None
    corrected_data: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class BulkUpdateQuarantineRequest:
    record_ids: list[str] = field(default_factory=list)
    status: str = ""
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class RecoverQuarantineRequest:
    dry_run: bool = False
    max_records: int = 100
    priority_only: bool = False
    entity_type: str | None = None


@dataclass(frozen=True, slots=True)
class ManualQuarantineRequest:
    entity_type: str = "submission"
    entity_id: str = ""
    detail: str = ""


# ------------------------------------------------------------------ #
# Validation override operations
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class ListOverridesRequest:
    entity_type: str | None = None
    entity_id: str | None = None
    status: str | None = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True, slots=True)
class GetOverrideRequest:
    override_id: str = ""


@dataclass(frozen=True, slots=True)
class CreateOverrideRequest:
    """Bypass named validation rules for one entity."""

    entity_id: str = ""
    rules: tuple[str, ...] = ()
    justification: str = ""
    entity_type: str = "submission"
    override_type: str = "temporary"
    expires_at: datetime | None = None
    requires_approval: bool = False


@dataclass(frozen=True, slots=True)
class OverrideActionRequest:
    """``approve`` / ``reject`` / ``revoke`` / ``extend`` (needs ``new_expires_at``)."""

    override_id: str = ""
    action: str = ""
    comments: str | None = None
    new_expires_at: datetime | None = None
