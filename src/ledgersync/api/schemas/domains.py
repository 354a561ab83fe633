"""
Domain-specific Pydantic schemas for the API layer.

Response schemas mirror the ops-layer dataclasses in
``ledgersync.ops.responses``.  Request bodies accept both snake_case and
camelCase field names (``entity_id`` or ``entityId``).
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

JobState = Literal["waiting", "active", "delayed", "completed", "failed", "cancelled"]
"""
Sync job states:

- ``waiting``: queued, eligible for dispatch
- ``active``: claimed by a worker
- ``delayed``: waiting for its backoff to elapse
- ``completed`` / ``failed`` / ``cancelled``: terminal
"""

PriorityName = Literal["high", "medium", "low"]


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


# ── Sync ─────────────────────────────────────────────────────────────────


class EnqueueSyncBody(_Body):
    entity_id: str = Field(min_length=1, description="Domain record to push, e.g. 'TS-100'")
    operation: Literal["create", "update", "reconcile"] = "update"
    priority: PriorityName = "medium"
    trigger: Literal["manual", "scheduled", "event"] = "manual"
    entity_type: str = "submission"
    metadata: dict[str, Any] = Field(default_factory=dict)


class BatchSyncBody(_Body):
    from_date: date = Field(description="First work date included")
    to_date: date = Field(description="Last work date included")
    entity_ids: list[str] = Field(default_factory=list, description="Restrict to these submissions")
    force: bool = Field(default=False, description="Include already-synced submissions")


class EnqueueSyncSchema(BaseModel):
    """``created=false`` means the request was coalesced into the live job."""

    job_id: str
    created: bool
    state: str
    queue_name: str
    priority: str


class JobSchema(BaseModel):
    id: str
    entity_type: str
    entity_id: str
    operation: str
    priority: str
    state: str
    queue_name: str
    trigger: str
    attempts: int = 0
    max_attempts: int = 0
    migration_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    next_attempt_at: str | None = None
    finished_at: str | None = None
    last_error: str | None = None
    error_category: str | None = None
    external_ref: str | None = None


class JobDetailSchema(BaseModel):
    job: JobSchema
    metadata: dict[str, Any] = Field(default_factory=dict)
    events: list[dict[str, Any]] = Field(default_factory=list)


# ── Queues ───────────────────────────────────────────────────────────────


class QueueControlBody(_Body):
    action: Literal[
        "pause", "resume", "clearFailed", "retryFailed", "requeueStalled",
        "clear_failed", "retry_failed", "requeue_stalled",
    ]


class QueueControlSchema(BaseModel):
    queue_name: str | None
    action: str
    affected: int = 0
    paused: bool | None = None


# ── Migrations ───────────────────────────────────────────────────────────


class StartMigrationBody(_Body):
    batch_size: int = Field(default=50, ge=1, le=500)
    delay_between_batches: float = Field(default=0.0, ge=0, description="Seconds between waves")
    max_retries: int = Field(default=3, ge=1, le=10)
    dry_run: bool = False
    date_from: date | None = None
    date_to: date | None = None
    include_rejected: bool = False


class MigrationControlBody(_Body):
    action: Literal["pause", "resume", "cancel"]


class MigrationSummarySchema(BaseModel):
    id: str
    state: str
    dry_run: bool
    items_total: int
    total_waves: int
    batch_size: int
    created_by: str | None = None
    created_at: str | None = None


# ── Quarantine ───────────────────────────────────────────────────────────


class ReviewBody(_Body):
    status: Literal["resolved", "rejected"] = Field(description="Review decision")
    notes: str | None = None
    corrected_data: dict[str, Any] | None = Field(
        default=None, description="Field overrides merged into the entity before re-sync"
    )


class BulkUpdateBody(_Body):
    record_ids: list[str] = Field(min_length=1)
    status: Literal["in_review", "resolved", "rejected"]
    notes: str | None = None


class RecoverBody(_Body):
    dry_run: bool = False
    max_records: int = Field(default=100, ge=1, le=1000)
    priority_only: bool = False
    entity_type: str | None = None


class ManualQuarantineBody(_Body):
    entity_type: Literal["submission", "time_entry", "project", "contact"] = "submission"
    entity_id: str = Field(min_length=1)
    detail: str = ""


class QuarantineRecordSchema(BaseModel):
    id: str
    entity_type: str
    entity_id: str
    status: str
    priority: str
    reason: str
    error_detail: str = ""
    occurrence_count: int = 1
    job_id: str | None = None
    corrected_data: dict[str, Any] | None = None
    created_at: str | None = None
    updated_at: str | None = None
    resolved_at: str | None = None
    resolved_by: str | None = None
    resolution_notes: str | None = None


class ReviewOutcomeSchema(BaseModel):
    record: QuarantineRecordSchema
    job_id: str | None = None


class BulkUpdateSchema(BaseModel):
    succeeded: int
    failed: int
    results: list[dict[str, Any]] = Field(default_factory=list)


# ── Validation overrides ─────────────────────────────────────────────────


class CreateOverrideBody(_Body):
    entity_id: str = Field(min_length=1)
    entity_type: str = "submission"
    rules: list[str] = Field(min_length=1, description="Validation rule names to bypass")
    justification: str = Field(min_length=1)
    override_type: Literal["temporary", "permanent"] = "temporary"
    expires_at: datetime | None = None
    requires_approval: bool = False


class OverrideActionBody(_Body):
    action: Literal["approve", "reject", "revoke", "extend"]
    comments: str | None = None
    new_expiry_date: datetime | None = Field(default=None, description="Required for extend")


class OverrideSchema(BaseModel):
    id: str
    entity_type: str
    entity_id: str
    rules: list[str]
    justification: str
    override_type: str
    status: str
    effective: bool
    created_by: str
    expires_at: str | None = None
    created_at: str | None = None
    approved_by: str | None = None
    approved_at: str | None = None
    revoked_by: str | None = None
    revoked_at: str | None = None


# ── Health ───────────────────────────────────────────────────────────────


class DatabaseHealthSchema(BaseModel):
    connected: bool
    backend: str = "sqlite"
    table_counts: dict[str, int] = Field(default_factory=dict)
    error: str | None = None


class HealthSchema(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    checks: dict[str, str] = Field(default_factory=dict)
    database: DatabaseHealthSchema | None = None
    version: str = ""
