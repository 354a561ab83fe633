"""
Typed response objects for operations.

Each dataclass represents the *output* of a single operation beyond the
generic :class:`OperationResult` envelope.  Responses carry only domain
data: no HTTP status codes, no CLI formatting.  Datetimes are ISO 8601
strings so every transport renders them the same way.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ------------------------------------------------------------------ #
# Database responses
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class DatabaseInitResult:
    tables_created: list[str]
    dry_run: bool = False


@dataclass(frozen=True, slots=True)
class DatabaseHealth:
    connected: bool
    backend: str = "sqlite"
    table_counts: dict[str, int] = field(default_factory=dict)
    error: str | None = None


# ------------------------------------------------------------------ #
# Sync responses
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class EnqueueSyncResult:
    """``created=False`` means the request was coalesced into *job_id*."""

    job_id: str
    created: bool
    state: str
    queue_name: str
    priority: str


@dataclass(frozen=True, slots=True)
class JobSummary:
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


@dataclass(frozen=True, slots=True)
class JobDetail:
    job: JobSummary
    metadata: dict[str, Any] = field(default_factory=dict)
    events: list[dict[str, Any]] = field(default_factory=list)


# ------------------------------------------------------------------ #
# Queue responses
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class QueueControlResult:
    """``affected`` counts re-armed or deleted jobs for retry/clear actions."""

    queue_name: str | None
    action: str
    affected: int = 0
    paused: bool | None = None


# ------------------------------------------------------------------ #
# Migration responses
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class MigrationSummary:
    id: str
    state: str
    dry_run: bool
    items_total: int
    total_waves: int
    batch_size: int
    created_by: str | None = None
    created_at: str | None = None


# ------------------------------------------------------------------ #
# Quarantine responses
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class QuarantineSummary:
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


@dataclass(frozen=True, slots=True)
class ReviewOutcome:
    record: QuarantineSummary
    job_id: str | None = None


@dataclass(frozen=True, slots=True)
class BulkUpdateResult:
    succeeded: int
    failed: int
    results: list[dict[str, Any]] = field(default_factory=list)


# ------------------------------------------------------------------ #
# Health responses
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class HealthStatus:
    """``status`` is ``healthy``, ``degraded`` (dispatch held) or ``unhealthy``."""

    status: str
    checks: dict[str, str] = field(default_factory=dict)
    database: DatabaseHealth | None = None
    version: str = ""


# ------------------------------------------------------------------ #
# Validation override responses
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class OverrideSummary:
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
