"""Quarantine domain models.

A QuarantineRecord holds one entity the pipeline could not reconcile on its
own.  At most one *open* record (pending / in_review) exists per
``(entity_type, entity_id)``.

Status graph::

    pending   → in_review | resolved | rejected
    in_review → pending | resolved | rejected
    resolved, rejected → (terminal)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ledgersync.core.errors import InvalidTransitionError
from ledgersync.core.timestamps import from_iso8601, to_iso8601
from ledgersync.core.enums import Priority


class QuarantineStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    RESOLVED = "resolved"
    REJECTED = "rejected"

    @property
    def is_open(self) -> bool:
        return self in OPEN_STATUSES


OPEN_STATUSES = frozenset({QuarantineStatus.PENDING, QuarantineStatus.IN_REVIEW})

QUARANTINE_VALID_TRANSITIONS: dict[QuarantineStatus, frozenset[QuarantineStatus]] = {
    QuarantineStatus.PENDING: frozenset({
        QuarantineStatus.IN_REVIEW,
        QuarantineStatus.RESOLVED,
        QuarantineStatus.REJECTED,
    }),
    QuarantineStatus.IN_REVIEW: frozenset({
        QuarantineStatus.PENDING,
        QuarantineStatus.RESOLVED,
        QuarantineStatus.REJECTED,
    }),
    QuarantineStatus.RESOLVED: frozenset(),
    QuarantineStatus.REJECTED: frozenset(),
}


def validate_quarantine_transition(current: QuarantineStatus, target: QuarantineStatus) -> None:
    if target not in QUARANTINE_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError("quarantine", current.value, target.value)


class QuarantineReason(str, Enum):
    VALIDATION_FAILED = "validation_failed"
    BUSINESS_RULE_VIOLATION = "business_rule_violation"
    API_ERROR = "api_error"
    DATA_INTEGRITY = "data_integrity"
    AUTHORIZATION = "authorization"
    CONFLICT = "conflict"
    RETRIES_EXHAUSTED = "retries_exhausted"
    MANUAL = "manual"


class EntityType(str, Enum):
    SUBMISSION = "submission"
    TIME_ENTRY = "time_entry"
    PROJECT = "project"
    CONTACT = "contact"


# Base priority per reason.  Rate-limit and network failures only land here
# once retries are exhausted and tend to self-resolve, so they rank lowest.
PRIORITY_TABLE: dict[QuarantineReason, Priority] = {
    QuarantineReason.AUTHORIZATION: Priority.HIGH,
    QuarantineReason.CONFLICT: Priority.HIGH,
    QuarantineReason.DATA_INTEGRITY: Priority.HIGH,
    QuarantineReason.VALIDATION_FAILED: Priority.MEDIUM,
    QuarantineReason.BUSINESS_RULE_VIOLATION: Priority.MEDIUM,
    QuarantineReason.MANUAL: Priority.MEDIUM,
    QuarantineReason.API_ERROR: Priority.LOW,
    QuarantineReason.RETRIES_EXHAUSTED: Priority.LOW,
}


def priority_for(reason: QuarantineReason, job_priority: Priority | None = None) -> Priority:
    """Deterministic quarantine priority.

    A failure raised from a ``high`` priority job is bumped one tier.
    """
    base = PRIORITY_TABLE[reason]
    if job_priority is Priority.HIGH and base is not Priority.HIGH:
        return Priority.from_rank(base.rank + 1)
    return base


class ReviewDecision(str, Enum):
    RESOLVED = "resolved"
    REJECTED = "rejected"


@dataclass
class QuarantineRecord:
    """An entity held back from automatic synchronization."""

    id: str
    entity_type: str
    entity_id: str
    status: QuarantineStatus
    priority: Priority
    reason: QuarantineReason
    created_at: datetime
    updated_at: datetime
    last_occurred_at: datetime
    error_detail: str = ""
    error_category: str | None = None
    job_id: str | None = None
    entity_data: dict[str, Any] | None = None
    corrected_data: dict[str, Any] | None = None
    occurrence_count: int = 1
    reviewed_by: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolution_notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "status": self.status.value,
            "priority": self.priority.value,
            "reason": self.reason.value,
            "error_detail": self.error_detail,
            "error_category": self.error_category,
            "job_id": self.job_id,
            "entity_data": self.entity_data,
            "corrected_data": self.corrected_data,
            "occurrence_count": self.occurrence_count,
            "created_at": to_iso8601(self.created_at),
            "updated_at": to_iso8601(self.updated_at),
            "last_occurred_at": to_iso8601(self.last_occurred_at),
            "reviewed_by": self.reviewed_by,
            "resolved_at": to_iso8601(self.resolved_at),
            "resolved_by": self.resolved_by,
            "resolution_notes": self.resolution_notes,
        }

    @classmethod
    def from_row(cls, row: Any) -> QuarantineRecord:
        return cls(
            id=row["id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            status=QuarantineStatus(row["status"]),
            priority=Priority(row["priority"]),
            reason=QuarantineReason(row["reason"]),
            error_detail=row["error_detail"] or "",
            error_category=row["error_category"],
            job_id=row["job_id"],
            entity_data=json.loads(row["entity_data"]) if row["entity_data"] else None,
            corrected_data=json.loads(row["corrected_data"]) if row["corrected_data"] else None,
            occurrence_count=row["occurrence_count"],
            created_at=from_iso8601(row["created_at"]),
            updated_at=from_iso8601(row["updated_at"]),
            last_occurred_at=from_iso8601(row["last_occurred_at"]),
            reviewed_by=row["reviewed_by"],
            resolved_at=from_iso8601(row["resolved_at"]),
            resolved_by=row["resolved_by"],
            resolution_notes=row["resolution_notes"],
        )


@dataclass(frozen=True)
class QuarantineFilter:
    """Filters for :meth:`QuarantineStore.list`."""

    entity_type: str | None = None
    statuses: tuple[QuarantineStatus, ...] = ()
    priorities: tuple[Priority, ...] = ()
    reason: QuarantineReason | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None


@dataclass(frozen=True)
class BulkItemResult:
    record_id: str
    success: bool
    error: str | None = None
    job_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"record_id": self.record_id, "success": self.success,
                "error": self.error, "job_id": self.job_id}


@dataclass
class ReviewResult:
    """Outcome of a successful review."""

    record: QuarantineRecord
    job_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"record": self.record.to_dict(), "job_id": self.job_id}


@dataclass
class RecoveryReport:
    dry_run: bool
    examined: int = 0
    recovered: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    recovered_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "examined": self.examined,
            "recovered": self.recovered,
            "failed": self.failed,
            "errors": list(self.errors),
            "recovered_ids": list(self.recovered_ids),
        }
