"""
Timesheet submissions: the records the pipeline pushes to the ledger.

The record-management layer owns ``timesheet_submissions``; the pipeline
reads submissions when building ledger payloads and migration datasets,
writes operator corrections from quarantine review, and stamps the
ledger reference after a successful push.

ARCHITECTURE
────────────
::

    SubmissionRepository(conn)
      ├── .get(id)                       ─ one submission or None
      ├── .save(record)                  ─ upsert (record layer / fixtures)
      ├── .apply_correction(id, data)    ─ merge + validate + persist
      ├── .mark_synced(id, ref)          ─ ledger_ref / ledger_synced_at
      ├── .list_approved(...)            ─ migration / batch-sync dataset
      └── .approved_summary(...)         ─ analyze() counts
"""

from __future__ import annotations

import json
from collections.abc import Collection
from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Protocol

from ledgersync.core.errors import DataValidationError
from ledgersync.core.logging import get_logger
from ledgersync.core.protocols import Clock, Connection
from ledgersync.core.timestamps import from_iso8601, to_iso8601, utc_now
from ledgersync.domain.validation import validate_submission

logger = get_logger(__name__)


class SubmissionStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


CORRECTABLE_FIELDS = frozenset(
    {"user_email", "amount", "currency", "entries", "period_start", "period_end"}
)


@dataclass
class TimeEntry:
    """One line of a timesheet submission."""

    id: str
    work_date: str
    minutes: int
    client_id: str | None = None
    project_id: str | None = None
    billable: bool = False
    bill_rate: float | None = None
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TimeEntry:
        try:
            return cls(
                id=str(data["id"]),
                work_date=str(data["work_date"]),
                minutes=int(data["minutes"]),
                client_id=data.get("client_id"),
                project_id=data.get("project_id"),
                billable=bool(data.get("billable", False)),
                bill_rate=float(data["bill_rate"]) if data.get("bill_rate") is not None else None,
                description=str(data.get("description", "")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DataValidationError(
                f"Malformed time entry: {exc}", field="entries", value=data, cause=exc
            ) from exc


@dataclass
class SubmissionRecord:
    """A weekly timesheet submission as seen by the pipeline."""

    id: str
    user_id: str
    status: SubmissionStatus
    period_start: date
    period_end: date
    user_email: str | None = None
    approved_at: datetime | None = None
    amount: float | None = None
    currency: str = "USD"
    entries: list[TimeEntry] = field(default_factory=list)
    ledger_ref: str | None = None
    ledger_synced_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_synced(self) -> bool:
        return self.ledger_ref is not None

    def to_payload(self) -> dict[str, Any]:
        """Body sent to the ledger for create/update."""
        return {
            "submission_id": self.id,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "amount": self.amount,
            "currency": self.currency,
            "lines": [asdict(e) for e in self.entries],
            "ledger_ref": self.ledger_ref,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "status": self.status.value,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "approved_at": to_iso8601(self.approved_at),
            "amount": self.amount,
            "currency": self.currency,
            "entries": [asdict(e) for e in self.entries],
            "ledger_ref": self.ledger_ref,
            "ledger_synced_at": to_iso8601(self.ledger_synced_at),
        }

    def merged(self, corrected: dict[str, Any]) -> SubmissionRecord:
        """Return a copy with *corrected* fields applied (not validated)."""
        unknown = sorted(set(corrected) - CORRECTABLE_FIELDS)
        if unknown:
            raise DataValidationError(
                f"Fields cannot be corrected: {', '.join(unknown)}",
                field=unknown[0],
                constraint="correctable_fields",
            )
        changes: dict[str, Any] = {}
        for key, value in corrected.items():
            if key == "entries":
                if not isinstance(value, list):
                    raise DataValidationError("entries must be a list", field="entries", value=value)
                changes["entries"] = [TimeEntry.from_dict(e) for e in value]
            elif key in ("period_start", "period_end"):
                try:
                    changes[key] = date.fromisoformat(str(value))
                except ValueError as exc:
                    raise DataValidationError(
                        f"{key} must be an ISO date", field=key, value=value, cause=exc
                    ) from exc
            elif key == "amount":
                if value is not None and not isinstance(value, (int, float)):
                    raise DataValidationError("amount must be numeric", field="amount", value=value)
                changes["amount"] = float(value) if value is not None else None
            else:
                changes[key] = value
        return replace(self, **changes)


class EntityRepository(Protocol):
    """What the pipeline needs from the record-management layer."""

    def get(self, entity_id: str) -> SubmissionRecord | None: ...

    def apply_correction(
        self, entity_id: str, corrected: dict[str, Any], *, bypass: Collection[str] = ()
    ) -> SubmissionRecord: ...

    def mark_synced(self, entity_id: str, ledger_ref: str) -> None: ...

    def list_approved(
        self,
        *,
        date_from: date | None = None,
        date_to: date | None = None,
        include_rejected: bool = False,
        include_synced: bool = False,
        entity_ids: list[str] | None = None,
    ) -> list[SubmissionRecord]: ...

    def approved_summary(
        self,
        *,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> dict[str, Any]: ...


_COLUMNS = (
    "id, user_id, user_email, status, period_start, period_end, approved_at, "
    "amount, currency, entries, ledger_ref, ledger_synced_at, updated_at"
)


class SubmissionRepository:
    """SQLite-backed :class:`EntityRepository` over ``timesheet_submissions``."""

    def __init__(self, conn: Connection, *, clock: Clock = utc_now):
        self._conn = conn
        self._clock = clock

    def get(self, entity_id: str) -> SubmissionRecord | None:
        self._conn.execute(
            f"SELECT {_COLUMNS} FROM timesheet_submissions WHERE id = ?",  # noqa: S608
            (entity_id,),
        )
        row = self._conn.fetchone()
        return _row_to_record(row) if row is not None else None

    def save(self, record: SubmissionRecord) -> SubmissionRecord:
        """Insert or replace a submission."""
        record.updated_at = self._clock()
        self._conn.execute(
            f"""
            INSERT OR REPLACE INTO timesheet_submissions ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,  # noqa: S608
            (
                record.id,
                record.user_id,
                record.user_email,
                record.status.value,
                record.period_start.isoformat(),
                record.period_end.isoformat(),
                to_iso8601(record.approved_at),
                record.amount,
                record.currency,
                json.dumps([asdict(e) for e in record.entries]),
                record.ledger_ref,
                to_iso8601(record.ledger_synced_at),
                to_iso8601(record.updated_at),
            ),
        )
        self._conn.commit()
        return record

    def apply_correction(
        self, entity_id: str, corrected: dict[str, Any], *, bypass: Collection[str] = ()
    ) -> SubmissionRecord:
        """Merge operator-supplied fields, validate, and persist.

        *bypass* names rules skipped by active validation overrides.

        Raises:
            DataValidationError: unknown entity, non-correctable field, or the
                merged record has error-level issues.  Nothing is written.
        """
        current = self.get(entity_id)
        if current is None:
            raise DataValidationError(f"Submission not found: {entity_id}", field="entity_id")
        candidate = current.merged(corrected)
        errors = [i for i in validate_submission(candidate, bypass=bypass) if i.severity == "error"]
        if errors:
            raise DataValidationError(
                f"Corrected data failed validation: {errors[0].issue}",
                issues=[i.issue for i in errors],
            ).with_context(entity_id=entity_id)
        self.save(candidate)
        logger.info("submission_corrected", entity_id=entity_id, fields=sorted(corrected))
        return candidate

    def mark_synced(self, entity_id: str, ledger_ref: str) -> None:
        now = to_iso8601(self._clock())
        self._conn.execute(
            "UPDATE timesheet_submissions SET ledger_ref = ?, ledger_synced_at = ?, updated_at = ? "
            "WHERE id = ?",
            (ledger_ref, now, now, entity_id),
        )
        self._conn.commit()

    def list_approved(
        self,
        *,
        date_from: date | None = None,
        date_to: date | None = None,
        include_rejected: bool = False,
        include_synced: bool = False,
        entity_ids: list[str] | None = None,
    ) -> list[SubmissionRecord]:
        """Submissions eligible for replay, oldest period first."""
        statuses = [SubmissionStatus.APPROVED.value]
        if include_rejected:
            statuses.append(SubmissionStatus.REJECTED.value)
        query = (
            f"SELECT {_COLUMNS} FROM timesheet_submissions "  # noqa: S608
            f"WHERE status IN ({', '.join('?' for _ in statuses)})"
        )
        params: list[Any] = list(statuses)
        if not include_synced:
            query += " AND ledger_ref IS NULL"
        if date_from is not None:
            query += " AND period_start >= ?"
            params.append(date_from.isoformat())
        if date_to is not None:
            query += " AND period_start <= ?"
            params.append(date_to.isoformat())
        if entity_ids:
            query += f" AND id IN ({', '.join('?' for _ in entity_ids)})"
            params.extend(entity_ids)
        query += " ORDER BY period_start ASC, id ASC"
        self._conn.execute(query, tuple(params))
        return [_row_to_record(r) for r in self._conn.fetchall()]

    def approved_summary(
        self,
        *,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> dict[str, Any]:
        """Counts used by migration analysis."""
        query = (
            "SELECT COUNT(*), "
            "SUM(CASE WHEN ledger_ref IS NOT NULL THEN 1 ELSE 0 END), "
            "MIN(CASE WHEN ledger_ref IS NULL THEN period_start END), "
            "MAX(CASE WHEN ledger_ref IS NULL THEN period_start END) "
            "FROM timesheet_submissions WHERE status = 'approved'"
        )
        params: list[Any] = []
        if date_from is not None:
            query += " AND period_start >= ?"
            params.append(date_from.isoformat())
        if date_to is not None:
            query += " AND period_start <= ?"
            params.append(date_to.isoformat())
        self._conn.execute(query, tuple(params))
        total, synced, oldest, newest = self._conn.fetchone()
        total = total or 0
        synced = synced or 0
        return {
            "total_approved": total,
            "already_synced": synced,
            "pending_migration": total - synced,
            "oldest_pending": oldest,
            "newest_pending": newest,
        }


def _row_to_record(row: Any) -> SubmissionRecord:
    entries_raw = json.loads(row["entries"] or "[]")
    return SubmissionRecord(
        id=row["id"],
        user_id=row["user_id"],
        user_email=row["user_email"],
        status=SubmissionStatus(row["status"]),
        period_start=date.fromisoformat(row["period_start"]),
        period_end=date.fromisoformat(row["period_end"]),
        approved_at=from_iso8601(row["approved_at"]),
        amount=row["amount"],
        currency=row["currency"],
        entries=[TimeEntry.from_dict(e) for e in entries_raw],
        ledger_ref=row["ledger_ref"],
        ledger_synced_at=from_iso8601(row["ledger_synced_at"]),
        updated_at=from_iso8601(row["updated_at"]),
    )
