"""Quarantine Store: durable worklist of entities that need a human.

WHY
───
Some failures cannot be fixed by retrying: bad data, ledger conflicts,
revoked credentials.  Those entities are parked here with their error,
a data snapshot, and a priority, so operators work the most urgent
records first and every decision leaves an audit trail.

ARCHITECTURE
────────────
::

    QuarantineStore(conn)
      ├── .capture(entity_type, entity_id, reason, detail)  ─ upsert open record
      ├── .get(id) / .get_open(entity_type, entity_id)
      ├── .list(filter, limit, offset)   ─ priority desc, created asc
      ├── .start_review(record, actor)   ─ pending → in_review
      ├── .close(record, status, actor)  ─ → resolved | rejected (CAS)
      ├── .open_records(...)             ─ recovery candidates
      ├── .stats()                       ─ counts + resolution time
      └── .audit(record_id)              ─ audit trail

    QuarantineReviewer (reviewer.py)     ─ review / bulk / recover, re-enqueue

Only the Error Classifier path (via the queue manager) and the reviewer
write here.  At most one open record per ``(entity_type, entity_id)`` is
enforced by ``uq_sync_quarantine_open_entity``.
"""

from __future__ import annotations

import json
from typing import Any

from ledgersync.core.errors import AlreadyResolvedError, IntegrityError, NotFoundError
from ledgersync.core.logging import get_logger
from ledgersync.core.protocols import Clock, Connection
from ledgersync.core.timestamps import from_iso8601, generate_ulid, to_iso8601, utc_now
from ledgersync.core.enums import Priority
from ledgersync.quarantine.models import (
    QuarantineFilter,
    QuarantineReason,
    QuarantineRecord,
    QuarantineStatus,
    priority_for,
    validate_quarantine_transition,
)

logger = get_logger(__name__)

_COLUMNS = (
    "id, entity_type, entity_id, status, priority, priority_rank, reason, error_detail, "
    "error_category, job_id, entity_data, corrected_data, occurrence_count, created_at, "
    "updated_at, last_occurred_at, reviewed_by, resolved_at, resolved_by, resolution_notes"
)

_OPEN = "('pending', 'in_review')"


class QuarantineStore:
    """SQL access to ``sync_quarantine_records`` and its audit table."""

    def __init__(self, conn: Connection, *, clock: Clock = utc_now):
        self._conn = conn
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Capture
    # ------------------------------------------------------------------ #

    def capture(
        self,
        entity_type: str,
        entity_id: str,
        reason: QuarantineReason,
        error_detail: str,
        *,
        priority: Priority | None = None,
        job_id: str | None = None,
        error_category: str | None = None,
        entity_data: dict[str, Any] | None = None,
        actor: str = "system",
    ) -> QuarantineRecord:
        """Create the open record for the key, or bump the existing one.

        ``priority`` defaults to :func:`priority_for(reason)`.  A repeat
        failure never lowers the priority of the open record.
        """
        reason = QuarantineReason(reason)
        priority = priority or priority_for(reason)

        # A racing capture can insert between our read and our insert; the
        # unique index rejects it and the second pass takes the update path.
        for _ in range(2):
            existing = self.get_open(entity_type, entity_id)
            if existing is not None:
                bumped = self._recur(existing, reason, error_detail, priority, job_id,
                                     error_category, entity_data, actor)
                if bumped is not None:
                    return bumped
                continue
            try:
                return self._insert(entity_type, entity_id, reason, error_detail, priority,
                                    job_id, error_category, entity_data, actor)
            except IntegrityError:
                logger.debug("quarantine_capture_race", entity_id=entity_id)
        # Both passes lost a race; the record now exists and is open.
        record = self.get_open(entity_type, entity_id)
        if record is None:
            raise IntegrityError(f"Could not capture quarantine record for {entity_id}")
        return record

    def _insert(
        self,
        entity_type: str,
        entity_id: str,
        reason: QuarantineReason,
        error_detail: str,
        priority: Priority,
        job_id: str | None,
        error_category: str | None,
        entity_data: dict[str, Any] | None,
        actor: str,
    ) -> QuarantineRecord:
        now = self._clock()
        record = QuarantineRecord(
            id=generate_ulid(),
            entity_type=entity_type,
            entity_id=entity_id,
            status=QuarantineStatus.PENDING,
            priority=priority,
            reason=reason,
            created_at=now,
            updated_at=now,
            last_occurred_at=now,
            error_detail=error_detail,
            error_category=error_category,
            job_id=job_id,
            entity_data=entity_data,
        )
        try:
            self._conn.execute(
                f"INSERT INTO sync_quarantine_records ({_COLUMNS}) "  # noqa: S608
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.entity_type,
                    record.entity_id,
                    record.status.value,
                    record.priority.value,
                    record.priority.rank,
                    record.reason.value,
                    record.error_detail,
                    record.error_category,
                    record.job_id,
                    _dumps(record.entity_data),
                    None,
                    record.occurrence_count,
                    to_iso8601(now),
                    to_iso8601(now),
                    to_iso8601(now),
                    None,
                    None,
                    None,
                    None,
                ),
            )
        except IntegrityError:
            self._conn.rollback()
            raise
        self._audit(record.id, "captured", actor, {
            "reason": reason.value, "priority": priority.value, "job_id": job_id,
        })
        self._conn.commit()
        logger.warning(
            "quarantine_captured",
            record_id=record.id,
            entity_id=entity_id,
            reason=reason.value,
            priority=priority.value,
        )
        return record

    def _recur(
        self,
        existing: QuarantineRecord,
        reason: QuarantineReason,
        error_detail: str,
        priority: Priority,
        job_id: str | None,
        error_category: str | None,
        entity_data: dict[str, Any] | None,
        actor: str,
    ) -> QuarantineRecord | None:
        now = self._clock()
        new_priority = priority if priority.rank > existing.priority.rank else existing.priority
        cur = self._conn.execute(
            f"""
            UPDATE sync_quarantine_records
            SET occurrence_count = occurrence_count + 1, last_occurred_at = ?, updated_at = ?,
                reason = ?, error_detail = ?, error_category = ?, priority = ?, priority_rank = ?,
                job_id = COALESCE(?, job_id), entity_data = COALESCE(?, entity_data)
            WHERE id = ? AND status IN {_OPEN}
            """,  # noqa: S608
            (
                to_iso8601(now),
                to_iso8601(now),
                reason.value,
                error_detail,
                error_category,
                new_priority.value,
                new_priority.rank,
                job_id,
                _dumps(entity_data),
                existing.id,
            ),
        )
        if cur.rowcount != 1:
            self._conn.rollback()
            return None
        self._audit(existing.id, "recurred", actor, {
            "reason": reason.value, "occurrence": existing.occurrence_count + 1, "job_id": job_id,
        })
        self._conn.commit()
        logger.info(
            "quarantine_recurred",
            record_id=existing.id,
            entity_id=existing.entity_id,
            occurrences=existing.occurrence_count + 1,
        )
        return self.get(existing.id)

    # ------------------------------------------------------------------ #
    # Read
    # ------------------------------------------------------------------ #

    def get(self, record_id: str) -> QuarantineRecord | None:
        self._conn.execute(
            f"SELECT {_COLUMNS} FROM sync_quarantine_records WHERE id = ?",  # noqa: S608
            (record_id,),
        )
        row = self._conn.fetchone()
        return QuarantineRecord.from_row(row) if row is not None else None

    def require(self, record_id: str) -> QuarantineRecord:
        record = self.get(record_id)
        if record is None:
            raise NotFoundError("quarantine record", record_id)
        return record

    def get_open(self, entity_type: str, entity_id: str) -> QuarantineRecord | None:
        self._conn.execute(
            f"SELECT {_COLUMNS} FROM sync_quarantine_records "  # noqa: S608
            f"WHERE entity_type = ? AND entity_id = ? AND status IN {_OPEN}",
            (entity_type, entity_id),
        )
        row = self._conn.fetchone()
        return QuarantineRecord.from_row(row) if row is not None else None

    def list(
        self,
        filters: QuarantineFilter | None = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[QuarantineRecord], int]:
        """Filtered worklist page, oldest high-priority first, plus total count."""
        filters = filters or QuarantineFilter()
        where = " WHERE 1=1"
        params: list[Any] = []
        if filters.entity_type:
            where += " AND entity_type = ?"
            params.append(filters.entity_type)
        if filters.statuses:
            where += f" AND status IN ({', '.join('?' for _ in filters.statuses)})"
            params.extend(s.value for s in filters.statuses)
        if filters.priorities:
            where += f" AND priority IN ({', '.join('?' for _ in filters.priorities)})"
            params.extend(p.value for p in filters.priorities)
        if filters.reason is not None:
            where += " AND reason = ?"
            params.append(filters.reason.value)
        if filters.created_from is not None:
            where += " AND created_at >= ?"
            params.append(to_iso8601(filters.created_from))
        if filters.created_to is not None:
            where += " AND created_at <= ?"
            params.append(to_iso8601(filters.created_to))

        self._conn.execute(f"SELECT COUNT(*) FROM sync_quarantine_records{where}", tuple(params))  # noqa: S608
        total = self._conn.fetchone()[0]
        self._conn.execute(
            f"SELECT {_COLUMNS} FROM sync_quarantine_records{where} "  # noqa: S608
            "ORDER BY priority_rank DESC, created_at ASC, id ASC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [QuarantineRecord.from_row(r) for r in self._conn.fetchall()], total

    def open_records(
        self,
        *,
        limit: int = 100,
        priority: Priority | None = None,
        entity_type: str | None = None,
    ) -> list[QuarantineRecord]:
        """Open records in worklist order (recovery candidates)."""
        statuses = (QuarantineStatus.PENDING, QuarantineStatus.IN_REVIEW)
        records, _ = self.list(
            QuarantineFilter(
                entity_type=entity_type,
                statuses=statuses,
                priorities=(priority,) if priority is not None else (),
            ),
            limit=limit,
        )
        return records

    def audit(self, record_id: str) -> list[dict[str, Any]]:
        self._conn.execute(
            "SELECT action, actor, timestamp, details FROM sync_quarantine_audit "
            "WHERE record_id = ? ORDER BY timestamp ASC, id ASC",
            (record_id,),
        )
        return [
            {
                "action": r["action"],
                "actor": r["actor"],
                "timestamp": r["timestamp"],
                "details": json.loads(r["details"]),
            }
            for r in self._conn.fetchall()
        ]

    def stats(self) -> dict[str, Any]:
        """Worklist statistics for dashboards and the CLI."""
        breakdowns: dict[str, dict[str, int]] = {}
        for column in ("status", "priority", "reason", "entity_type"):
            self._conn.execute(
                f"SELECT {column} AS k, COUNT(*) AS n FROM sync_quarantine_records "  # noqa: S608
                f"GROUP BY {column} ORDER BY {column}"
            )
            breakdowns[column] = {r["k"]: r["n"] for r in self._conn.fetchall()}

        self._conn.execute(
            "SELECT created_at, resolved_at FROM sync_quarantine_records "
            "WHERE status = 'resolved' AND resolved_at IS NOT NULL"
        )
        resolved = self._conn.fetchall()
        avg_hours = None
        if resolved:
            total_seconds = sum(
                (from_iso8601(r["resolved_at"]) - from_iso8601(r["created_at"])).total_seconds()
                for r in resolved
            )
            avg_hours = round(total_seconds / len(resolved) / 3600, 2)

        self._conn.execute(
            f"SELECT MIN(created_at) FROM sync_quarantine_records WHERE status IN {_OPEN}"  # noqa: S608
        )
        oldest_open = self._conn.fetchone()[0]

        by_status = breakdowns["status"]
        return {
            "total": sum(by_status.values()),
            "open": by_status.get("pending", 0) + by_status.get("in_review", 0),
            "by_status": by_status,
            "by_priority": breakdowns["priority"],
            "by_reason": breakdowns["reason"],
            "by_entity_type": breakdowns["entity_type"],
            "avg_resolution_hours": avg_hours,
            "oldest_open_at": oldest_open,
        }

    # ------------------------------------------------------------------ #
    # Review transitions
    # ------------------------------------------------------------------ #

    def start_review(
        self,
        record: QuarantineRecord,
        actor: str,
        *,
        notes: str | None = None,
        corrected_data: dict[str, Any] | None = None,
    ) -> QuarantineRecord:
        """Move an open record to ``in_review`` (idempotent for in_review)."""
        if not record.status.is_open:
            raise AlreadyResolvedError(record.id, record.status.value)
        if record.status is QuarantineStatus.PENDING:
            validate_quarantine_transition(record.status, QuarantineStatus.IN_REVIEW)
        now = self._clock()
        cur = self._conn.execute(
            f"""
            UPDATE sync_quarantine_records
            SET status = 'in_review', reviewed_by = ?, updated_at = ?,
                resolution_notes = COALESCE(?, resolution_notes),
                corrected_data = COALESCE(?, corrected_data)
            WHERE id = ? AND status IN {_OPEN}
            """,  # noqa: S608
            (actor, to_iso8601(now), notes, _dumps(corrected_data), record.id),
        )
        if cur.rowcount != 1:
            self._conn.rollback()
            raise AlreadyResolvedError(record.id, self.require(record.id).status.value)
        self._audit(record.id, "review_started", actor, {"notes": notes})
        self._conn.commit()
        logger.info("quarantine_in_review", record_id=record.id, actor=actor)
        return self.require(record.id)

    def close(
        self,
        record: QuarantineRecord,
        status: QuarantineStatus,
        actor: str,
        *,
        notes: str | None = None,
        corrected_data: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
    ) -> QuarantineRecord:
        """CAS an open record to ``resolved`` or ``rejected``.

        Raises:
            AlreadyResolvedError: the record was already terminal.
        """
        if not record.status.is_open:
            raise AlreadyResolvedError(record.id, record.status.value)
        validate_quarantine_transition(record.status, status)
        now = self._clock()
        cur = self._conn.execute(
            f"""
            UPDATE sync_quarantine_records
            SET status = ?, resolved_at = ?, resolved_by = ?, reviewed_by = COALESCE(reviewed_by, ?),
                resolution_notes = COALESCE(?, resolution_notes),
                corrected_data = COALESCE(?, corrected_data), updated_at = ?
            WHERE id = ? AND status IN {_OPEN}
            """,  # noqa: S608
            (
                status.value,
                to_iso8601(now),
                actor,
                actor,
                notes,
                _dumps(corrected_data),
                to_iso8601(now),
                record.id,
            ),
        )
        if cur.rowcount != 1:
            self._conn.rollback()
            raise AlreadyResolvedError(record.id, self.require(record.id).status.value)
        self._audit(record.id, status.value, actor, {"notes": notes, **(details or {})})
        self._conn.commit()
        logger.info("quarantine_closed", record_id=record.id, status=status.value, actor=actor)
        return self.require(record.id)

    def record_audit(self, record_id: str, action: str, actor: str, details: dict[str, Any]) -> None:
        self._audit(record_id, action, actor, details)
        self._conn.commit()

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _audit(self, record_id: str, action: str, actor: str, details: dict[str, Any]) -> None:
        self._conn.execute(
            "INSERT INTO sync_quarantine_audit (id, record_id, action, actor, timestamp, details) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                generate_ulid(),
                record_id,
                action,
                actor,
                to_iso8601(self._clock()),
                json.dumps(details, default=str),
            ),
        )


def _dumps(data: dict[str, Any] | None) -> str | None:
    return json.dumps(data, default=str) if data is not None else None
