"""Job Store: durable record of sync jobs and their lifecycle.

WHY
───
Workers may run in separate processes, so exclusivity cannot rely on
in-process locks.  Every state change here is a single conditional UPDATE
on the prior state (compare-and-swap); callers check the returned bool.
The single-in-flight invariant is backed by the partial unique index
``uq_sync_jobs_live_entity``: a racing second insert raises
:class:`~ledgersync.core.errors.IntegrityError`.

ARCHITECTURE
────────────
::

    JobStore(conn)
      ├── .insert(job)                      ─ raises IntegrityError on live duplicate
      ├── .get(id) / .get_live(entity_id)
      ├── .dispatch_candidates(now, ...)    ─ priority desc, created asc
      ├── .claim(id, from_state, worker)    ─ CAS → active
      ├── .complete / .delay / .fail        ─ CAS from active, owner-checked
      ├── .stalled(cutoff) / .requeue(...)  ─ liveness recovery
      ├── .rearm_failed / .delete_failed    ─ bulk operator actions
      └── .counts(queue) / .latency(queue)  ─ read-only metrics

This class is policy-free: which transition to take is decided by
:class:`~ledgersync.execution.queue.SyncQueueManager`.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from ledgersync.core.enums import Priority
from ledgersync.core.errors import IntegrityError
from ledgersync.core.protocols import Connection
from ledgersync.core.timestamps import from_iso8601, generate_ulid, to_iso8601
from ledgersync.execution.models import (
    JobEventType,
    JobState,
    QueueName,
    SyncJob,
)

_COLUMNS = (
    "id, entity_type, entity_id, operation, priority, priority_rank, queue_name, state, "
    "trigger, attempts, max_attempts, stalled_count, migration_id, metadata, worker_id, "
    "heartbeat_at, resync_requested, created_at, updated_at, last_attempt_at, "
    "next_attempt_at, finished_at, last_error, error_category, external_ref, result"
)


class JobStore:
    """SQL access to ``sync_jobs`` and ``sync_job_events``."""

    def __init__(self, conn: Connection):
        self._conn = conn

    @property
    def conn(self) -> Connection:
        return self._conn

    # ------------------------------------------------------------------ #
    # Create / read
    # ------------------------------------------------------------------ #

    def insert(self, job: SyncJob) -> SyncJob:
        """Insert a new job and its ``created`` event.

        Raises:
            IntegrityError: a live job already exists for ``job.entity_id``.
        """
        try:
            self._insert_row(job)
        except IntegrityError:
            self._conn.rollback()
            raise
        self._event(job.id, JobEventType.CREATED, job.created_at, {
            "entity_id": job.entity_id,
            "queue": job.queue_name.value,
            "priority": job.priority.value,
        })
        self._conn.commit()
        return job

    def _insert_row(self, job: SyncJob) -> None:
        self._conn.execute(
            f"""
            INSERT INTO sync_jobs ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,  # noqa: S608
            (
                job.id,
                job.entity_type,
                job.entity_id,
                job.operation.value,
                job.priority.value,
                job.priority.rank,
                job.queue_name.value,
                job.state.value,
                job.trigger.value,
                job.attempts,
                job.max_attempts,
                job.stalled_count,
                job.migration_id,
                json.dumps(job.metadata),
                job.worker_id,
                to_iso8601(job.heartbeat_at),
                int(job.resync_requested),
                to_iso8601(job.created_at),
                to_iso8601(job.updated_at),
                to_iso8601(job.last_attempt_at),
                to_iso8601(job.next_attempt_at),
                to_iso8601(job.finished_at),
                job.last_error,
                job.error_category,
                job.external_ref,
                json.dumps(job.result) if job.result is not None else None,
            ),
        )

    def get(self, job_id: str) -> SyncJob | None:
        self._conn.execute(f"SELECT {_COLUMNS} FROM sync_jobs WHERE id = ?", (job_id,))  # noqa: S608
        row = self._conn.fetchone()
        return SyncJob.from_row(row) if row is not None else None

    def get_live(self, entity_id: str) -> SyncJob | None:
        """The single waiting/active/delayed job for *entity_id*, if any."""
        self._conn.execute(
            f"SELECT {_COLUMNS} FROM sync_jobs "  # noqa: S608
            "WHERE entity_id = ? AND state IN ('waiting', 'active', 'delayed')",
            (entity_id,),
        )
        row = self._conn.fetchone()
        return SyncJob.from_row(row) if row is not None else None

    def list(
        self,
        *,
        state: JobState | None = None,
        queue: QueueName | None = None,
        entity_id: str | None = None,
        migration_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[SyncJob], int]:
        """Filtered page of jobs (newest first) plus the total match count."""
        where = " WHERE 1=1"
        params: list[Any] = []
        if state is not None:
            where += " AND state = ?"
            params.append(state.value)
        if queue is not None:
            where += " AND queue_name = ?"
            params.append(queue.value)
        if entity_id is not None:
            where += " AND entity_id = ?"
            params.append(entity_id)
        if migration_id is not None:
            where += " AND migration_id = ?"
            params.append(migration_id)

        self._conn.execute(f"SELECT COUNT(*) FROM sync_jobs{where}", tuple(params))  # noqa: S608
        total = self._conn.fetchone()[0]
        self._conn.execute(
            f"SELECT {_COLUMNS} FROM sync_jobs{where} "  # noqa: S608
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [SyncJob.from_row(r) for r in self._conn.fetchall()], total

    def states(self, job_ids: list[str]) -> dict[str, JobState]:
        """Current state for each of *job_ids* (missing ids are omitted)."""
        if not job_ids:
            return {}
        placeholders = ", ".join("?" for _ in job_ids)
        self._conn.execute(
            f"SELECT id, state FROM sync_jobs WHERE id IN ({placeholders})",  # noqa: S608
            tuple(job_ids),
        )
        return {r["id"]: JobState(r["state"]) for r in self._conn.fetchall()}

    def events(self, job_id: str) -> list[dict[str, Any]]:
        self._conn.execute(
            "SELECT event_type, timestamp, data FROM sync_job_events "
            "WHERE job_id = ? ORDER BY timestamp ASC, id ASC",
            (job_id,),
        )
        return [
            {"event_type": r["event_type"], "timestamp": r["timestamp"], "data": json.loads(r["data"])}
            for r in self._conn.fetchall()
        ]

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    def dispatch_candidates(
        self,
        now: datetime,
        *,
        exclude_queues: set[QueueName] | None = None,
        limit: int = 20,
    ) -> list[SyncJob]:
        """Eligible waiting/delayed jobs, highest priority then oldest first."""
        query = (
            f"SELECT {_COLUMNS} FROM sync_jobs "  # noqa: S608
            "WHERE state IN ('waiting', 'delayed') "
            "AND (next_attempt_at IS NULL OR next_attempt_at <= ?)"
        )
        params: list[Any] = [to_iso8601(now)]
        if exclude_queues:
            query += f" AND queue_name NOT IN ({', '.join('?' for _ in exclude_queues)})"
            params.extend(sorted(q.value for q in exclude_queues))
        query += " ORDER BY priority_rank DESC, created_at ASC, id ASC LIMIT ?"
        params.append(limit)
        self._conn.execute(query, tuple(params))
        return [SyncJob.from_row(r) for r in self._conn.fetchall()]

    def claim(self, job: SyncJob, worker_id: str, now: datetime) -> bool:
        """CAS ``waiting|delayed → active``; increments ``attempts``."""
        ts = to_iso8601(now)
        cur = self._conn.execute(
            """
            UPDATE sync_jobs
            SET state = 'active', worker_id = ?, heartbeat_at = ?, last_attempt_at = ?,
                attempts = attempts + 1, next_attempt_at = NULL, updated_at = ?
            WHERE id = ? AND state = ? AND attempts = ?
            """,
            (worker_id, ts, ts, ts, job.id, job.state.value, job.attempts),
        )
        if cur.rowcount != 1:
            self._conn.rollback()
            return False
        self._event(job.id, JobEventType.DISPATCHED, now, {
            "worker_id": worker_id, "attempt": job.attempts + 1,
        })
        self._conn.commit()
        return True

    # ------------------------------------------------------------------ #
    # Outcome transitions (owner-checked)
    # ------------------------------------------------------------------ #

    def complete(
        self,
        job_id: str,
        worker_id: str,
        now: datetime,
        *,
        external_ref: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> bool:
        ts = to_iso8601(now)
        return self._transition_active(
            job_id,
            worker_id,
            "state = 'completed', finished_at = ?, external_ref = ?, result = ?, "
            "worker_id = NULL, heartbeat_at = NULL, updated_at = ?",
            (ts, external_ref, json.dumps(result) if result is not None else None, ts),
            JobEventType.COMPLETED,
            now,
            {"external_ref": external_ref},
        )

    def delay(
        self,
        job_id: str,
        worker_id: str,
        now: datetime,
        *,
        next_attempt_at: datetime,
        error: str,
        category: str,
    ) -> bool:
        ts = to_iso8601(now)
        return self._transition_active(
            job_id,
            worker_id,
            "state = 'delayed', next_attempt_at = ?, last_error = ?, error_category = ?, "
            "worker_id = NULL, heartbeat_at = NULL, updated_at = ?",
            (to_iso8601(next_attempt_at), error, category, ts),
            JobEventType.RETRY_SCHEDULED,
            now,
            {"error": error, "next_attempt_at": to_iso8601(next_attempt_at)},
        )

    def fail(
        self,
        job_id: str,
        worker_id: str | None,
        now: datetime,
        *,
        error: str,
        category: str,
    ) -> bool:
        """CAS ``active → failed``.  ``worker_id=None`` skips the owner check."""
        ts = to_iso8601(now)
        return self._transition_active(
            job_id,
            worker_id,
            "state = 'failed', finished_at = ?, last_error = ?, error_category = ?, "
            "worker_id = NULL, heartbeat_at = NULL, updated_at = ?",
            (ts, error, category, ts),
            JobEventType.FAILED,
            now,
            {"error": error, "category": category},
        )

    def _transition_active(
        self,
        job_id: str,
        worker_id: str | None,
        assignments: str,
        values: tuple,
        event: JobEventType,
        now: datetime,
        data: dict[str, Any],
    ) -> bool:
        query = f"UPDATE sync_jobs SET {assignments} WHERE id = ? AND state = 'active'"  # noqa: S608
        params: tuple = (*values, job_id)
        if worker_id is not None:
            query += " AND worker_id = ?"
            params = (*params, worker_id)
        cur = self._conn.execute(query, params)
        if cur.rowcount != 1:
            self._conn.rollback()
            return False
        self._event(job_id, event, now, data)
        self._conn.commit()
        return True

    # ------------------------------------------------------------------ #
    # Liveness
    # ------------------------------------------------------------------ #

    def heartbeat(self, job_ids: list[str], worker_id: str, now: datetime) -> int:
        """Refresh ``heartbeat_at`` on active jobs owned by *worker_id*."""
        if not job_ids:
            return 0
        placeholders = ", ".join("?" for _ in job_ids)
        cur = self._conn.execute(
            f"UPDATE sync_jobs SET heartbeat_at = ? "  # noqa: S608
            f"WHERE state = 'active' AND worker_id = ? AND id IN ({placeholders})",
            (to_iso8601(now), worker_id, *job_ids),
        )
        count = cur.rowcount
        self._conn.commit()
        return count

    def stalled(self, cutoff: datetime) -> list[SyncJob]:
        """Active jobs whose heartbeat is older than *cutoff*."""
        self._conn.execute(
            f"SELECT {_COLUMNS} FROM sync_jobs "  # noqa: S608
            "WHERE state = 'active' AND (heartbeat_at IS NULL OR heartbeat_at < ?) "
            "ORDER BY created_at ASC",
            (to_iso8601(cutoff),),
        )
        return [SyncJob.from_row(r) for r in self._conn.fetchall()]

    def requeue(self, job: SyncJob, now: datetime) -> bool:
        """CAS ``active → waiting`` for a stalled job, bumping ``stalled_count``.

        Guarded on the heartbeat value that was observed stale, so a worker
        that heartbeats in between keeps its job.
        """
        ts = to_iso8601(now)
        query = (
            "UPDATE sync_jobs SET state = 'waiting', worker_id = NULL, heartbeat_at = NULL, "
            "stalled_count = stalled_count + 1, updated_at = ? "
            "WHERE id = ? AND state = 'active'"
        )
        params: tuple = (ts, job.id)
        if job.heartbeat_at is None:
            query += " AND heartbeat_at IS NULL"
        else:
            query += " AND heartbeat_at = ?"
            params = (*params, to_iso8601(job.heartbeat_at))
        cur = self._conn.execute(query, params)
        if cur.rowcount != 1:
            self._conn.rollback()
            return False
        self._event(job.id, JobEventType.REQUEUED, now, {
            "previous_worker": job.worker_id, "stalled_count": job.stalled_count + 1,
        })
        self._conn.commit()
        return True

    # ------------------------------------------------------------------ #
    # Coalescing helpers
    # ------------------------------------------------------------------ #

    def raise_priority(self, job_id: str, priority: Priority, now: datetime) -> bool:
        """CAS priority upgrade on a waiting/delayed job (never downgrades)."""
        cur = self._conn.execute(
            "UPDATE sync_jobs SET priority = ?, priority_rank = ?, updated_at = ? "
            "WHERE id = ? AND state IN ('waiting', 'delayed') AND priority_rank < ?",
            (priority.value, priority.rank, to_iso8601(now), job_id, priority.rank),
        )
        if cur.rowcount != 1:
            self._conn.rollback()
            return False
        self._event(job_id, JobEventType.PRIORITY_RAISED, now, {"priority": priority.value})
        self._conn.commit()
        return True

    def request_resync(self, job_id: str, now: datetime) -> bool:
        """Flag an active job so a follow-up job is created when it finishes."""
        cur = self._conn.execute(
            "UPDATE sync_jobs SET resync_requested = 1, updated_at = ? "
            "WHERE id = ? AND state = 'active' AND resync_requested = 0",
            (to_iso8601(now), job_id),
        )
        if cur.rowcount != 1:
            self._conn.rollback()
            return False
        self._event(job_id, JobEventType.RESYNC_REQUESTED, now, {})
        self._conn.commit()
        return True

    def record_event(self, job_id: str, event: JobEventType, now: datetime, data: dict[str, Any]) -> None:
        self._event(job_id, event, now, data)
        self._conn.commit()

    # ------------------------------------------------------------------ #
    # Operator actions
    # ------------------------------------------------------------------ #

    def cancel(self, job_id: str, now: datetime, *, actor: str | None = None) -> bool:
        """CAS ``waiting|delayed → cancelled``.  Active jobs run to completion."""
        ts = to_iso8601(now)
        cur = self._conn.execute(
            "UPDATE sync_jobs SET state = 'cancelled', finished_at = ?, updated_at = ? "
            "WHERE id = ? AND state IN ('waiting', 'delayed')",
            (ts, ts, job_id),
        )
        if cur.rowcount != 1:
            self._conn.rollback()
            return False
        self._event(job_id, JobEventType.CANCELLED, now, {"actor": actor})
        self._conn.commit()
        return True

    def failed_ids(self, queue: QueueName | None = None) -> list[str]:
        query = "SELECT id FROM sync_jobs WHERE state = 'failed'"
        params: tuple = ()
        if queue is not None:
            query += " AND queue_name = ?"
            params = (queue.value,)
        self._conn.execute(query + " ORDER BY created_at ASC", params)
        return [r["id"] for r in self._conn.fetchall()]

    def rearm_failed(self, job_id: str, now: datetime, *, actor: str | None = None) -> bool:
        """CAS ``failed → waiting`` with a fresh attempt budget."""
        ts = to_iso8601(now)
        cur = self._conn.execute(
            "UPDATE sync_jobs SET state = 'waiting', attempts = 0, stalled_count = 0, "
            "next_attempt_at = NULL, finished_at = NULL, updated_at = ? "
            "WHERE id = ? AND state = 'failed'",
            (ts, job_id),
        )
        if cur.rowcount != 1:
            self._conn.rollback()
            return False
        self._event(job_id, JobEventType.REARMED, now, {"actor": actor})
        self._conn.commit()
        return True

    def delete_failed(self, queue: QueueName | None = None) -> int:
        query = "DELETE FROM sync_jobs WHERE state = 'failed'"
        params: tuple = ()
        if queue is not None:
            query += " AND queue_name = ?"
            params = (queue.value,)
        cur = self._conn.execute(query, params)
        count = cur.rowcount
        self._conn.commit()
        return count

    # ------------------------------------------------------------------ #
    # Read-only metrics
    # ------------------------------------------------------------------ #

    def counts(self, queue: QueueName | None = None) -> dict[JobState, int]:
        query = "SELECT state, COUNT(*) AS n FROM sync_jobs"
        params: tuple = ()
        if queue is not None:
            query += " WHERE queue_name = ?"
            params = (queue.value,)
        self._conn.execute(query + " GROUP BY state", params)
        counts = dict.fromkeys(JobState, 0)
        for row in self._conn.fetchall():
            counts[JobState(row["state"])] = row["n"]
        return counts

    def count_active(self, queue: QueueName) -> int:
        self._conn.execute(
            "SELECT COUNT(*) FROM sync_jobs WHERE state = 'active' AND queue_name = ?",
            (queue.value,),
        )
        return self._conn.fetchone()[0]

    def average_latency_ms(self, queue: QueueName | None = None) -> float | None:
        """Mean created → finished time over completed jobs."""
        query = "SELECT created_at, finished_at FROM sync_jobs WHERE state = 'completed'"
        params: tuple = ()
        if queue is not None:
            query += " AND queue_name = ?"
            params = (queue.value,)
        self._conn.execute(query, params)
        rows = self._conn.fetchall()
        if not rows:
            return None
        total = 0.0
        for row in rows:
            created = from_iso8601(row["created_at"])
            finished = from_iso8601(row["finished_at"])
            total += (finished - created).total_seconds() * 1000
        return total / len(rows)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _event(self, job_id: str, event: JobEventType, now: datetime, data: dict[str, Any]) -> None:
        self._conn.execute(
            "INSERT INTO sync_job_events (id, job_id, event_type, timestamp, data) "
            "VALUES (?, ?, ?, ?, ?)",
            (generate_ulid(), job_id, event.value, to_iso8601(now), json.dumps(data, default=str)),
        )
