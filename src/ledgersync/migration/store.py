"""Migration Store: durable state of batch migrations and their frozen datasets.

ARCHITECTURE
────────────
::

    MigrationStore(conn)
      ├── .create(migration, entity_ids)      ─ migration row + items; one open run at a time
      ├── .get(id) / .require(id) / .get_open() / .list()
      ├── .transition(id, from_states, to)    ─ CAS on state
      ├── .claim_lease / .renew_lease / .release_lease  ─ single runner per migration
      ├── .pending_items / .dispatched_items  ─ seq order
      ├── .dispatch_item(...)                 ─ pending → dispatched
      ├── .finish_item(...)                   ─ pending|dispatched → succeeded|failed, bumps counters
      └── .record_wave / .append_errors       ─ wave timing, error history

Counters only move through :meth:`finish_item`, which changes an item and
the aggregate in one transaction and only when the item CAS succeeds, so
``items_processed`` never decreases and never exceeds ``items_total``.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from ledgersync.core.errors import ConflictError, IntegrityError, NotFoundError
from ledgersync.core.logging import get_logger
from ledgersync.core.protocols import Clock, Connection
from ledgersync.core.timestamps import from_iso8601, to_iso8601, utc_now
from ledgersync.migration.models import (
    ERROR_HISTORY_LIMIT,
    BatchMigration,
    BatchMigrationConfig,
    MigrationItem,
    MigrationItemState,
    MigrationState,
    validate_migration_transition,
)

logger = get_logger(__name__)

_COLUMNS = (
    "id, state, config, items_total, items_processed, items_succeeded, items_failed, "
    "current_wave, total_waves, wave_seconds_total, errors, failure_reason, created_by, "
    "runner_id, heartbeat_at, created_at, updated_at, started_at, last_wave_at, completed_at"
)

_OPEN = "('pending', 'running', 'paused')"


class MigrationStore:
    """SQL access to ``sync_migrations`` and ``sync_migration_items``."""

    def __init__(self, conn: Connection, *, clock: Clock = utc_now):
        self._conn = conn
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Migrations
    # ------------------------------------------------------------------ #

    def create(self, migration: BatchMigration, entity_ids: list[str]) -> BatchMigration:
        """Insert a pending migration and freeze its dataset.

        Raises:
            ConflictError: another migration is pending, running or paused.
        """
        try:
            self._conn.execute(
                f"""
                INSERT INTO sync_migrations ({_COLUMNS}, open_slot)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
                """,  # noqa: S608
                (
                    migration.id,
                    migration.state.value,
                    json.dumps(migration.config.to_dict()),
                    migration.items_total,
                    0,
                    0,
                    0,
                    0,
                    migration.total_waves,
                    0.0,
                    "[]",
                    None,
                    migration.created_by,
                    None,
                    None,
                    to_iso8601(migration.created_at),
                    to_iso8601(migration.updated_at),
                    None,
                    None,
                    None,
                ),
            )
            self._conn.executemany(
                "INSERT INTO sync_migration_items (migration_id, seq, entity_id, state, updated_at) "
                "VALUES (?, ?, ?, 'pending', ?)",
                [
                    (migration.id, seq, entity_id, to_iso8601(migration.created_at))
                    for seq, entity_id in enumerate(entity_ids)
                ],
            )
        except IntegrityError as exc:
            self._conn.rollback()
            open_run = self.get_open()
            raise ConflictError(
                f"Migration {open_run.id if open_run else '?'} is already in progress",
                cause=exc,
            ) from exc
        self._conn.commit()
        return self.require(migration.id)

    def get(self, migration_id: str) -> BatchMigration | None:
        self._conn.execute(
            f"SELECT {_COLUMNS} FROM sync_migrations WHERE id = ?",  # noqa: S608
            (migration_id,),
        )
        row = self._conn.fetchone()
        return _row_to_migration(row) if row is not None else None

    def require(self, migration_id: str) -> BatchMigration:
        migration = self.get(migration_id)
        if migration is None:
            raise NotFoundError("migration", migration_id)
        return migration

    def get_open(self) -> BatchMigration | None:
        self._conn.execute(
            f"SELECT {_COLUMNS} FROM sync_migrations WHERE state IN {_OPEN} "  # noqa: S608
            "ORDER BY created_at DESC LIMIT 1"
        )
        row = self._conn.fetchone()
        return _row_to_migration(row) if row is not None else None

    def list(self, *, limit: int = 50, offset: int = 0) -> tuple[list[BatchMigration], int]:
        self._conn.execute("SELECT COUNT(*) FROM sync_migrations")
        total = self._conn.fetchone()[0]
        self._conn.execute(
            f"SELECT {_COLUMNS} FROM sync_migrations "  # noqa: S608
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [_row_to_migration(r) for r in self._conn.fetchall()], total

    def transition(
        self,
        migration_id: str,
        from_states: tuple[MigrationState, ...],
        to_state: MigrationState,
        *,
        failure_reason: str | None = None,
    ) -> bool:
        """CAS the migration state; returns ``False`` if it was not in *from_states*.

        Raises:
            InvalidTransitionError: some state in *from_states* may not move to *to_state*.
        """
        for state in from_states:
            validate_migration_transition(state, to_state)
        now = to_iso8601(self._clock())
        placeholders = ", ".join("?" for _ in from_states)
        started = now if to_state is MigrationState.RUNNING else None
        completed = now if to_state.is_terminal else None
        cur = self._conn.execute(
            f"""
            UPDATE sync_migrations
            SET state = ?, updated_at = ?,
                started_at = COALESCE(started_at, ?),
                completed_at = COALESCE(?, completed_at),
                failure_reason = COALESCE(?, failure_reason),
                open_slot = CASE WHEN ? THEN NULL ELSE open_slot END
            WHERE id = ? AND state IN ({placeholders})
            """,  # noqa: S608
            (
                to_state.value,
                now,
                started,
                completed,
                failure_reason,
                1 if to_state.is_terminal else 0,
                migration_id,
                *(s.value for s in from_states),
            ),
        )
        changed = cur.rowcount == 1
        self._conn.commit()
        return changed

    # ------------------------------------------------------------------ #
    # Runner lease
    # ------------------------------------------------------------------ #

    def claim_lease(self, migration_id: str, runner_id: str, stale_before: datetime) -> bool:
        """Take the runner lease if it is free, ours, or stale."""
        now = to_iso8601(self._clock())
        cur = self._conn.execute(
            f"""
            UPDATE sync_migrations
            SET runner_id = ?, heartbeat_at = ?, updated_at = ?
            WHERE id = ? AND state IN {_OPEN}
              AND (runner_id IS NULL OR runner_id = ? OR heartbeat_at IS NULL OR heartbeat_at < ?)
            """,  # noqa: S608
            (runner_id, now, now, migration_id, runner_id, to_iso8601(stale_before)),
        )
        claimed = cur.rowcount == 1
        self._conn.commit()
        return claimed

    def renew_lease(self, migration_id: str, runner_id: str) -> bool:
        cur = self._conn.execute(
            "UPDATE sync_migrations SET heartbeat_at = ? WHERE id = ? AND runner_id = ?",
            (to_iso8601(self._clock()), migration_id, runner_id),
        )
        renewed = cur.rowcount == 1
        self._conn.commit()
        return renewed

    def release_lease(self, migration_id: str, runner_id: str) -> None:
        self._conn.execute(
            "UPDATE sync_migrations SET runner_id = NULL, heartbeat_at = NULL "
            "WHERE id = ? AND runner_id = ?",
            (migration_id, runner_id),
        )
        self._conn.commit()

    # ------------------------------------------------------------------ #
    # Items
    # ------------------------------------------------------------------ #

    def pending_items(self, migration_id: str, limit: int) -> list[MigrationItem]:
        return self._items(migration_id, MigrationItemState.PENDING, limit)

    def dispatched_items(self, migration_id: str) -> list[MigrationItem]:
        return self._items(migration_id, MigrationItemState.DISPATCHED, None)

    def wave_items(self, migration_id: str, wave: int) -> list[MigrationItem]:
        self._conn.execute(
            "SELECT migration_id, seq, entity_id, wave, state, job_id, error "
            "FROM sync_migration_items WHERE migration_id = ? AND wave = ? ORDER BY seq",
            (migration_id, wave),
        )
        return [_row_to_item(r) for r in self._conn.fetchall()]

    def _items(
        self, migration_id: str, state: MigrationItemState, limit: int | None
    ) -> list[MigrationItem]:
        query = (
            "SELECT migration_id, seq, entity_id, wave, state, job_id, error "
            "FROM sync_migration_items WHERE migration_id = ? AND state = ? ORDER BY seq"
        )
        params: tuple = (migration_id, state.value)
        if limit is not None:
            query += " LIMIT ?"
            params = (*params, limit)
        self._conn.execute(query, params)
        return [_row_to_item(r) for r in self._conn.fetchall()]

    def assign_wave(self, migration_id: str, seqs: list[int], wave: int) -> None:
        now = to_iso8601(self._clock())
        self._conn.executemany(
            "UPDATE sync_migration_items SET wave = ?, updated_at = ? "
            "WHERE migration_id = ? AND seq = ? AND state = 'pending'",
            [(wave, now, migration_id, seq) for seq in seqs],
        )
        self._conn.commit()

    def dispatch_item(self, migration_id: str, seq: int, job_id: str) -> bool:
        cur = self._conn.execute(
            "UPDATE sync_migration_items SET state = 'dispatched', job_id = ?, updated_at = ? "
            "WHERE migration_id = ? AND seq = ? AND state = 'pending'",
            (job_id, to_iso8601(self._clock()), migration_id, seq),
        )
        dispatched = cur.rowcount == 1
        self._conn.commit()
        return dispatched

    def finish_item(
        self,
        migration_id: str,
        seq: int,
        succeeded: bool,
        error: str | None = None,
    ) -> bool:
        """Move an item to its terminal state and count it exactly once."""
        target = MigrationItemState.SUCCEEDED if succeeded else MigrationItemState.FAILED
        now = to_iso8601(self._clock())
        cur = self._conn.execute(
            "UPDATE sync_migration_items SET state = ?, error = ?, updated_at = ? "
            "WHERE migration_id = ? AND seq = ? AND state IN ('pending', 'dispatched')",
            (target.value, error, now, migration_id, seq),
        )
        if cur.rowcount != 1:
            self._conn.rollback()
            return False
        self._conn.execute(
            """
            UPDATE sync_migrations
            SET items_processed = items_processed + 1,
                items_succeeded = items_succeeded + ?,
                items_failed = items_failed + ?,
                updated_at = ?
            WHERE id = ? AND items_processed < items_total
            """,
            (1 if succeeded else 0, 0 if succeeded else 1, now, migration_id),
        )
        self._conn.commit()
        return True

    def item_counts(self, migration_id: str) -> dict[str, int]:
        self._conn.execute(
            "SELECT state, COUNT(*) FROM sync_migration_items WHERE migration_id = ? GROUP BY state",
            (migration_id,),
        )
        counts = {s.value: 0 for s in MigrationItemState}
        for state, count in self._conn.fetchall():
            counts[state] = count
        return counts

    # ------------------------------------------------------------------ #
    # Waves and errors
    # ------------------------------------------------------------------ #

    def start_wave(self, migration_id: str, wave: int) -> None:
        self._conn.execute(
            "UPDATE sync_migrations SET current_wave = ?, updated_at = ? WHERE id = ?",
            (wave, to_iso8601(self._clock()), migration_id),
        )
        self._conn.commit()

    def record_wave(self, migration_id: str, seconds: float) -> None:
        now = to_iso8601(self._clock())
        self._conn.execute(
            "UPDATE sync_migrations SET wave_seconds_total = wave_seconds_total + ?, "
            "last_wave_at = ?, updated_at = ? WHERE id = ?",
            (seconds, now, now, migration_id),
        )
        self._conn.commit()

    def append_errors(self, migration_id: str, errors: list[str]) -> None:
        if not errors:
            return
        self._conn.execute("SELECT errors FROM sync_migrations WHERE id = ?", (migration_id,))
        row = self._conn.fetchone()
        history = json.loads(row[0] or "[]") if row is not None else []
        history = (history + errors)[-ERROR_HISTORY_LIMIT:]
        self._conn.execute(
            "UPDATE sync_migrations SET errors = ? WHERE id = ?",
            (json.dumps(history), migration_id),
        )
        self._conn.commit()


def _row_to_migration(row: Any) -> BatchMigration:
    return BatchMigration(
        id=row["id"],
        state=MigrationState(row["state"]),
        config=BatchMigrationConfig.from_dict(json.loads(row["config"])),
        items_total=row["items_total"],
        items_processed=row["items_processed"],
        items_succeeded=row["items_succeeded"],
        items_failed=row["items_failed"],
        current_wave=row["current_wave"],
        total_waves=row["total_waves"],
        wave_seconds_total=row["wave_seconds_total"],
        errors=json.loads(row["errors"] or "[]"),
        failure_reason=row["failure_reason"],
        created_by=row["created_by"],
        runner_id=row["runner_id"],
        heartbeat_at=from_iso8601(row["heartbeat_at"]),
        created_at=from_iso8601(row["created_at"]),
        updated_at=from_iso8601(row["updated_at"]),
        started_at=from_iso8601(row["started_at"]),
        last_wave_at=from_iso8601(row["last_wave_at"]),
        completed_at=from_iso8601(row["completed_at"]),
    )


def _row_to_item(row: Any) -> MigrationItem:
    return MigrationItem(
        migration_id=row["migration_id"],
        seq=row["seq"],
        entity_id=row["entity_id"],
        wave=row["wave"],
        state=MigrationItemState(row["state"]),
        job_id=row["job_id"],
        error=row["error"],
    )
