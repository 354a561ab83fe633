"""
Database schema for the synchronization pipeline.

Every piece of pipeline state lives in these tables so that queues,
migrations, and quarantine worklists survive process restarts.

Tables:
    - **sync_jobs:** one row per SyncJob; the partial unique index
      ``uq_sync_jobs_live_entity`` is the storage-level guard for the
      single-in-flight invariant.
    - **sync_job_events:** append-only audit of job transitions.
    - **sync_queue_state:** pause flag and authorization hold per named queue.
    - **sync_quarantine_records / sync_quarantine_audit:** quarantine
      worklist (one open record per entity, enforced by a partial unique
      index) and its audit trail.
    - **sync_validation_overrides / sync_validation_override_audit:**
      operator-approved bypasses of named validation rules per entity.
    - **sync_migrations / sync_migration_items:** batch migration runs and
      the dataset frozen at start.
    - **timesheet_submissions:** read model of the records being synced,
      written by the record-management layer.

Usage::

    from ledgersync.core.schema import create_core_tables
    create_core_tables(conn)   # idempotent
"""

from __future__ import annotations

from ledgersync.core.protocols import Connection

# =============================================================================
# TABLE NAMES
# =============================================================================

CORE_TABLES = {
    "jobs": "sync_jobs",
    "job_events": "sync_job_events",
    "queue_state": "sync_queue_state",
    "quarantine": "sync_quarantine_records",
    "quarantine_audit": "sync_quarantine_audit",
    "validation_overrides": "sync_validation_overrides",
    "validation_override_audit": "sync_validation_override_audit",
    "migrations": "sync_migrations",
    "migration_items": "sync_migration_items",
    "submissions": "timesheet_submissions",
}


# =============================================================================
# DDL STATEMENTS
# =============================================================================

CORE_DDL = {
    # =========================================================================
    # SYNC_JOBS
    #
    # State is only ever changed by conditional UPDATEs (WHERE state = ?),
    # never by read-modify-write in application memory.
    # =========================================================================
    "jobs": """
        CREATE TABLE IF NOT EXISTS sync_jobs (
            id TEXT PRIMARY KEY,
            entity_type TEXT NOT NULL DEFAULT 'submission',
            entity_id TEXT NOT NULL,
            operation TEXT NOT NULL,          -- create | update | reconcile
            priority TEXT NOT NULL,           -- high | medium | low
            priority_rank INTEGER NOT NULL,   -- 3 | 2 | 1 (dispatch order)
            queue_name TEXT NOT NULL,         -- high | normal | batch
            state TEXT NOT NULL,              -- waiting | active | completed | failed | delayed | cancelled
            trigger TEXT NOT NULL,            -- manual | scheduled | event
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL,
            stalled_count INTEGER NOT NULL DEFAULT 0,
            migration_id TEXT,
            metadata TEXT NOT NULL DEFAULT '{}',

            -- Ownership while active
            worker_id TEXT,
            heartbeat_at TEXT,

            -- Coalesced re-enqueue while active
            resync_requested INTEGER NOT NULL DEFAULT 0,

            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            last_attempt_at TEXT,
            next_attempt_at TEXT,
            finished_at TEXT,

            last_error TEXT,
            error_category TEXT,
            external_ref TEXT,
            result TEXT
        )
    """,
    "jobs_idx_live_entity": """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_sync_jobs_live_entity
        ON sync_jobs(entity_id)
        WHERE state IN ('waiting', 'active', 'delayed')
    """,
    "jobs_idx_dispatch": """
        CREATE INDEX IF NOT EXISTS idx_sync_jobs_dispatch
        ON sync_jobs(state, priority_rank DESC, created_at)
    """,
    "jobs_idx_queue": """
        CREATE INDEX IF NOT EXISTS idx_sync_jobs_queue
        ON sync_jobs(queue_name, state)
    """,
    "jobs_idx_migration": """
        CREATE INDEX IF NOT EXISTS idx_sync_jobs_migration
        ON sync_jobs(migration_id)
    """,
    "job_events": """
        CREATE TABLE IF NOT EXISTS sync_job_events (
            id TEXT PRIMARY KEY,
            job_id TEXT NOT NULL,
            event_type TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            data TEXT NOT NULL DEFAULT '{}'
        )
    """,
    "job_events_idx_job": """
        CREATE INDEX IF NOT EXISTS idx_sync_job_events_job
        ON sync_job_events(job_id, timestamp)
    """,
    # =========================================================================
    # SYNC_QUEUE_STATE: one row per named queue
    # =========================================================================
    "queue_state": """
        CREATE TABLE IF NOT EXISTS sync_queue_state (
            queue_name TEXT PRIMARY KEY,
            paused INTEGER NOT NULL DEFAULT 0,
            paused_at TEXT,
            paused_by TEXT,
            held INTEGER NOT NULL DEFAULT 0,
            hold_reason TEXT,
            held_at TEXT,
            updated_at TEXT NOT NULL
        )
    """,
    # =========================================================================
    # QUARANTINE
    # =========================================================================
    "quarantine": """
        CREATE TABLE IF NOT EXISTS sync_quarantine_records (
            id TEXT PRIMARY KEY,
            entity_type TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            status TEXT NOT NULL,             -- pending | in_review | resolved | rejected
            priority TEXT NOT NULL,
            priority_rank INTEGER NOT NULL,
            reason TEXT NOT NULL,
            error_detail TEXT NOT NULL DEFAULT '',
            error_category TEXT,
            job_id TEXT,
            entity_data TEXT,                 -- JSON snapshot at capture
            corrected_data TEXT,              -- JSON operator override
            occurrence_count INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            last_occurred_at TEXT NOT NULL,
            reviewed_by TEXT,
            resolved_at TEXT,
            resolved_by TEXT,
            resolution_notes TEXT
        )
    """,
    "quarantine_idx_open_entity": """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_sync_quarantine_open_entity
        ON sync_quarantine_records(entity_type, entity_id)
        WHERE status IN ('pending', 'in_review')
    """,
    "quarantine_idx_worklist": """
        CREATE INDEX IF NOT EXISTS idx_sync_quarantine_worklist
        ON sync_quarantine_records(status, priority_rank DESC, created_at)
    """,
    "quarantine_audit": """
        CREATE TABLE IF NOT EXISTS sync_quarantine_audit (
            id TEXT PRIMARY KEY,
            record_id TEXT NOT NULL,
            action TEXT NOT NULL,
            actor TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            details TEXT NOT NULL DEFAULT '{}'
        )
    """,
    "quarantine_audit_idx_record": """
        CREATE INDEX IF NOT EXISTS idx_sync_quarantine_audit_record
        ON sync_quarantine_audit(record_id, timestamp)
    """,
    # =========================================================================
    # VALIDATION OVERRIDES
    #
    # Only approved (status = 'active'), unexpired rows bypass rules;
    # expiry is evaluated at read time, never written back.
    # =========================================================================
    "validation_overrides": """
        CREATE TABLE IF NOT EXISTS sync_validation_overrides (
            id TEXT PRIMARY KEY,
            entity_type TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            rules TEXT NOT NULL,              -- JSON list of rule names
            justification TEXT NOT NULL,
            override_type TEXT NOT NULL,      -- temporary | permanent
            status TEXT NOT NULL,             -- pending_approval | active | rejected | revoked
            expires_at TEXT,
            created_by TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            approved_by TEXT,
            approved_at TEXT,
            approval_comments TEXT,
            revoked_by TEXT,
            revoked_at TEXT,
            revocation_reason TEXT,
            extended_by TEXT,
            extended_at TEXT,
            extension_reason TEXT
        )
    """,
    "validation_overrides_idx_entity": """
        CREATE INDEX IF NOT EXISTS idx_sync_validation_overrides_entity
        ON sync_validation_overrides(entity_type, entity_id, status)
    """,
    "validation_override_audit": """
        CREATE TABLE IF NOT EXISTS sync_validation_override_audit (
            id TEXT PRIMARY KEY,
            override_id TEXT NOT NULL,
            action TEXT NOT NULL,
            actor TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            details TEXT NOT NULL DEFAULT '{}'
        )
    """,
    "validation_override_audit_idx": """
        CREATE INDEX IF NOT EXISTS idx_sync_validation_override_audit_override
        ON sync_validation_override_audit(override_id, timestamp)
    """,
    # =========================================================================
    # BATCH MIGRATIONS
    # =========================================================================
    "migrations": """
        CREATE TABLE IF NOT EXISTS sync_migrations (
            id TEXT PRIMARY KEY,
            state TEXT NOT NULL,              -- pending | running | paused | cancelled | completed | failed
            config TEXT NOT NULL,             -- JSON BatchMigrationConfig
            items_total INTEGER NOT NULL DEFAULT 0,
            items_processed INTEGER NOT NULL DEFAULT 0,
            items_succeeded INTEGER NOT NULL DEFAULT 0,
            items_failed INTEGER NOT NULL DEFAULT 0,
            current_wave INTEGER NOT NULL DEFAULT 0,
            total_waves INTEGER NOT NULL DEFAULT 0,
            wave_seconds_total REAL NOT NULL DEFAULT 0,
            errors TEXT NOT NULL DEFAULT '[]',
            failure_reason TEXT,
            created_by TEXT,
            open_slot INTEGER,                -- 1 while pending|running|paused, NULL once terminal
            runner_id TEXT,
            heartbeat_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            started_at TEXT,
            last_wave_at TEXT,
            completed_at TEXT
        )
    """,
    "migrations_idx_open": """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_sync_migrations_open
        ON sync_migrations(open_slot)
    """,
    "migration_items": """
        CREATE TABLE IF NOT EXISTS sync_migration_items (
            migration_id TEXT NOT NULL,
            seq INTEGER NOT NULL,
            entity_id TEXT NOT NULL,
            wave INTEGER,
            state TEXT NOT NULL DEFAULT 'pending',   -- pending | dispatched | succeeded | failed
            job_id TEXT,
            error TEXT,
            updated_at TEXT,
            PRIMARY KEY (migration_id, seq)
        )
    """,
    "migration_items_idx_state": """
        CREATE INDEX IF NOT EXISTS idx_sync_migration_items_state
        ON sync_migration_items(migration_id, state, seq)
    """,
    # =========================================================================
    # TIMESHEET_SUBMISSIONS: read model owned by the record-management layer.
    # The pipeline only writes amount/entries corrections and ledger_* columns.
    # =========================================================================
    "submissions": """
        CREATE TABLE IF NOT EXISTS timesheet_submissions (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            user_email TEXT,
            status TEXT NOT NULL,             -- draft | submitted | approved | rejected
            period_start TEXT NOT NULL,       -- ISO date
            period_end TEXT NOT NULL,
            approved_at TEXT,
            amount REAL,
            currency TEXT NOT NULL DEFAULT 'USD',
            entries TEXT NOT NULL DEFAULT '[]',
            ledger_ref TEXT,
            ledger_synced_at TEXT,
            updated_at TEXT NOT NULL
        )
    """,
    "submissions_idx_period": """
        CREATE INDEX IF NOT EXISTS idx_timesheet_submissions_period
        ON timesheet_submissions(status, period_start)
    """,
}


def create_core_tables(conn: Connection) -> None:
    """
    Create all pipeline tables.

    Safe to call multiple times (CREATE IF NOT EXISTS).
    """
    for _name, ddl in CORE_DDL.items():
        conn.execute(ddl)
    conn.commit()


def table_counts(conn: Connection) -> dict[str, int]:
    """Row counts per pipeline table (for ``db status``)."""
    counts: dict[str, int] = {}
    for table in CORE_TABLES.values():
        conn.execute(f"SELECT COUNT(*) FROM {table}")  # noqa: S608
        counts[table] = conn.fetchone()[0]
    return counts
