"""Tests for ledgersync.ops.health and ledgersync.ops.database."""

from ledgersync import __version__
from ledgersync.core.connection import SqliteConnection
from ledgersync.core.errors import AuthorizationError
from ledgersync.ops.context import OperationContext
from ledgersync.ops.database import check_database_health, initialize_database
from ledgersync.ops.health import get_health
from ledgersync.ops.requests import EnqueueSyncRequest
from ledgersync.ops.sync import enqueue_sync


class TestDatabaseOps:
    def test_initialize_is_idempotent(self, ctx):
        first = initialize_database(ctx)
        second = initialize_database(ctx)
        assert first.success and second.success
        assert "sync_jobs" in second.data.tables_created

    def test_initialize_dry_run(self):
        conn = SqliteConnection(":memory:")
        result = initialize_database(OperationContext(conn=conn, dry_run=True))
        assert result.data.dry_run is True
        assert check_database_health(OperationContext(conn=conn)).data.connected is False
        conn.close()

    def test_health_counts(self, ctx, seed_submissions):
        seed_submissions(2)
        health = check_database_health(ctx)
        assert health.data.connected is True
        assert health.data.table_counts["timesheet_submissions"] == 2


class TestGetHealth:
    def test_healthy(self, ctx):
        result = get_health(ctx)
        assert result.data.status == "healthy"
        assert result.data.checks == {"database": "ok", "dispatch": "ok"}
        assert result.data.version == __version__

    def test_degraded_when_dispatch_held(self, ctx, worker, ledger, seed_submissions):
        seed_submissions(1)
        ledger.fail("TS-001", AuthorizationError("token revoked"))
        enqueue_sync(ctx, EnqueueSyncRequest(entity_id="TS-001"))
        worker.drain()

        result = get_health(ctx)

        assert result.data.status == "degraded"
        assert result.data.checks["dispatch"] == "held"
        assert any("token revoked" in w for w in result.warnings)

    def test_unhealthy_without_tables(self):
        conn = SqliteConnection(":memory:")
        result = get_health(OperationContext(conn=conn))
        assert result.success is True
        assert result.data.status == "unhealthy"
        assert result.data.checks["database"] == "fail"
        conn.close()
