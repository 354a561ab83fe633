"""Tests for ``ledgersync.migration.models``."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from ledgersync.core.errors import InvalidConfigError, InvalidTransitionError
from ledgersync.migration.models import (
    BatchMigration,
    BatchMigrationConfig,
    MigrationState,
    validate_migration_transition,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _migration(**overrides) -> BatchMigration:
    fields = {
        "id": "m-1",
        "state": MigrationState.RUNNING,
        "config": BatchMigrationConfig(batch_size=50),
        "created_at": NOW,
        "updated_at": NOW,
        "items_total": 120,
        "total_waves": 3,
    }
    fields.update(overrides)
    return BatchMigration(**fields)


# ── Config ───────────────────────────────────────────────────────────────


class TestBatchMigrationConfig:
    def test_defaults(self):
        config = BatchMigrationConfig()
        assert config.batch_size == 50
        assert config.max_retries == 3
        assert config.dry_run is False

    @pytest.mark.parametrize("size", [0, 501, -5])
    def test_batch_size_bounds(self, size):
        with pytest.raises(InvalidConfigError) as exc_info:
            BatchMigrationConfig(batch_size=size)
        assert exc_info.value.key == "batch_size"

    def test_batch_size_edges_accepted(self):
        assert BatchMigrationConfig(batch_size=1).batch_size == 1
        assert BatchMigrationConfig(batch_size=500).batch_size == 500

    def test_negative_delay(self):
        with pytest.raises(InvalidConfigError):
            BatchMigrationConfig(delay_between_batches=-1)

    @pytest.mark.parametrize("retries", [0, 11])
    def test_max_retries_bounds(self, retries):
        with pytest.raises(InvalidConfigError):
            BatchMigrationConfig(max_retries=retries)

    def test_iso_dates_are_coerced(self):
        config = BatchMigrationConfig(date_from="2026-01-01", date_to="2026-02-01")
        assert config.date_from == date(2026, 1, 1)
        assert config.date_to == date(2026, 2, 1)

    def test_bad_date_string(self):
        with pytest.raises(InvalidConfigError):
            BatchMigrationConfig(date_from="last tuesday")

    def test_inverted_range(self):
        with pytest.raises(InvalidConfigError) as exc_info:
            BatchMigrationConfig(date_from=date(2026, 2, 1), date_to=date(2026, 1, 1))
        assert exc_info.value.key == "date_range"

    @pytest.mark.parametrize(("count", "waves"), [(0, 0), (1, 1), (50, 1), (51, 2), (120, 3)])
    def test_waves_for(self, count, waves):
        assert BatchMigrationConfig(batch_size=50).waves_for(count) == waves

    def test_dict_round_trip(self):
        config = BatchMigrationConfig(batch_size=10, dry_run=True, date_from=date(2026, 1, 1))
        assert BatchMigrationConfig.from_dict(config.to_dict()) == config


# ── State machine ────────────────────────────────────────────────────────


class TestMigrationTransitions:
    def test_open_and_terminal(self):
        assert MigrationState.PAUSED.is_open
        assert MigrationState.COMPLETED.is_terminal
        assert not MigrationState.CANCELLED.is_open

    def test_pause_resume_allowed(self):
        validate_migration_transition(MigrationState.RUNNING, MigrationState.PAUSED)
        validate_migration_transition(MigrationState.PAUSED, MigrationState.RUNNING)

    def test_paused_cannot_complete(self):
        with pytest.raises(InvalidTransitionError):
            validate_migration_transition(MigrationState.PAUSED, MigrationState.COMPLETED)

    def test_paused_can_fail(self):
        validate_migration_transition(MigrationState.PAUSED, MigrationState.FAILED)

    def test_terminal_is_final(self):
        for target in MigrationState:
            with pytest.raises(InvalidTransitionError):
                validate_migration_transition(MigrationState.CANCELLED, target)


# ── Progress ─────────────────────────────────────────────────────────────


class TestProgress:
    def test_percent_complete(self):
        assert _migration(items_processed=60).percent_complete == 50.0

    def test_empty_dataset(self):
        assert _migration(items_total=0).percent_complete == 0.0
        assert _migration(items_total=0, state=MigrationState.COMPLETED).percent_complete == 100.0

    def test_eta_unknown_before_first_wave(self):
        progress = _migration().progress(NOW)
        assert progress["estimated_seconds_remaining"] is None
        assert progress["estimated_completion_at"] is None

    def test_eta_from_average_wave_time(self):
        migration = _migration(current_wave=1, wave_seconds_total=30.0, items_processed=50)
        progress = migration.progress(NOW)
        assert progress["estimated_seconds_remaining"] == 60.0
        assert progress["estimated_completion_at"] == "2026-03-02T09:01:00.000000+00:00"

    def test_terminal_has_no_remaining_time(self):
        migration = _migration(state=MigrationState.FAILED, current_wave=1, wave_seconds_total=30.0)
        assert migration.progress(NOW)["estimated_seconds_remaining"] == 0.0
        assert migration.progress(NOW)["estimated_completion_at"] is None

    def test_error_history_is_capped(self):
        migration = _migration(errors=[f"TS-{n}: boom" for n in range(30)])
        errors = migration.progress(NOW)["errors"]
        assert len(errors) == 20
        assert errors[-1] == "TS-29: boom"
