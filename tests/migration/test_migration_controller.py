"""Tests for ``ledgersync.migration.controller``.

Waves are settled by a fake ``sleep`` that drains the inline worker, so
each poll of the controller sees the jobs of the current wave finish.
"""

from __future__ import annotations

import pytest

from ledgersync.core.enums import Priority
from ledgersync.core.errors import (
    ConflictError,
    DataValidationError,
    InvalidConfigError,
    InvalidTransitionError,
)
from ledgersync.execution.models import JobState, QueueName, TriggerSource
from ledgersync.migration.controller import BatchMigrationController
from ledgersync.migration.models import (
    BatchMigrationConfig,
    MigrationItemState,
    MigrationState,
    StepResult,
)


class _RunnerDied(Exception):
    pass


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def controller(manager, settings, clock, worker, sleeps) -> BatchMigrationController:
    def drain_then_tick(seconds: float) -> None:
        sleeps.append(seconds)
        worker.drain()
        clock.advance(seconds=1)

    return BatchMigrationController(
        manager, settings=settings, clock=clock, sleep=drain_then_tick, runner_id="r-test"
    )


def _controller(manager, settings, clock, sleep, runner_id="r-other"):
    return BatchMigrationController(
        manager, settings=settings, clock=clock, sleep=sleep, runner_id=runner_id
    )


def _validation_failure(entity_id: str) -> DataValidationError:
    return DataValidationError(f"Ledger rejected {entity_id}", field="amount")


# ── Reports ──────────────────────────────────────────────────────────────


class TestAnalyze:
    def test_estimates_waves_and_duration(self, controller, seed_submissions):
        seed_submissions(120)
        report = controller.analyze(batch_size=50, delay_between_batches=10)
        assert report["pending_migration"] == 120
        assert report["estimated_waves"] == 3
        assert report["estimated_duration_seconds"] == 3 * 120 + 2 * 10
        assert report["estimated_duration"] == "6m"

    def test_date_bounds(self, controller, seed_submissions):
        seed_submissions(10)
        report = controller.analyze(date_from="2026-01-12", date_to="2026-01-26")
        assert report["pending_migration"] == 3
        assert report["oldest_pending"] == "2026-01-12"

    def test_synced_records_are_not_pending(self, controller, seed_submissions, repository):
        ids = seed_submissions(3)
        repository.mark_synced(ids[0], "L-1")
        report = controller.analyze()
        assert report["already_synced"] == 1
        assert report["pending_migration"] == 2

    def test_rejects_bad_batch_size(self, controller):
        with pytest.raises(InvalidConfigError):
            controller.analyze(batch_size=0)


class TestValidate:
    def test_counts_invalid_records(self, controller, seed_submissions, repository, make_submission):
        seed_submissions(2)
        repository.save(make_submission("TS-BAD", amount=-5.0))
        report = controller.validate()
        assert report["total_records"] == 3
        assert report["valid_records"] == 2
        assert report["invalid_records"] == 1
        assert report["issues"][0]["record_id"] == "TS-BAD"

    def test_active_override_counts_record_as_valid(
        self, controller, manager, seed_submissions, repository, make_submission
    ):
        seed_submissions(1)
        repository.save(make_submission("TS-BAD", amount=-5.0))
        manager.overrides.create("submission", "TS-BAD", ["amount_non_negative"], "credit note", "ops")

        report = controller.validate()

        assert report["invalid_records"] == 0
        assert report["issues"] == [{
            "record_id": "TS-BAD",
            "issue": "Amount is negative",
            "severity": "warning",
            "field": "amount",
            "rule": "amount_non_negative",
            "overridden": True,
        }]


# ── Lifecycle ────────────────────────────────────────────────────────────


class TestStart:
    def test_freezes_dataset(self, controller, seed_submissions):
        seed_submissions(120)
        migration = controller.start(BatchMigrationConfig(batch_size=50), actor="ops")
        assert migration.state is MigrationState.RUNNING
        assert migration.items_total == 120
        assert migration.total_waves == 3
        assert migration.created_by == "ops"
        assert migration.started_at is not None
        assert controller.store.item_counts(migration.id)["pending"] == 120

    def test_records_added_later_are_not_replayed(self, controller, seed_submissions):
        seed_submissions(2)
        migration = controller.start(BatchMigrationConfig(batch_size=50))
        seed_submissions(3, start=50)
        assert controller.store.item_counts(migration.id)["pending"] == 2

    def test_only_one_open_migration(self, controller, seed_submissions):
        seed_submissions(2)
        controller.start(BatchMigrationConfig())
        with pytest.raises(ConflictError):
            controller.start(BatchMigrationConfig())

    def test_new_migration_after_completion(self, controller, seed_submissions):
        seed_submissions(2)
        first = controller.start(BatchMigrationConfig())
        controller.run(first.id)
        second = controller.start(BatchMigrationConfig(dry_run=True))
        assert second.id != first.id


class TestOperatorControls:
    def test_pause_resume_cancel(self, controller, seed_submissions):
        seed_submissions(2)
        migration = controller.start(BatchMigrationConfig())
        assert controller.pause(migration.id).state is MigrationState.PAUSED
        assert controller.resume(migration.id).state is MigrationState.RUNNING
        cancelled = controller.cancel(migration.id, actor="ops")
        assert cancelled.state is MigrationState.CANCELLED
        assert cancelled.completed_at is not None

    def test_resume_requires_paused(self, controller, seed_submissions):
        seed_submissions(1)
        migration = controller.start(BatchMigrationConfig())
        with pytest.raises(InvalidTransitionError):
            controller.resume(migration.id)

    def test_cancelled_cannot_pause(self, controller, seed_submissions):
        seed_submissions(1)
        migration = controller.start(BatchMigrationConfig())
        controller.cancel(migration.id)
        with pytest.raises(InvalidTransitionError):
            controller.pause(migration.id)


# ── Waves ────────────────────────────────────────────────────────────────


class TestWaves:
    def test_three_waves_of_fifty_fifty_twenty(self, controller, seed_submissions, ledger):
        seed_submissions(120)
        migration = controller.start(BatchMigrationConfig(batch_size=50))

        done = controller.run(migration.id)

        assert done.state is MigrationState.COMPLETED
        assert done.items_processed == 120
        assert done.items_succeeded == 120
        assert done.current_wave == 3
        sizes = [len(controller.store.wave_items(migration.id, w)) for w in (1, 2, 3)]
        assert sizes == [50, 50, 20]
        assert len(ledger.calls) == 120
        assert controller.progress(migration.id)["percent_complete"] == 100.0

    def test_jobs_carry_migration_tag(self, controller, manager, seed_submissions):
        seed_submissions(3)
        migration = controller.start(BatchMigrationConfig(batch_size=10, max_retries=5))
        controller.run(migration.id)

        jobs, total = manager.list_jobs(migration_id=migration.id)
        assert total == 3
        for job in jobs:
            assert job.queue_name is QueueName.BATCH
            assert job.priority is Priority.LOW
            assert job.trigger is TriggerSource.SCHEDULED
            assert job.max_attempts == 5
            assert job.metadata["wave"] == 1
            assert job.state is JobState.COMPLETED

    def test_pause_after_first_wave_holds_second(self, controller, seed_submissions):
        seed_submissions(120)
        migration = controller.start(BatchMigrationConfig(batch_size=50))

        assert controller.step(migration.id) is StepResult.WAVE_COMPLETED
        controller.pause(migration.id)

        assert controller.step(migration.id) is StepResult.PAUSED
        assert controller.step(migration.id) is StepResult.PAUSED
        paused = controller.get(migration.id)
        assert paused.current_wave == 1
        assert paused.items_processed == 50
        assert controller.store.wave_items(migration.id, 2) == []

        controller.resume(migration.id)
        assert controller.step(migration.id) is StepResult.WAVE_COMPLETED
        assert controller.get(migration.id).current_wave == 2
        assert controller.step(migration.id) is StepResult.FINISHED

    def test_run_returns_when_paused_without_waiting(self, controller, seed_submissions):
        seed_submissions(4)
        migration = controller.start(BatchMigrationConfig(batch_size=2))
        controller.pause(migration.id)
        result = controller.run(migration.id, wait_while_paused=False)
        assert result.state is MigrationState.PAUSED
        assert result.runner_id is None

    def test_cancel_stops_new_waves(self, controller, seed_submissions):
        seed_submissions(120)
        migration = controller.start(BatchMigrationConfig(batch_size=50))
        controller.step(migration.id)
        controller.cancel(migration.id)

        assert controller.step(migration.id) is StepResult.CANCELLED
        final = controller.run(migration.id)
        assert final.state is MigrationState.CANCELLED
        assert final.items_processed == 50
        assert controller.store.item_counts(migration.id)["pending"] == 70

    def test_progress_is_monotonic(self, controller, seed_submissions):
        seed_submissions(120)
        migration = controller.start(BatchMigrationConfig(batch_size=50))
        seen = []
        while True:
            result = controller.step(migration.id)
            progress = controller.progress(migration.id)
            seen.append((progress["items_processed"], progress["percent_complete"]))
            if result is not StepResult.WAVE_COMPLETED:
                break
        assert seen == sorted(seen)
        assert seen[-1] == (120, 100.0)

    def test_delay_between_waves(self, controller, seed_submissions, sleeps):
        seed_submissions(4)
        migration = controller.start(BatchMigrationConfig(batch_size=2, delay_between_batches=30))
        controller.run(migration.id)
        assert sleeps.count(30) == 1

    def test_empty_dataset_completes(self, controller):
        migration = controller.start(BatchMigrationConfig())
        assert migration.items_total == 0
        assert controller.run(migration.id).state is MigrationState.COMPLETED
        assert controller.progress(migration.id)["percent_complete"] == 100.0

    def test_record_deleted_after_start_fails_item(self, controller, seed_submissions, conn):
        ids = seed_submissions(2)
        migration = controller.start(BatchMigrationConfig(batch_size=10))
        conn.execute("DELETE FROM timesheet_submissions WHERE id = ?", (ids[0],))
        conn.commit()

        done = controller.run(migration.id)

        # One of two failed: exactly at the 50% threshold, not over it.
        assert done.state is MigrationState.COMPLETED
        assert done.items_failed == 1
        assert done.errors == [f"{ids[0]}: not found"]


# ── Dry run ──────────────────────────────────────────────────────────────


class TestDryRun:
    def test_never_calls_the_ledger(self, controller, manager, seed_submissions, ledger):
        seed_submissions(120)
        migration = controller.start(BatchMigrationConfig(batch_size=50, dry_run=True))

        done = controller.run(migration.id)

        assert done.state is MigrationState.COMPLETED
        assert done.items_succeeded == 120
        assert ledger.calls == []
        assert manager.list_jobs()[1] == 0

    def test_scores_invalid_records(self, controller, seed_submissions, repository, make_submission):
        seed_submissions(1)
        repository.save(make_submission("TS-BAD", entries=[]))
        repository.save(make_submission("TS-NEG", amount=-1.0))
        migration = controller.start(BatchMigrationConfig(dry_run=True))

        done = controller.run(migration.id)

        # Failure threshold does not apply to a report.
        assert done.state is MigrationState.COMPLETED
        assert done.items_failed == 2
        assert {e.split(":")[0] for e in done.errors} == {"TS-BAD", "TS-NEG"}

    def test_scoring_honours_overrides(
        self, controller, manager, seed_submissions, repository, make_submission
    ):
        seed_submissions(1)
        repository.save(make_submission("TS-BAD", entries=[]))
        repository.save(make_submission("TS-NEG", amount=-1.0))
        manager.overrides.create("submission", "TS-NEG", ["amount_non_negative"], "credit note", "ops")
        pending = manager.overrides.create(
            "submission", "TS-BAD", ["entries_required"], "placeholder week", "ops", requires_approval=True
        )
        migration = controller.start(BatchMigrationConfig(dry_run=True))

        done = controller.run(migration.id)

        assert done.items_failed == 1
        assert [e.split(":")[0] for e in done.errors] == ["TS-BAD"]
        assert manager.overrides.get(pending.id).status.value == "pending_approval"


# ── Failure policy ───────────────────────────────────────────────────────


class TestFailurePolicy:
    def test_wave_over_threshold_fails_migration(self, controller, seed_submissions, ledger):
        ids = seed_submissions(4)
        for entity_id in ids[:3]:
            ledger.fail(entity_id, _validation_failure(entity_id))
        migration = controller.start(BatchMigrationConfig(batch_size=4))

        done = controller.run(migration.id)

        assert done.state is MigrationState.FAILED
        assert done.failure_reason == "wave 1 failure rate 75% exceeded threshold 50%"
        assert done.items_failed == 3
        assert all(e.startswith("TS-00") for e in done.errors)
        assert any("Ledger rejected TS-001" in e for e in done.errors)

    def test_failed_migration_leaves_later_waves_pending(self, controller, seed_submissions, ledger):
        ids = seed_submissions(6)
        for entity_id in ids[:2]:
            ledger.fail(entity_id, _validation_failure(entity_id))
        migration = controller.start(BatchMigrationConfig(batch_size=2))

        done = controller.run(migration.id)

        assert done.state is MigrationState.FAILED
        assert controller.store.item_counts(migration.id)["pending"] == 4
        assert len(ledger.calls) == 2

    def test_paused_wave_over_threshold_fails_migration(
        self, manager, settings, clock, worker, seed_submissions, ledger
    ):
        ids = seed_submissions(4)
        for entity_id in ids[:3]:
            ledger.fail(entity_id, _validation_failure(entity_id))

        def pause_then_drain(seconds: float) -> None:
            if paused.get(migration.id).state is MigrationState.RUNNING:
                paused.pause(migration.id, actor="ops")
            worker.drain()
            clock.advance(seconds=1)

        paused = _controller(manager, settings, clock, pause_then_drain)
        migration = paused.start(BatchMigrationConfig(batch_size=4))

        assert paused.step(migration.id) is StepResult.FAILED
        done = paused.get(migration.id)
        assert done.state is MigrationState.FAILED
        assert done.completed_at is not None

    def test_store_rejects_transition_outside_state_machine(self, controller, seed_submissions):
        seed_submissions(1)
        migration = controller.start(BatchMigrationConfig())
        with pytest.raises(InvalidTransitionError):
            controller.store.transition(migration.id, (MigrationState.PENDING,), MigrationState.PAUSED)
        assert controller.get(migration.id).state is MigrationState.RUNNING

    def test_stalled_wave(self, manager, settings, clock, seed_submissions):
        seed_submissions(3)

        def idle(seconds: float) -> None:
            clock.advance(seconds=700)

        stalled = _controller(manager, settings, clock, idle)
        migration = stalled.start(BatchMigrationConfig())

        assert stalled.step(migration.id) is StepResult.FAILED
        failed = stalled.get(migration.id)
        assert failed.failure_reason == "wave 1 stalled"
        assert failed.state is MigrationState.FAILED


# ── Recovery ─────────────────────────────────────────────────────────────


class TestRecovery:
    def test_new_runner_settles_leftover_wave(self, manager, settings, clock, worker, seed_submissions, ledger):
        seed_submissions(5)

        def crash(seconds: float) -> None:
            raise _RunnerDied()

        first = _controller(manager, settings, clock, crash, runner_id="r-1")
        migration = first.start(BatchMigrationConfig(batch_size=10))
        with pytest.raises(_RunnerDied):
            first.step(migration.id)
        assert controller_counts(first, migration.id)["dispatched"] == 5

        def drain(seconds: float) -> None:
            worker.drain()
            clock.advance(seconds=1)

        second = _controller(manager, settings, clock, drain, runner_id="r-2")
        assert second.step(migration.id) is StepResult.FINISHED

        done = second.get(migration.id)
        assert done.items_succeeded == 5
        assert done.current_wave == 1
        assert len(ledger.calls) == 5
        assert controller_counts(second, migration.id)["succeeded"] == 5

    def test_items_are_counted_once(self, controller, seed_submissions):
        seed_submissions(2)
        migration = controller.start(BatchMigrationConfig())
        controller.run(migration.id)
        item = controller.store.wave_items(migration.id, 1)[0]
        assert item.state is MigrationItemState.SUCCEEDED

        assert controller.store.finish_item(migration.id, item.seq, False, "late") is False
        assert controller.get(migration.id).items_processed == 2


class TestRunnerLease:
    def test_fresh_lease_blocks_second_runner(self, controller, seed_submissions, clock):
        seed_submissions(2)
        migration = controller.start(BatchMigrationConfig())
        assert controller.store.claim_lease(migration.id, "r-elsewhere", clock())

        with pytest.raises(ConflictError):
            controller.run(migration.id)

    def test_stale_lease_is_taken_over(self, controller, seed_submissions, clock):
        seed_submissions(2)
        migration = controller.start(BatchMigrationConfig())
        controller.store.claim_lease(migration.id, "r-elsewhere", clock())
        clock.advance(seconds=61)

        done = controller.run(migration.id)

        assert done.state is MigrationState.COMPLETED
        assert done.runner_id is None

    def test_terminal_migration_returns_without_lease(self, controller, seed_submissions):
        seed_submissions(1)
        migration = controller.start(BatchMigrationConfig())
        controller.cancel(migration.id)
        assert controller.run(migration.id).state is MigrationState.CANCELLED


def controller_counts(controller: BatchMigrationController, migration_id: str) -> dict[str, int]:
    return controller.store.item_counts(migration_id)
