"""Quarantine Reviewer: human (and automated) resolution of quarantined records.

Resolving a record puts the entity back into the pipeline as a fresh sync
job, optionally after merging operator-corrected fields into it.  Rejecting
a record closes it for good; a later failure of the same entity opens a
new record.

::

    review(id, actor, decision, notes, corrected_data)
        rejected ──► close(rejected)
        resolved ──► [corrected_data] in_review ─► apply_correction ─► invalid? stop, stay in_review
                 ──► close(resolved) ──► enqueue fresh job ──► [authorization] release dispatch hold

    bulk_update(ids, {status, notes}, actor)  ─ per-record results, no cross-record transaction
    recover(dry_run, max_records, ...)        ─ auto-resolve records whose entity now validates
"""

from __future__ import annotations

from typing import Any

from ledgersync.core.enums import Priority
from ledgersync.core.errors import (
    DataValidationError,
    InvalidConfigError,
    LedgerSyncError,
)
from ledgersync.core.logging import get_logger
from ledgersync.domain.submissions import EntityRepository
from ledgersync.domain.validation import has_errors, validate_submission
from ledgersync.execution.models import EnqueueOptions, SyncOperation, TriggerSource
from ledgersync.execution.queue import SyncQueueManager
from ledgersync.quarantine.models import (
    BulkItemResult,
    EntityType,
    QuarantineReason,
    QuarantineRecord,
    QuarantineStatus,
    RecoveryReport,
    ReviewDecision,
    ReviewResult,
)
from ledgersync.quarantine.store import QuarantineStore

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"

# Reasons whose records can be closed automatically once the entity
# passes validation again.
_DATA_REASONS = frozenset({
    QuarantineReason.VALIDATION_FAILED,
    QuarantineReason.BUSINESS_RULE_VIOLATION,
    QuarantineReason.DATA_INTEGRITY,
    QuarantineReason.API_ERROR,
})

BULK_STATUSES = frozenset({
    QuarantineStatus.IN_REVIEW,
    QuarantineStatus.RESOLVED,
    QuarantineStatus.REJECTED,
})


class QuarantineReviewer:
    """Review, bulk-update, and recovery on top of :class:`QuarantineStore`."""

    def __init__(
        self,
        store: QuarantineStore,
        queue: SyncQueueManager,
        repository: EntityRepository | None = None,
    ):
        self._store = store
        self._queue = queue
        self._repository = repository or queue.repository

    @property
    def store(self) -> QuarantineStore:
        return self._store

    # ------------------------------------------------------------------ #
    # Review
    # ------------------------------------------------------------------ #

    def review(
        self,
        record_id: str,
        reviewer_id: str,
        decision: ReviewDecision | str,
        *,
        notes: str | None = None,
        corrected_data: dict[str, Any] | None = None,
    ) -> ReviewResult:
        """Resolve or reject one record.

        Raises:
            NotFoundError: unknown record.
            AlreadyResolvedError: the record is already resolved/rejected.
            DataValidationError: ``corrected_data`` failed entity validation;
                the record is left ``in_review``.
        """
        try:
            decision = ReviewDecision(decision)
        except ValueError as exc:
            raise InvalidConfigError("decision", decision) from exc

        record = self._store.require(record_id)
        if decision is ReviewDecision.REJECTED:
            closed = self._store.close(record, QuarantineStatus.REJECTED, reviewer_id, notes=notes)
            return ReviewResult(closed)

        if corrected_data:
            record = self._store.start_review(
                record, reviewer_id, notes=notes, corrected_data=corrected_data
            )
            self._apply_correction(record, corrected_data, reviewer_id)

        closed = self._store.close(
            record,
            QuarantineStatus.RESOLVED,
            reviewer_id,
            notes=notes,
            corrected_data=corrected_data or None,
        )
        job_id = self._reenqueue(closed, reviewer_id)
        self._store.record_audit(closed.id, "reenqueued", reviewer_id, {"job_id": job_id})
        if closed.reason is QuarantineReason.AUTHORIZATION:
            self._queue.release_hold(actor=reviewer_id)
        return ReviewResult(closed, job_id)

    def _apply_correction(
        self, record: QuarantineRecord, corrected_data: dict[str, Any], actor: str
    ) -> None:
        if self._repository is None or record.entity_type != EntityType.SUBMISSION.value:
            raise DataValidationError(
                f"Corrections are not supported for entity type {record.entity_type}",
                field="entity_type",
                value=record.entity_type,
            )
        try:
            self._repository.apply_correction(
                record.entity_id, corrected_data, bypass=self._bypassed(record)
            )
        except DataValidationError as exc:
            self._store.record_audit(record.id, "correction_rejected", actor, {
                "error": exc.message, "issues": exc.issues,
            })
            logger.warning(
                "quarantine_correction_rejected",
                record_id=record.id,
                entity_id=record.entity_id,
                error=exc.message,
            )
            raise

    def _reenqueue(self, record: QuarantineRecord, actor: str) -> str:
        operation = self._failed_operation(record)
        if operation is not SyncOperation.RECONCILE:
            operation = self._queue.operation_for(record.entity_id, fallback=operation)
        result = self._queue.enqueue(
            record.entity_id,
            EnqueueOptions(
                operation=operation,
                priority=record.priority,
                trigger=TriggerSource.MANUAL,
                entity_type=record.entity_type,
                metadata={"quarantine_id": record.id, "actor": actor},
            ),
        )
        logger.info(
            "quarantine_reenqueued",
            operation=result.job.operation.value,
            record_id=record.id,
            entity_id=record.entity_id,
            job_id=result.job_id,
            coalesced=not result.created,
        )
        return result.job_id

    def _failed_operation(self, record: QuarantineRecord) -> SyncOperation:
        """Operation of the job that raised *record*; ``update`` for manual captures."""
        job = self._queue.jobs.get(record.job_id) if record.job_id else None
        return job.operation if job is not None else SyncOperation.UPDATE

    # ------------------------------------------------------------------ #
    # Bulk
    # ------------------------------------------------------------------ #

    def bulk_update(
        self,
        record_ids: list[str],
        updates: dict[str, Any],
        reviewer_id: str,
    ) -> list[BulkItemResult]:
        """Apply one status/notes update to many records, each on its own.

        Raises:
            InvalidConfigError: ``updates`` carries no valid ``status``.
        """
        raw_status = updates.get("status")
        try:
            status = QuarantineStatus(raw_status)
        except ValueError as exc:
            raise InvalidConfigError("status", raw_status) from exc
        if status not in BULK_STATUSES:
            raise InvalidConfigError("status", raw_status,
                                     f"Bulk status must be one of: {', '.join(sorted(s.value for s in BULK_STATUSES))}")
        notes = updates.get("notes")

        results: list[BulkItemResult] = []
        for record_id in record_ids:
            try:
                if status is QuarantineStatus.IN_REVIEW:
                    record = self._store.require(record_id)
                    self._store.start_review(record, reviewer_id, notes=notes)
                    results.append(BulkItemResult(record_id, True))
                else:
                    review = self.review(record_id, reviewer_id, status.value, notes=notes)
                    results.append(BulkItemResult(record_id, True, job_id=review.job_id))
            except LedgerSyncError as exc:
                results.append(BulkItemResult(record_id, False, error=exc.message))

        succeeded = sum(1 for r in results if r.success)
        logger.info(
            "quarantine_bulk_update",
            status=status.value,
            requested=len(record_ids),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            actor=reviewer_id,
        )
        return results

    # ------------------------------------------------------------------ #
    # Manual quarantine
    # ------------------------------------------------------------------ #

    def quarantine_manually(
        self,
        entity_type: str,
        entity_id: str,
        detail: str,
        actor: str,
    ) -> QuarantineRecord:
        """Operator-initiated quarantine (``reason=manual``)."""
        try:
            entity_type = EntityType(entity_type).value
        except ValueError as exc:
            raise InvalidConfigError("entity_type", entity_type) from exc
        if not entity_id:
            raise InvalidConfigError("entity_id", entity_id, "entity_id is required")
        entity_data = None
        if self._repository is not None and entity_type == EntityType.SUBMISSION.value:
            current = self._repository.get(entity_id)
            entity_data = current.to_dict() if current is not None else None
        return self._store.capture(
            entity_type,
            entity_id,
            QuarantineReason.MANUAL,
            detail,
            entity_data=entity_data,
            actor=actor,
        )

    # ------------------------------------------------------------------ #
    # Recovery
    # ------------------------------------------------------------------ #

    def recover(
        self,
        *,
        dry_run: bool = False,
        max_records: int = 100,
        priority_only: bool = False,
        entity_type: str | None = None,
    ) -> RecoveryReport:
        """Close open records that no longer need a human.

        A record is recoverable when its reason is ``retries_exhausted``
        (the transient condition has likely cleared) or when it is a data
        failure and the current entity passes validation, with the entity's
        active validation overrides applied.  Recovered records are resolved
        by ``system`` and re-enqueued (skipped in dry run).  Authorization,
        conflict, and manual records always stay.
        """
        if max_records < 1:
            raise InvalidConfigError("max_records", max_records)
        report = RecoveryReport(dry_run=dry_run)
        candidates = self._store.open_records(
            limit=max_records,
            priority=Priority.HIGH if priority_only else None,
            entity_type=entity_type,
        )
        for record in candidates:
            report.examined += 1
            blocker = self._recovery_blocker(record)
            if blocker is not None:
                report.failed += 1
                report.errors.append(f"{record.id}: {blocker}")
                continue
            if not dry_run:
                try:
                    closed = self._store.close(
                        record,
                        QuarantineStatus.RESOLVED,
                        SYSTEM_ACTOR,
                        notes="Automatically recovered",
                        details={"recovery": True},
                    )
                    job_id = self._reenqueue(closed, SYSTEM_ACTOR)
                    self._store.record_audit(closed.id, "reenqueued", SYSTEM_ACTOR, {"job_id": job_id})
                except LedgerSyncError as exc:
                    report.failed += 1
                    report.errors.append(f"{record.id}: {exc.message}")
                    continue
            report.recovered += 1
            report.recovered_ids.append(record.id)

        logger.info(
            "quarantine_recovery",
            dry_run=dry_run,
            examined=report.examined,
            recovered=report.recovered,
            failed=report.failed,
        )
        return report

    def _bypassed(self, record: QuarantineRecord) -> frozenset[str]:
        return self._queue.overrides.bypassed_rules(record.entity_type, record.entity_id)

    def _recovery_blocker(self, record: QuarantineRecord) -> str | None:
        if record.reason is QuarantineReason.RETRIES_EXHAUSTED:
            return None
        if record.reason not in _DATA_REASONS:
            return f"reason {record.reason.value} requires manual review"
        if self._repository is None or record.entity_type != EntityType.SUBMISSION.value:
            return f"cannot validate entity type {record.entity_type}"
        current = self._repository.get(record.entity_id)
        if current is None:
            return f"entity {record.entity_id} not found"
        issues = validate_submission(current, bypass=self._bypassed(record))
        if has_errors(issues):
            first = next(i for i in issues if i.severity == "error")
            return f"still invalid: {first.issue}"
        return None
