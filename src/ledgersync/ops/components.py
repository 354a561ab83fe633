"""
Pipeline components built from an :class:`OperationContext`.

Operations construct their collaborators per call on the context's
connection; nothing here is cached across requests.
"""

from __future__ import annotations

from typing import Any

from ledgersync.core.settings import LedgerSyncSettings
from ledgersync.domain.overrides import ValidationOverrideStore
from ledgersync.domain.submissions import SubmissionRepository
from ledgersync.execution.queue import SyncQueueManager
from ledgersync.migration.controller import BatchMigrationController
from ledgersync.ops.context import OperationContext
from ledgersync.quarantine.reviewer import QuarantineReviewer


def settings_for(ctx: OperationContext) -> LedgerSyncSettings:
    return ctx.settings or LedgerSyncSettings()


def submission_repository(ctx: OperationContext) -> SubmissionRepository:
    return SubmissionRepository(ctx.conn, clock=ctx.clock)


def override_store(ctx: OperationContext) -> ValidationOverrideStore:
    return ValidationOverrideStore(ctx.conn, clock=ctx.clock)


def queue_manager(ctx: OperationContext) -> SyncQueueManager:
    return SyncQueueManager(
        ctx.conn,
        repository=submission_repository(ctx),
        settings=settings_for(ctx),
        clock=ctx.clock,
    )


def quarantine_reviewer(ctx: OperationContext) -> QuarantineReviewer:
    queue = queue_manager(ctx)
    return QuarantineReviewer(queue.quarantine, queue)


def migration_controller(ctx: OperationContext, **kwargs: Any) -> BatchMigrationController:
    """Controller on the context's connection; *kwargs* go to the constructor."""
    return BatchMigrationController(
        queue_manager(ctx),
        settings=settings_for(ctx),
        clock=ctx.clock,
        **kwargs,
    )
