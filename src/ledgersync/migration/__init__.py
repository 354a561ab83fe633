"""Batch migrations: supervised replay of historical submissions in waves."""

from ledgersync.migration.controller import BatchMigrationController
from ledgersync.migration.models import (
    BatchMigration,
    BatchMigrationConfig,
    MigrationAction,
    MigrationItem,
    MigrationItemState,
    MigrationState,
    StepResult,
)
from ledgersync.migration.store import MigrationStore

__all__ = [
    "BatchMigration",
    "BatchMigrationConfig",
    "BatchMigrationController",
    "MigrationAction",
    "MigrationItem",
    "MigrationItemState",
    "MigrationState",
    "MigrationStore",
    "StepResult",
]
