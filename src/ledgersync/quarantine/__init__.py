"""Quarantine: records the pipeline could not reconcile on its own.

The reviewer lives in :mod:`ledgersync.quarantine.reviewer`; it depends on
the queue manager and is imported from there.
"""

from ledgersync.quarantine.models import (
    BulkItemResult,
    EntityType,
    QuarantineFilter,
    QuarantineReason,
    QuarantineRecord,
    QuarantineStatus,
    RecoveryReport,
    ReviewDecision,
    ReviewResult,
    priority_for,
)
from ledgersync.quarantine.store import QuarantineStore

__all__ = [
    "BulkItemResult",
    "EntityType",
    "QuarantineFilter",
    "QuarantineReason",
    "QuarantineRecord",
    "QuarantineStatus",
    "QuarantineStore",
    "RecoveryReport",
    "ReviewDecision",
    "ReviewResult",
    "priority_for",
]
