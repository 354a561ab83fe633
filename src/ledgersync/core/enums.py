"""
Shared enums for ledgersync.

Enums in this module are used by more than one component (jobs and
quarantine records both carry a priority) and are not owned by either.
Import from here to avoid coupling the execution and quarantine packages.

STDLIB ONLY.
"""

from __future__ import annotations

from enum import Enum


class Priority(str, Enum):
    """
    Business priority of a sync job or quarantine record.

    ``rank`` is the stored sort key: higher ranks dispatch first and sit
    at the top of the quarantine worklist.
    """

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @classmethod
    def from_rank(cls, rank: int) -> Priority:
        for priority, value in _PRIORITY_RANK.items():
            if value == rank:
                return priority
        raise ValueError(f"Unknown priority rank: {rank}")


_PRIORITY_RANK = {Priority.HIGH: 3, Priority.MEDIUM: 2, Priority.LOW: 1}
