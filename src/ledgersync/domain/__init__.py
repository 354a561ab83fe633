"""Read model of the records the pipeline synchronizes."""

from ledgersync.domain.submissions import (
    EntityRepository,
    SubmissionRecord,
    SubmissionRepository,
    SubmissionStatus,
    TimeEntry,
)
from ledgersync.domain.validation import ValidationIssue, has_errors, validate_submission

__all__ = [
    "EntityRepository",
    "SubmissionRecord",
    "SubmissionRepository",
    "SubmissionStatus",
    "TimeEntry",
    "ValidationIssue",
    "has_errors",
    "validate_submission",
]
