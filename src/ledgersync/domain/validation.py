"""Entity-level validation rules for timesheet submissions.

The same rules back four callers: quarantine review of ``correctedData``,
migration ``validateHistoricalData``, dry-run migrations, and automated
quarantine recovery.  Rules are ordered; every rule runs so a report lists
all issues, not just the first.

Every rule has a stable name (see :data:`VALIDATION_RULES`).  Callers pass
the names bypassed by active validation overrides as ``bypass``; issues
raised by those rules are reported as overridden warnings instead of
errors.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from ledgersync.domain.submissions import SubmissionRecord

Severity = Literal["warning", "error"]

MAX_ENTRY_MINUTES = 24 * 60

VALIDATION_RULES: dict[str, str] = {
    "email_required": "Submitter email must be present",
    "period_order": "Period start must not be after period end",
    "amount_non_negative": "Amount must not be negative",
    "entries_required": "Submission must carry at least one time entry",
    "entry_client_required": "Every time entry needs a client",
    "entry_duration_range": "Entry duration must be between 1 minute and 24 hours",
    "entry_bill_rate": "Billable entries should carry a bill rate",
}


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    record_id: str
    issue: str
    severity: Severity
    field: str | None = None
    rule: str | None = None
    overridden: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "issue": self.issue,
            "severity": self.severity,
            "field": self.field,
            "rule": self.rule,
            "overridden": self.overridden,
        }


def validate_submission(
    record: SubmissionRecord, *, bypass: Collection[str] = ()
) -> list[ValidationIssue]:
    """Return every issue found on *record* (empty list when clean)."""
    issues: list[ValidationIssue] = []

    def add(rule: str, issue: str, severity: Severity, field: str | None = None) -> None:
        if rule in bypass and severity == "error":
            issues.append(ValidationIssue(record.id, issue, "warning", field, rule, overridden=True))
        else:
            issues.append(ValidationIssue(record.id, issue, severity, field, rule))

    if not record.user_email:
        add("email_required", "Submitter email is missing", "error", "user_email")
    if record.period_start > record.period_end:
        add("period_order", "Period start is after period end", "error", "period_start")
    if record.amount is not None and record.amount < 0:
        add("amount_non_negative", "Amount is negative", "error", "amount")
    if not record.entries:
        add("entries_required", "Submission has no time entries", "error", "entries")

    for entry in record.entries:
        if not entry.client_id:
            add("entry_client_required", f"Time entry {entry.id} has no client", "error", "entries")
        if entry.minutes <= 0 or entry.minutes > MAX_ENTRY_MINUTES:
            add("entry_duration_range",
                f"Time entry {entry.id} duration {entry.minutes}m is out of range", "error", "entries")
        if entry.billable and entry.bill_rate is None:
            add("entry_bill_rate", f"Billable time entry {entry.id} has no bill rate", "warning", "entries")

    return issues


def has_errors(issues: Iterable[ValidationIssue]) -> bool:
    return any(i.severity == "error" for i in issues)
