"""Tests for ``ledgersync.domain.validation``."""

from __future__ import annotations

from datetime import date

from ledgersync.domain.submissions import TimeEntry
from ledgersync.domain.validation import VALIDATION_RULES, has_errors, validate_submission


def _issues(record):
    return {(i.issue, i.severity) for i in validate_submission(record)}


class TestValidateSubmission:
    def test_clean_record(self, make_submission):
        assert validate_submission(make_submission()) == []

    def test_record_level_errors(self, make_submission):
        record = make_submission(
            "TS-9",
            user_email=None,
            period_start=date(2026, 1, 10),
            period_end=date(2026, 1, 4),
            amount=-1.0,
            entries=[],
        )
        issues = validate_submission(record)
        assert {i.field for i in issues} == {"user_email", "period_start", "amount", "entries"}
        assert all(i.severity == "error" for i in issues)
        assert all(i.record_id == "TS-9" for i in issues)

    def test_entry_rules(self, make_submission):
        record = make_submission(
            entries=[
                TimeEntry(id="e1", work_date="2026-01-05", minutes=0, client_id="c-1"),
                TimeEntry(id="e2", work_date="2026-01-06", minutes=1441, client_id="c-1"),
                TimeEntry(id="e3", work_date="2026-01-07", minutes=60, client_id=None),
                TimeEntry(id="e4", work_date="2026-01-08", minutes=60, client_id="c-1", billable=True),
            ]
        )
        assert _issues(record) == {
            ("Time entry e1 duration 0m is out of range", "error"),
            ("Time entry e2 duration 1441m is out of range", "error"),
            ("Time entry e3 has no client", "error"),
            ("Billable time entry e4 has no bill rate", "warning"),
        }

    def test_full_day_is_allowed(self, make_submission):
        record = make_submission(
            entries=[TimeEntry(id="e1", work_date="2026-01-05", minutes=1440, client_id="c-1")]
        )
        assert validate_submission(record) == []

    def test_has_errors_ignores_warnings(self, make_submission):
        warning_only = make_submission(
            entries=[TimeEntry(id="e1", work_date="2026-01-05", minutes=60, client_id="c", billable=True)]
        )
        assert validate_submission(warning_only)
        assert has_errors(validate_submission(warning_only)) is False
        assert has_errors(validate_submission(make_submission(amount=-1.0))) is True

    def test_to_dict(self, make_submission):
        issue = validate_submission(make_submission("TS-7", amount=-1.0))[0]
        assert issue.to_dict() == {
            "record_id": "TS-7",
            "issue": "Amount is negative",
            "severity": "error",
            "field": "amount",
            "rule": "amount_non_negative",
            "overridden": False,
        }


class TestBypass:
    def test_bypassed_error_becomes_overridden_warning(self, make_submission):
        record = make_submission(amount=-1.0, user_email=None)
        issues = validate_submission(record, bypass={"amount_non_negative"})
        amount = next(i for i in issues if i.rule == "amount_non_negative")
        assert amount.severity == "warning"
        assert amount.overridden is True
        assert has_errors(issues) is True
        assert not has_errors(validate_submission(record, bypass={"amount_non_negative", "email_required"}))

    def test_every_issue_names_a_known_rule(self, make_submission):
        record = make_submission(
            user_email=None,
            amount=-1.0,
            entries=[TimeEntry(id="e1", work_date="2026-01-05", minutes=0, billable=True)],
        )
        assert {i.rule for i in validate_submission(record)} <= set(VALIDATION_RULES)
