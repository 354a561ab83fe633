"""
Tests for ``ledgersync quarantine``.
"""

from __future__ import annotations

import pytest

from ledgersync.quarantine.models import QuarantineReason


@pytest.fixture()
def records(seed, quarantine_store):
    seed(2)
    validation = quarantine_store.capture(
        "submission", "TS-001", QuarantineReason.VALIDATION_FAILED, "amount must be positive",
    )
    conflict = quarantine_store.capture(
        "submission", "TS-002", QuarantineReason.CONFLICT, "duplicate in ledger",
    )
    return {"validation": validation.id, "conflict": conflict.id}


class TestWorklist:
    def test_list_priority_first(self, cli_json, records):
        page = cli_json("quarantine", "list")
        assert page["total"] == 2
        assert [r["priority"] for r in page["items"]] == ["high", "medium"]

    def test_list_filters(self, cli_json, records):
        page = cli_json("quarantine", "list", "--priority", "medium", "--status", "pending")
        assert [r["id"] for r in page["items"]] == [records["validation"]]

    def test_list_empty(self, cli):
        result = cli("quarantine", "list")
        assert result.exit_code == 0
        assert "No items." in result.output

    def test_show(self, cli_json, records):
        data = cli_json("quarantine", "show", records["conflict"])
        assert data["record"]["entity_id"] == "TS-002"
        assert [a["action"] for a in data["audit"]] == ["captured"]

    def test_stats(self, cli_json, records):
        data = cli_json("quarantine", "stats")
        assert data["open"] == 2


class TestReview:
    def test_resolve_with_correction(self, cli_json, records):
        data = cli_json(
            "quarantine", "review", records["validation"],
            "--status", "resolved",
            "--corrected-data", '{"amount": 42}',
            "--actor", "reviewer-1",
        )
        assert data["record"]["status"] == "resolved"
        assert data["record"]["resolved_by"] == "reviewer-1"
        job = cli_json("sync", "status", data["job_id"])
        assert job["metadata"]["quarantine_id"] == records["validation"]

    def test_invalid_correction_lists_issues(self, cli, records):
        result = cli(
            "quarantine", "review", records["validation"],
            "--status", "resolved", "--corrected-data", '{"amount": -3}',
        )
        assert result.exit_code == 1
        assert "VALIDATION_FAILED" in result.output

    def test_reject_twice(self, cli, cli_json, records):
        cli_json("quarantine", "review", records["conflict"], "--status", "rejected")
        result = cli("quarantine", "review", records["conflict"], "--status", "rejected")
        assert result.exit_code == 1
        assert "ALREADY_RESOLVED" in result.output

    def test_bulk(self, cli_json, records):
        data = cli_json("quarantine", "bulk", records["validation"], "q-missing", "--status", "in_review")
        assert data["succeeded"] == 1
        assert data["failed"] == 1


class TestRecoverAndAdd:
    def test_recover_dry_run(self, cli_json, records):
        data = cli_json("quarantine", "recover", "--dry-run")
        assert data["dry_run"] is True
        assert data["recovered_ids"] == [records["validation"]]

    def test_add_manual(self, cli_json, seed):
        seed(1)
        data = cli_json("quarantine", "add", "TS-001", "--detail", "client dispute")
        assert data["reason"] == "manual"
        assert data["status"] == "pending"
