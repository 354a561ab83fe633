"""
Tests for ``ledgersync override``.
"""

from __future__ import annotations

import pytest


@pytest.fixture()
def pending(cli_json):
    return cli_json(
        "override", "create", "TS-001",
        "--rule", "amount_non_negative",
        "--rule", "period_order",
        "--justification", "credit note agreed with client",
        "--requires-approval",
        "--actor", "analyst-1",
    )


class TestCreate:
    def test_pending(self, pending):
        assert pending["status"] == "pending_approval"
        assert pending["rules"] == ["amount_non_negative", "period_order"]
        assert pending["created_by"] == "analyst-1"

    def test_active_with_expiry(self, cli_json):
        data = cli_json(
            "override", "create", "TS-002", "-r", "entry_bill_rate",
            "-j", "rate card pending", "--expires", "2099-01-01T00:00:00+00:00",
        )
        assert data["status"] == "active"
        assert data["effective"] is True

    def test_bad_expiry(self, cli):
        result = cli("override", "create", "TS-001", "-r", "period_order", "-j", "x", "--expires", "soon")
        assert result.exit_code != 0

    def test_unknown_rule(self, cli):
        result = cli("override", "create", "TS-001", "-r", "no_such_rule", "-j", "x")
        assert result.exit_code == 1
        assert "VALIDATION_FAILED" in result.output


class TestLifecycle:
    def test_list_and_show(self, cli_json, pending):
        page = cli_json("override", "list", "--status", "pending_approval")
        assert page["total"] == 1
        assert page["items"][0]["id"] == pending["id"]

        data = cli_json("override", "show", pending["id"])
        assert [a["action"] for a in data["audit"]] == ["created"]

    def test_approve_then_revoke(self, cli_json, pending):
        approved = cli_json("override", "approve", pending["id"], "--comments", "ok", "--actor", "controller-1")
        assert approved["status"] == "active"
        assert approved["approved_by"] == "controller-1"

        revoked = cli_json("override", "revoke", pending["id"], "--reason", "client paid")
        assert revoked["status"] == "revoked"
        assert revoked["effective"] is False

    def test_reject_twice(self, cli, cli_json, pending):
        cli_json("override", "reject", pending["id"])
        result = cli("override", "reject", pending["id"])
        assert result.exit_code == 1
        assert "INVALID_TRANSITION" in result.output

    def test_extend(self, cli_json, pending):
        data = cli_json("override", "extend", pending["id"], "--until", "2099-06-30T00:00:00+00:00")
        assert data["expires_at"].startswith("2099-06-30")

    def test_unknown(self, cli):
        result = cli("override", "approve", "missing")
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output

    def test_rules(self, cli_json):
        assert "amount_non_negative" in cli_json("override", "rules")
