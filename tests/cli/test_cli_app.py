"""
Tests for the root CLI app, sub-command registration, and output helpers.
"""

from __future__ import annotations

import pytest
import typer
from typer.testing import CliRunner

from ledgersync.cli.app import app
from ledgersync.cli.utils import parse_date, parse_json_object

runner = CliRunner()


class TestRootApp:
    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "ledgersync" in result.output

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.stdout.strip() == "ledgersync 0.1.0"

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code in (0, 2)


class TestSubcommandRegistration:
    @pytest.mark.parametrize(
        "group, command",
        [
            ("db", "init"),
            ("sync", "enqueue"),
            ("queue", "retry-failed"),
            ("migration", "analyze"),
            ("quarantine", "review"),
            ("worker", "drain"),
            ("serve", "start"),
        ],
    )
    def test_group_help(self, group, command):
        result = runner.invoke(app, [group, "--help"])
        assert result.exit_code == 0
        assert command in result.output


class TestParsers:
    def test_parse_date(self):
        assert parse_date("2026-01-31", "--to").isoformat() == "2026-01-31"
        assert parse_date(None, "--to") is None

    def test_parse_date_rejects_garbage(self):
        with pytest.raises(typer.BadParameter):
            parse_date("31/01/2026", "--to")

    def test_parse_json_object(self):
        assert parse_json_object('{"amount": 42}', "--corrected-data") == {"amount": 42}

    @pytest.mark.parametrize("raw", ["[1, 2]", "{not json"])
    def test_parse_json_object_rejects(self, raw):
        with pytest.raises(typer.BadParameter):
            parse_json_object(raw, "--metadata")


class TestDbCommands:
    def test_init_creates_tables(self, cli_json):
        data = cli_json("db", "init")
        assert "sync_jobs" in data["tables_created"]
        assert data["dry_run"] is False

    def test_init_dry_run(self, cli_json):
        assert cli_json("db", "init", "--dry-run")["dry_run"] is True

    def test_health(self, cli, cli_json):
        cli("db", "init")
        data = cli_json("db", "health")
        assert data["connected"] is True
        assert data["table_counts"]["sync_quarantine_records"] == 0
