"""
CLI: ``ledgersync override``: validation rule bypasses per entity.
"""

from __future__ import annotations

import typer

from ledgersync.cli.utils import (
    ActorOption,
    DatabaseOption,
    JsonOption,
    make_context,
    output_paged,
    output_result,
    parse_datetime,
)

app = typer.Typer(no_args_is_help=True)

_LIST_COLUMNS = ["id", "entity_id", "rules", "status", "effective", "expires_at", "created_by"]


@app.command("rules")
def rules(json_out: bool = JsonOption, database: str | None = DatabaseOption) -> None:
    """Rule names an override may bypass."""
    from ledgersync.ops.overrides import list_validation_rules

    ctx, _ = make_context(database)
    output_result(list_validation_rules(ctx), as_json=json_out, title="Validation Rules")


@app.command("list")
def list_overrides(
    entity_id: str | None = typer.Option(None, "--entity-id"),
    entity_type: str | None = typer.Option(None, "--entity-type"),
    status: str | None = typer.Option(None, "--status", "-s", help="pending_approval | active | rejected | revoked"),
    limit: int = typer.Option(50, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """Overrides, newest first."""
    from ledgersync.ops.overrides import list_overrides as _list
    from ledgersync.ops.requests import ListOverridesRequest

    ctx, _ = make_context(database)
    request = ListOverridesRequest(
        entity_type=entity_type, entity_id=entity_id, status=status, limit=limit, offset=offset
    )
    output_paged(_list(ctx, request), as_json=json_out, title="Validation Overrides", columns=_LIST_COLUMNS)


@app.command("show")
def show(
    override_id: str = typer.Argument(..., help="Override ID"),
    database: str | None = DatabaseOption,
    json_out: bool = JsonOption,
) -> None:
    """One override with its audit trail."""
    from ledgersync.ops.overrides import get_override
    from ledgersync.ops.requests import GetOverrideRequest

    ctx, _ = make_context(database)
    output_result(get_override(ctx, GetOverrideRequest(override_id=override_id)),
                  as_json=json_out, title="Validation Override")


@app.command("create")
def create(
    entity_id: str = typer.Argument(..., help="Entity whose validation is relaxed, e.g. TS-100"),
    rule: list[str] = typer.Option(..., "--rule", "-r", help="Rule to bypass (repeatable)"),
    justification: str = typer.Option(..., "--justification", "-j"),
    entity_type: str = typer.Option("submission", "--entity-type"),
    override_type: str = typer.Option("temporary", "--type", help="temporary | permanent"),
    expires_at: str | None = typer.Option(None, "--expires", help="ISO 8601 expiry"),
    requires_approval: bool = typer.Option(False, "--requires-approval", help="Create as pending_approval"),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Bypass named validation rules for one entity."""
    from ledgersync.ops.overrides import create_override
    from ledgersync.ops.requests import CreateOverrideRequest

    ctx, _ = make_context(database, actor=actor)
    request = CreateOverrideRequest(
        entity_id=entity_id,
        entity_type=entity_type,
        rules=tuple(rule),
        justification=justification,
        override_type=override_type,
        expires_at=parse_datetime(expires_at, "--expires"),
        requires_approval=requires_approval,
    )
    output_result(create_override(ctx, request), as_json=json_out, title="Validation Override")


def _control(
    override_id: str,
    action: str,
    comments: str | None,
    database: str | None,
    actor: str,
    json_out: bool,
    new_expires_at: str | None = None,
) -> None:
    from ledgersync.ops.overrides import control_override
    from ledgersync.ops.requests import OverrideActionRequest

    ctx, _ = make_context(database, actor=actor)
    request = OverrideActionRequest(
        override_id=override_id,
        action=action,
        comments=comments,
        new_expires_at=parse_datetime(new_expires_at, "--until"),
    )
    output_result(control_override(ctx, request), as_json=json_out, title=f"Override {action}")


@app.command("approve")
def approve(
    override_id: str = typer.Argument(..., help="Override ID"),
    comments: str | None = typer.Option(None, "--comments"),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Activate a pending override."""
    _control(override_id, "approve", comments, database, actor, json_out)


@app.command("reject")
def reject(
    override_id: str = typer.Argument(..., help="Override ID"),
    comments: str | None = typer.Option(None, "--comments"),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Turn down a pending override."""
    _control(override_id, "reject", comments, database, actor, json_out)


@app.command("revoke")
def revoke(
    override_id: str = typer.Argument(..., help="Override ID"),
    reason: str | None = typer.Option(None, "--reason"),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Withdraw an override; its rules apply again at once."""
    _control(override_id, "revoke", reason, database, actor, json_out)


@app.command("extend")
def extend(
    override_id: str = typer.Argument(..., help="Override ID"),
    until: str = typer.Option(..., "--until", help="New ISO 8601 expiry"),
    reason: str | None = typer.Option(None, "--reason"),
    database: str | None = DatabaseOption,
    actor: str = ActorOption,
    json_out: bool = JsonOption,
) -> None:
    """Push an override's expiry later."""
    _control(override_id, "extend", reason, database, actor, json_out, new_expires_at=until)
