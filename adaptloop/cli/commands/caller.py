"""Caller commands: inspect and erase a caller's derived data."""

from __future__ import annotations

import typer

from ..app import app, console, get_json_mode, open_cli_store
from ..utils import Output, format_score

caller_app = typer.Typer(help="Inspect or erase caller profile data")
app.add_typer(caller_app, name="caller")


@caller_app.command("show")
def show_command(
    caller_id: str = typer.Argument(..., help="Caller identifier"),
    scope: str | None = typer.Option(None, "--scope", help="Only this attribute scope"),
):
    """Show a caller's profile attributes and behavior targets."""
    out = Output(console=console, json_mode=get_json_mode())
    with open_cli_store() as store:
        attributes = store.get_attributes(caller_id, scope)
        targets = store.list_targets(caller_id)

    if not attributes and not targets:
        out.warning(f"No profile data for {caller_id}")

    out.table(
        "Attributes",
        ["Scope", "Key", "Value", "Confidence"],
        [[a.scope, a.key, a.value, format_score(a.confidence)] for a in attributes],
        data_key="attributes",
    )
    out.table(
        "Targets",
        ["Parameter", "Target", "Confidence", "Source"],
        [
            [
                t.parameter_id,
                format_score(t.target_value),
                format_score(t.confidence),
                t.source_spec or "-",
            ]
            for t in targets
        ],
        data_key="targets",
    )
    raise typer.Exit(out.finish())


@caller_app.command("erase")
def erase_command(
    caller_id: str = typer.Argument(..., help="Caller identifier"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete every attribute, target and score event for a caller."""
    out = Output(console=console, json_mode=get_json_mode())
    if not yes and not get_json_mode():
        typer.confirm(f"Erase all data for {caller_id}?", abort=True)

    with open_cli_store() as store:
        counts = store.erase_caller_data(caller_id)

    out.success(
        f"Erased {sum(counts.values())} row(s) for {caller_id}",
        caller_id=caller_id,
        deleted=counts,
    )
    raise typer.Exit(out.finish())
