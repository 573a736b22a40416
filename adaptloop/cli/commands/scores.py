"""Scores commands: record score events and inspect recent windows."""

from __future__ import annotations

import typer
from pydantic import ValidationError

from ..app import app, console, get_json_mode, open_cli_store
from ..utils import Output, format_score

scores_app = typer.Typer(help="Record and inspect score events")
app.add_typer(scores_app, name="scores")


@scores_app.command("add")
def add_command(
    caller_id: str = typer.Argument(..., help="Caller identifier"),
    parameter_id: str = typer.Argument(..., help="Scored parameter"),
    score: float = typer.Argument(..., help="Score in [0, 1]"),
    confidence: float = typer.Option(
        0.7, "--confidence", "-c", help="Confidence in [0, 1]"
    ),
):
    """Append a score event, as an upstream scoring stage would."""
    out = Output(console=console, json_mode=get_json_mode())
    try:
        with open_cli_store() as store:
            event_id = store.record_score(caller_id, parameter_id, score, confidence)
    except ValidationError as e:
        out.error(f"Invalid score event: {e.errors()[0]['msg']}")
        raise typer.Exit(out.finish())

    out.success(
        f"Recorded {parameter_id}={score:.2f} for {caller_id}",
        event_id=event_id,
        caller_id=caller_id,
        parameter_id=parameter_id,
    )
    raise typer.Exit(out.finish())


@scores_app.command("list")
def list_command(
    caller_id: str = typer.Argument(..., help="Caller identifier"),
    parameter_id: str = typer.Argument(..., help="Scored parameter"),
    window: int = typer.Option(5, "--window", "-w", min=1, help="Window size"),
):
    """Show the most recent score events for a caller and parameter."""
    out = Output(console=console, json_mode=get_json_mode())
    with open_cli_store() as store:
        events = store.find_recent_scores(caller_id, parameter_id, window)

    out.table(
        f"Recent {parameter_id} scores",
        ["Scored at", "Score", "Confidence"],
        [
            [
                e.scored_at.isoformat(timespec="seconds"),
                format_score(e.score),
                format_score(e.confidence),
            ]
            for e in events
        ],
        data_key="scores",
    )
    raise typer.Exit(out.finish())
