"""Params command: register parameter definitions targeted by adaptation rules."""

import typer
from pydantic import ValidationError

from ...core.models import ParameterDefinition
from ..app import app, console, get_json_mode, open_cli_store
from ..utils import Output

params_app = typer.Typer(help="Manage parameter definitions")
app.add_typer(params_app, name="params")


@params_app.command("add")
def add_command(
    parameter_id: str = typer.Argument(..., help="Parameter identifier"),
    name: str = typer.Option("", "--name", help="Human-readable name"),
    kind: str = typer.Option("BEHAVIOR", "--kind", help="BEHAVIOR, TRAIT, STATE ..."),
    fixed: bool = typer.Option(False, "--fixed", help="Mark as not adjustable"),
    high: str | None = typer.Option(None, "--high", help="Meaning of a high value"),
    low: str | None = typer.Option(None, "--low", help="Meaning of a low value"),
):
    """Create or replace a parameter definition."""
    out = Output(console=console, json_mode=get_json_mode())
    try:
        parameter = ParameterDefinition(
            parameter_id=parameter_id,
            name=name,
            kind=kind,
            is_adjustable=not fixed,
            interpretation_high=high,
            interpretation_low=low,
        )
    except ValidationError as e:
        out.error(f"Invalid parameter: {e.errors()[0]['msg']}")
        raise typer.Exit(out.finish())

    with open_cli_store() as store:
        store.save_parameter(parameter)
    out.success(f"Saved parameter {parameter_id}", parameter_id=parameter_id)
    raise typer.Exit(out.finish())
