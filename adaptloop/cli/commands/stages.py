"""Stages command: show the resolved pipeline stage list."""

import copy

import typer

from ...config import STAGE_POLICIES, get_config
from ...core.errors import ConfigurationError
from ...pipeline import load_pipeline_stages
from ..app import app, console, get_json_mode, open_cli_store
from ..utils import ExitCode, Output


@app.command("stages")
def stages_command(
    policy: str | None = typer.Option(
        None,
        "--policy",
        help="Override pipeline.stage_policy for this call (strict or fallback)",
    ),
):
    """Show the ordered pipeline stages and the output types each one processes."""
    out = Output(console=console, json_mode=get_json_mode())
    config = copy.deepcopy(get_config())
    if policy is not None:
        if policy not in STAGE_POLICIES:
            out.error(f"Invalid stage policy: {policy}")
            raise typer.Exit(out.finish())
        config.pipeline.stage_policy = policy

    try:
        with open_cli_store() as store:
            stages = load_pipeline_stages(store, config)
    except ConfigurationError as e:
        out.error(str(e), exit_code=ExitCode.CONFIGURATION_ERROR)
        raise typer.Exit(out.finish())

    out.table(
        "Pipeline stages",
        ["Order", "Name", "Output types", "Mode", "Batched"],
        [
            [
                str(s.order),
                s.name,
                ", ".join(s.output_types) or "-",
                s.requires_mode or "-",
                "yes" if s.batched else "no",
            ]
            for s in stages
        ],
        data_key="stages",
    )
    raise typer.Exit(out.finish())
