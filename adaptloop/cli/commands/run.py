"""Run command: execute the pipeline for one caller."""

from __future__ import annotations

import copy
import logging

import typer
from rich.logging import RichHandler

from ...config import STAGE_POLICIES, get_config
from ...core.errors import ConfigurationError
from ...pipeline import Orchestrator
from ..app import app, console, get_json_mode, open_cli_store
from ..utils import ExitCode, Output, summary_rows


def setup_logging(verbose: bool = False, debug: bool = False):
    """Configure logging for pipeline runs."""
    level = logging.WARNING
    if verbose:
        level = logging.INFO
    if debug:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=False)],
        force=True,
    )

    logging.getLogger("adaptloop").setLevel(level)


@app.command("run")
def run_command(
    caller_id: str = typer.Argument(..., help="Caller to run the pipeline for"),
    only: list[str] | None = typer.Option(
        None,
        "--only",
        "-t",
        help="Restrict to output types (repeatable, e.g. -t AGGREGATE -t ADAPT)",
    ),
    mode: str | None = typer.Option(
        None, "--mode", "-m", help="Run mode: prep or prompt"
    ),
    policy: str | None = typer.Option(
        None, "--policy", help="Override pipeline.stage_policy (strict or fallback)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show info logs"),
    debug: bool = typer.Option(False, "--debug", help="Show debug logs"),
):
    """Aggregate profile attributes and adapt targets for a caller.

    Rule failures are reported in the summary and do not fail the command.
    A missing or malformed stage configuration exits with code 8.

    Examples:
        adaptloop run caller-42
        adaptloop run caller-42 --only AGGREGATE
        adaptloop --json run caller-42 --mode prep
    """
    setup_logging(verbose=verbose, debug=debug)
    out = Output(console=console, json_mode=get_json_mode())

    if mode is not None and mode not in ("prep", "prompt"):
        out.error(f"Invalid mode: {mode}", suggestion="use 'prep' or 'prompt'")
        raise typer.Exit(out.finish())

    config = copy.deepcopy(get_config())
    if policy is not None:
        if policy not in STAGE_POLICIES:
            out.error(f"Invalid stage policy: {policy}")
            raise typer.Exit(out.finish())
        config.pipeline.stage_policy = policy

    try:
        with open_cli_store() as store:
            summary = Orchestrator(store, config).run(
                caller_id, output_types=only or None, mode=mode
            )
    except ConfigurationError as e:
        out.error(
            str(e),
            suggestion="adaptloop specs import <pipeline spec>",
            exit_code=ExitCode.CONFIGURATION_ERROR,
        )
        raise typer.Exit(out.finish())

    out.set_data("summary", summary.model_dump(mode="json"))
    for warning in summary.warnings:
        out.warning(warning)
    for error in summary.errors:
        out.warning(f"Rule error: {error}")

    out.table(
        f"Pipeline run for {caller_id}",
        ["Metric", "Value"],
        summary_rows(summary),
        data_key="metrics",
    )
    if summary.ok:
        out.success(f"Pipeline completed for {caller_id}")
    else:
        out.text(f"[yellow]Completed with {len(summary.errors)} rule error(s)[/yellow]")
    raise typer.Exit(out.finish())
