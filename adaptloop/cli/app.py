"""Core CLI app definition and global state."""

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

app = typer.Typer(
    name="adaptloop",
    help="Run spec-driven profile aggregation and target adaptation.",
    no_args_is_help=True,
)

console = Console()

# Global state (set by callback)
_json_mode = False
_db_path: Path | None = None


def get_json_mode() -> bool:
    """Get current JSON mode state."""
    return _json_mode


def get_db_path() -> Path:
    """Database path from --db, else from config."""
    if _db_path is not None:
        return _db_path
    from ..config import get_config

    return get_config().db_path_resolved


def open_cli_store():
    """Open the store the current command should use."""
    from ..storage import open_store

    return open_store(get_db_path())


def _version_callback(value: bool) -> None:
    if value:
        from .. import __version__

        print(f"adaptloop {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output machine-readable JSON instead of human-friendly text",
            is_eager=True,
        ),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option(
            "--db",
            help="SQLite store path (defaults to defaults.db_path from config)",
            is_eager=True,
        ),
    ] = None,
):
    """adaptloop: spec-driven learner profile and behavior target pipeline.

    Use --json for machine-readable output suitable for scripting.
    Use --db to point at a specific store.
    """
    global _json_mode, _db_path
    _json_mode = json_output
    _db_path = db


# Import commands to register them with the app
from .commands import (  # noqa: E402, F401
    config_cmd,
    specs,
    stages,
    scores,
    params,
    run,
    caller,
)
