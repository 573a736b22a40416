"""Config command for viewing and managing adaptloop configuration."""

from dataclasses import fields

import typer

from ..app import app, console, get_json_mode
from ..utils import Output
from ...config import (
    AdaptloopConfig,
    CONFIG_FILE,
    STAGE_POLICIES,
    get_config,
    reset_config,
)

SECTION_TITLES = {
    "registry": "Registry (spec cache)",
    "pipeline": "Pipeline (stage resolution)",
    "engine": "Engine (rule defaults)",
    "defaults": "Defaults",
}


def _field_types() -> dict[str, type]:
    """Map every settable ``section.field`` key to its Python type."""
    defaults = AdaptloopConfig()
    types: dict[str, type] = {}
    for section in SECTION_TITLES:
        group = getattr(defaults, section)
        for f in fields(group):
            types[f"{section}.{f.name}"] = type(getattr(group, f.name))
    return types


VALID_KEYS = _field_types()


@app.command("config")
def config_command(
    action: str = typer.Argument(..., help="Action: show, set, reset"),
    key: str | None = typer.Argument(
        None, help="Config key (e.g. pipeline.stage_policy, engine.default_window_size)"
    ),
    value: str | None = typer.Argument(None, help="Value to set"),
):
    """View or modify adaptloop configuration.

    Examples:
        adaptloop config show
        adaptloop config set pipeline.stage_policy fallback
        adaptloop config set engine.default_window_size 10
        adaptloop config reset
    """
    if action == "show":
        _show_config()
    elif action == "set":
        if not key or value is None:
            console.print("[red]Usage:[/red] adaptloop config set <key> <value>")
            _print_keys()
            raise typer.Exit(1)
        _set_config(key, value)
    elif action == "reset":
        _reset_config()
    else:
        console.print(f"[red]Unknown action:[/red] {action}")
        console.print("Valid actions: show, set, reset")
        raise typer.Exit(1)


def _print_keys() -> None:
    console.print()
    console.print("Available keys:")
    for k in sorted(VALID_KEYS):
        console.print(f"  {k}")


def _show_config():
    """Display the resolved configuration, one table per section."""
    out = Output(console=console, json_mode=get_json_mode())
    data = get_config().to_dict()

    for section, title in SECTION_TITLES.items():
        out.table(
            title,
            ["Key", "Value"],
            [[name, str(val)] for name, val in data[section].items()],
            data_key=section,
        )
    out.set_data("config_file", str(CONFIG_FILE))
    if CONFIG_FILE.exists():
        out.text(f"Config file: {CONFIG_FILE}")
    else:
        out.text(f"Config file: [dim]not created yet[/dim] ({CONFIG_FILE})")
    raise typer.Exit(out.finish())


def _set_config(key: str, value: str):
    """Validate, coerce and persist one config value."""
    if key not in VALID_KEYS:
        console.print(f"[red]Unknown key:[/red] {key}")
        _print_keys()
        raise typer.Exit(1)

    expected = VALID_KEYS[key]
    if expected in (int, float):
        try:
            coerced = expected(value)
        except ValueError:
            kind = "integer" if expected is int else "number"
            console.print(f"[red]Invalid {kind} value:[/red] {value}")
            raise typer.Exit(1)
    else:
        coerced = value

    if key == "pipeline.stage_policy" and coerced not in STAGE_POLICIES:
        console.print(
            f"[red]Invalid stage policy:[/red] {value} "
            f"(expected one of: {', '.join(STAGE_POLICIES)})"
        )
        raise typer.Exit(1)

    config = get_config()
    section, field_name = key.split(".", 1)
    setattr(getattr(config, section), field_name, coerced)
    config.save()
    reset_config()  # next get_config() reloads from disk

    console.print(f"[green]✓[/green] Set {key} = {coerced}")
    console.print(f"  Saved to {CONFIG_FILE}")


def _reset_config():
    """Delete the config file so defaults apply again."""
    if not CONFIG_FILE.exists():
        console.print("Config already at defaults (no config file exists)")
        return
    CONFIG_FILE.unlink()
    reset_config()
    console.print("[green]✓[/green] Config reset to defaults")
    console.print(f"  Removed {CONFIG_FILE}")
