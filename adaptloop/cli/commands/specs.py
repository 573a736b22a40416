"""Specs commands: import spec files, list them, toggle them, check dependencies."""

from __future__ import annotations

from pathlib import Path

import typer
import yaml
from pydantic import ValidationError

from ...core.models import SpecificationRecord
from ...pipeline import DependencyValidator, SpecRegistry, declared_dependencies
from ..app import app, console, get_json_mode, open_cli_store
from ..utils import ExitCode, Output, report_dependencies

specs_app = typer.Typer(help="Manage specification records")
app.add_typer(specs_app, name="specs")


@specs_app.command("import")
def import_command(
    files: list[Path] = typer.Argument(..., help="Spec files (YAML or JSON)"),
):
    """Load spec files into the store, replacing records with the same slug."""
    out = Output(console=console, json_mode=get_json_mode())
    imported: list[str] = []

    with open_cli_store() as store:
        for path in files:
            if not path.exists():
                out.error(f"File not found: {path}", exit_code=ExitCode.FILE_NOT_FOUND)
                continue
            try:
                spec = SpecificationRecord.from_file(path)
            except (ValueError, ValidationError, yaml.YAMLError) as e:
                out.error(f"Invalid spec file {path}: {e}")
                continue
            store.save_spec(spec)
            imported.append(spec.slug)
            out.success(f"Imported {spec.slug} ({spec.output_type.value}) from {path}")

    out.set_data("imported", imported)
    raise typer.Exit(out.finish())


@specs_app.command("list")
def list_command(
    all_specs: bool = typer.Option(
        False, "--all", "-a", help="Include inactive and dirty specs"
    ),
):
    """List specs in the store."""
    out = Output(console=console, json_mode=get_json_mode())
    with open_cli_store() as store:
        specs = store.list_specs(active_only=not all_specs)

    rows = [
        [
            s.slug,
            s.output_type.value,
            "yes" if s.is_active else "no",
            "yes" if s.is_dirty else "no",
            ", ".join(declared_dependencies(s)) or "-",
        ]
        for s in specs
    ]
    if not rows:
        out.warning("No specs found", suggestion="adaptloop specs import <file>")
    out.table(
        "Specs",
        ["Slug", "Output type", "Active", "Dirty", "Depends on"],
        rows,
        data_key="specs",
    )
    raise typer.Exit(out.finish())


def _set_flags(slug: str, **flags: bool) -> None:
    out = Output(console=console, json_mode=get_json_mode())
    with open_cli_store() as store:
        found = store.set_spec_flags(slug, **flags)
    if not found:
        out.error("spec not found", spec=slug, exit_code=ExitCode.FILE_NOT_FOUND)
    else:
        state = ", ".join(f"{k}={v}" for k, v in flags.items())
        out.success(f"Updated {slug} ({state})", slug=slug, **flags)
    raise typer.Exit(out.finish())


@specs_app.command("activate")
def activate_command(slug: str = typer.Argument(..., help="Spec slug")):
    """Mark a spec active and clean so the pipeline loads it."""
    _set_flags(slug, is_active=True, is_dirty=False)


@specs_app.command("deactivate")
def deactivate_command(slug: str = typer.Argument(..., help="Spec slug")):
    """Mark a spec inactive."""
    _set_flags(slug, is_active=False)


@specs_app.command("deps")
def deps_command(
    slugs: list[str] | None = typer.Argument(
        None, help="Spec slugs to check (default: every active spec)"
    ),
):
    """Check declared spec dependencies against the active spec set."""
    out = Output(console=console, json_mode=get_json_mode())
    with open_cli_store() as store:
        registry = SpecRegistry(store)
        candidates = slugs or [s.slug for s in registry.all_active_specs()]
        result = DependencyValidator(registry).validate(candidates)

    report_dependencies(out, result)
    if result.valid:
        out.success(f"All dependencies satisfied ({len(candidates)} spec(s) checked)")
    else:
        out.error(
            f"{len(result.skipped)} spec(s) have unsatisfied dependencies",
            suggestion="activate the missing specs or remove the dependency",
        )
    raise typer.Exit(out.finish())
