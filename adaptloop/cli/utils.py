"""Dual-mode CLI output and shared renderers.

Every command builds an ``Output``, reports through it, and exits with
``raise typer.Exit(out.finish())``. With ``--json`` nothing is printed until
``finish()``, which writes one JSON document:

    {"status": "success" | "error", "warnings": [...], "errors": [...],
     <command data>, "exit_code": N}

Without ``--json`` messages and tables go straight to the Rich console.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, PrivateAttr
from rich.console import Console
from rich.table import Table

from ..core.models import DependencyValidationResult, PipelineRunSummary


class ExitCode:
    """Process exit codes.

        0 = Success (a run with rule errors still succeeds)
        1 = Invalid input or unsatisfied dependencies
        3 = Spec file or spec record not found
        8 = Configuration error (no valid pipeline stage list)
    """

    SUCCESS = 0
    VALIDATION_ERROR = 1
    FILE_NOT_FOUND = 3
    CONFIGURATION_ERROR = 8


class Output(BaseModel):
    """Collects command output for the console or a single JSON document."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    console: Console
    json_mode: bool = False

    _data: dict[str, Any] = PrivateAttr()
    _exit_code: int = PrivateAttr(default=ExitCode.SUCCESS)

    def model_post_init(self, __context: Any) -> None:
        self._data = {"status": "success", "warnings": [], "errors": []}

    def _message(
        self, bucket: str, text: str, spec: str | None, suggestion: str | None
    ) -> None:
        if self.json_mode:
            entry: dict[str, Any] = {"message": text}
            if spec:
                entry["spec"] = spec
            if suggestion:
                entry["suggestion"] = suggestion
            self._data[bucket].append(entry)
            return
        icon = "[yellow]⚠[/yellow]" if bucket == "warnings" else "[red]✗[/red]"
        prefix = f"[bold]{spec}[/bold] " if spec else ""
        self.console.print(f"{icon} {prefix}{text}")
        if suggestion:
            self.console.print(f"  [dim]→ {suggestion}[/dim]")

    def success(self, message: str, **data: Any) -> None:
        """Report success. Keyword data lands at the top level of the JSON output."""
        if self.json_mode:
            self._data.update(data)
        else:
            self.console.print(f"[green]✓[/green] {message}")

    def warning(
        self, message: str, *, spec: str | None = None, suggestion: str | None = None
    ) -> None:
        self._message("warnings", message, spec, suggestion)

    def error(
        self,
        message: str,
        *,
        spec: str | None = None,
        suggestion: str | None = None,
        exit_code: int = ExitCode.VALIDATION_ERROR,
    ) -> None:
        """Report an error and mark the command as failed with ``exit_code``."""
        self._exit_code = exit_code
        self._data["status"] = "error"
        self._message("errors", message, spec, suggestion)

    def text(self, message: str) -> None:
        if not self.json_mode:
            self.console.print(message)

    def table(
        self,
        title: str,
        columns: list[str],
        rows: list[list[str]],
        *,
        data_key: str | None = None,
    ) -> None:
        """Print a table, or store it as a list of row dicts under ``data_key``."""
        if self.json_mode:
            key = data_key or title.lower().replace(" ", "_")
            self._data[key] = [dict(zip(columns, row)) for row in rows]
            return
        table = Table(title=title, show_header=True, header_style="bold")
        for i, column in enumerate(columns):
            table.add_column(column, justify="left" if i == 0 else "right")
        for row in rows:
            table.add_row(*row)
        self.console.print(table)

    def set_data(self, key: str, value: Any) -> None:
        self._data[key] = value

    def finish(self) -> int:
        """Emit the JSON document (in JSON mode) and return the exit code."""
        if self.json_mode:
            self._data["exit_code"] = self._exit_code
            print(json.dumps(self._data, indent=2, default=str))
        return self._exit_code


# =============================================================================
# Renderers
# =============================================================================


def format_score(value: float | None) -> str:
    return "-" if value is None else f"{value:.2f}"


def summary_rows(summary: PipelineRunSummary) -> list[list[str]]:
    """Metric/value rows for a pipeline run summary."""
    return [
        ["Stages run", ", ".join(summary.stages_run) or "-"],
        ["Specs run", str(summary.specs_run)],
        ["Specs skipped", str(len(summary.specs_skipped))],
        ["Profile updates", str(summary.profile_updates)],
        ["Targets created", str(summary.targets_created)],
        ["Targets updated", str(summary.targets_updated)],
        ["Targets clamped", str(summary.targets_adjusted)],
        ["Guardrails", summary.guardrail_source or "defaults"],
    ]


def report_dependencies(out: Output, result: DependencyValidationResult) -> None:
    """Render a dependency check: warnings, then the unsatisfied specs."""
    missing = {s.spec_slug: s.missing_deps for s in result.skipped}
    for warning in result.warnings:
        out.warning(warning)
    out.set_data("valid", result.valid)
    out.set_data("skipped", [s.model_dump() for s in result.skipped])
    if missing:
        out.table(
            "Unsatisfied dependencies",
            ["Spec", "Missing"],
            [[slug, ", ".join(deps)] for slug, deps in missing.items()],
            data_key="unsatisfied",
        )
