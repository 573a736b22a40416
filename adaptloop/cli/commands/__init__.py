"""CLI commands for adaptloop."""

from . import (
    config_cmd,
    specs,
    stages,
    scores,
    params,
    run,
    caller,
)

__all__ = [
    "config_cmd",
    "specs",
    "stages",
    "scores",
    "params",
    "run",
    "caller",
]
