"""Operator CLI for adaptloop."""

from .app import app

__all__ = ["app"]
