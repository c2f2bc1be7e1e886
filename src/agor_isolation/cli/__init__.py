"""Command-line interface for the isolation engine."""

from agor_isolation.cli.main import app

__all__ = ["app"]
