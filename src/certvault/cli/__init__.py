"""Command-line interface for certvault."""

from certvault.cli.main import main, parse_arguments

__all__ = ["main", "parse_arguments"]
