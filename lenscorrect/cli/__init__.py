"""Command-line interface."""

from lenscorrect.cli.arguments import build_parser, parse_arguments

__all__ = ["build_parser", "parse_arguments"]
