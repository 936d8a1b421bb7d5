"""UI package exports for the CLI router and report rendering."""

from compat_matrix.ui.cli import build_parser, exit_code_for, parse_duration, run_cli
from compat_matrix.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "exit_code_for",
    "parse_duration",
    "run_cli",
]
