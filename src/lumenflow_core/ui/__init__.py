"""UI package exports for the CLI surface."""

from lumenflow_core.ui.cli import CLIError, build_parser, run_cli

__all__ = [
    "CLIError",
    "build_parser",
    "run_cli",
]
