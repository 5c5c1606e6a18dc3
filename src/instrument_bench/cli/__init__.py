"""
CLI module - command-line interface.

Subcommands: run, parse, compare, folded.
"""

from instrument_bench.cli.commands import (
    main,
    run_compare_cli,
    run_folded_cli,
    run_parse_cli,
    run_suite_cli,
)

__all__ = [
    "main",
    "run_compare_cli",
    "run_folded_cli",
    "run_parse_cli",
    "run_suite_cli",
]
