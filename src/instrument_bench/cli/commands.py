"""
CLI commands - entry points for the harness.

Each command follows a consistent pattern:
1. Parse arguments
2. Build the config (environment, then flags)
3. Do the work
4. Print results (table or --json)
5. Return exit code

Exit codes: 0 ok, 1 regression, 2 errors, 130 interrupted.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from instrument_bench.analysis import analyze, parse_rule, resolve_rules
from instrument_bench.baseline import get_baseline_store
from instrument_bench.config import HarnessConfig
from instrument_bench.core.errors import ConfigurationError, InstrumentBenchError
from instrument_bench.harness import load_suite, run_batch
from instrument_bench.model import EventKind, ToolId
from instrument_bench.observability import init_tracing, shutdown_tracing
from instrument_bench.parsers import parse_artifact
from instrument_bench.report import folded_stacks, render_batch_summary, render_table, write_folded

logger = logging.getLogger("instrument_bench")

EXIT_OK = 0
EXIT_REGRESSION = 1
EXIT_ERROR = 2
EXIT_INTERRUPTED = 130


def _load_env() -> None:
    """Load environment variables from .env file."""
    load_dotenv()


def _configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Flags win over INSTRUMENT_BENCH_LOG, which wins over the WARNING default."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        name = os.environ.get("INSTRUMENT_BENCH_LOG", "WARNING").upper()
        level = logging.getLevelName(name)
        if not isinstance(level, int):
            level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logger.setLevel(level)


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", action="store_true", help="Output JSON instead of a table")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--quiet", "-q", action="store_true", help="Errors only")


def _tool(value: str) -> ToolId:
    try:
        return ToolId(value)
    except ValueError:
        choices = ", ".join(t.value for t in ToolId)
        raise argparse.ArgumentTypeError(f"unknown tool '{value}' (choose from {choices})") from None


def _event(value: str) -> EventKind:
    kind = EventKind.parse(value)
    if kind is None:
        raise argparse.ArgumentTypeError(f"unknown event kind '{value}'")
    return kind


def _print_json(data: dict) -> None:
    print(json.dumps(data, indent=2))


# ---------------------------------------------------------------------------
# COMMANDS
# ---------------------------------------------------------------------------


def run_suite_cli(argv: list[str]) -> int:
    """Run every case of a suite and gate on regressions."""
    parser = argparse.ArgumentParser(prog="instrument-bench run", description="Run a benchmark suite")
    parser.add_argument("suite", type=Path, help="TOML suite file")
    parser.add_argument("--jobs", "-j", type=int, help="Cases run in parallel")
    parser.add_argument("--timeout", type=float, help="Per-case timeout in seconds")
    parser.add_argument("--home", type=Path, help="Baseline root directory")
    parser.add_argument("--valgrind", type=Path, help="valgrind binary")
    parser.add_argument("--compare-slot", help="Baseline slot to compare against")
    parser.add_argument("--save-slot", help="Also save results under this slot")
    parser.add_argument("--rule", action="append", default=[], help="Default rule, e.g. Ir:+5")
    parser.add_argument("--keep-artifacts", action="store_true", default=None, help="Keep raw tool output")
    parser.add_argument("--allow-aslr", action="store_true", default=None, help="Do not disable ASLR")
    parser.add_argument("--filter", help="Only run cases whose key contains this text")
    _add_common(parser)
    args = parser.parse_args(argv)
    _configure_logging(args.verbose, args.quiet)

    config = HarnessConfig.from_env().with_overrides(
        jobs=args.jobs,
        timeout=args.timeout,
        home=args.home,
        valgrind_path=args.valgrind,
        compare_slot=args.compare_slot,
        save_slot=args.save_slot,
        keep_artifacts=args.keep_artifacts,
        allow_aslr=args.allow_aslr,
        default_rules=tuple(parse_rule(text) for text in args.rule) or None,
    )
    cases = load_suite(args.suite)
    if args.filter:
        cases = [case for case in cases if args.filter in case.id.key]
    if not cases:
        print("No benchmark cases to run", file=sys.stderr)
        return EXIT_ERROR

    init_tracing(config)
    try:
        store = get_baseline_store(use_file=True, root=config.home)
        batch = run_batch(cases, config, store)
    finally:
        shutdown_tracing()

    if args.json:
        _print_json(batch.to_dict())
    else:
        if not args.quiet:
            for result in batch.results:
                if result.report is not None:
                    print(render_table(result.report))
        print(render_batch_summary(batch), end="")
    return batch.exit_code


def run_parse_cli(argv: list[str]) -> int:
    """Parse one artifact and print its totals."""
    parser = argparse.ArgumentParser(prog="instrument-bench parse", description="Parse a tool artifact")
    parser.add_argument("artifact", type=Path, help="Artifact file")
    parser.add_argument("--tool", type=_tool, default=ToolId.CALLGRIND, help="Tool that wrote it")
    _add_common(parser)
    args = parser.parse_args(argv)
    _configure_logging(args.verbose, args.quiet)

    model = parse_artifact(args.tool, args.artifact)
    if args.json:
        _print_json(
            {
                "tool": model.tool.value,
                "totals": model.totals.to_dict(),
                "metadata": model.metadata,
                "functions": len(model.graph) if model.graph is not None else 0,
            }
        )
    else:
        report = analyze(model, None, [], benchmark=str(args.artifact))
        print(render_table(report), end="")
    return EXIT_OK


def run_compare_cli(argv: list[str]) -> int:
    """Compare two artifacts of the same tool."""
    parser = argparse.ArgumentParser(prog="instrument-bench compare", description="Compare two artifacts")
    parser.add_argument("new", type=Path, help="Artifact of the new run")
    parser.add_argument("old", type=Path, help="Artifact of the baseline run")
    parser.add_argument("--tool", type=_tool, default=ToolId.CALLGRIND, help="Tool that wrote them")
    parser.add_argument("--old-tool", type=_tool, help="Tool of the old artifact (default: --tool)")
    parser.add_argument("--rule", action="append", default=[], help="Rule, e.g. Ir:+5 (repeatable)")
    _add_common(parser)
    args = parser.parse_args(argv)
    _configure_logging(args.verbose, args.quiet)

    config = HarnessConfig.from_env()
    rules = resolve_rules(config.default_rules, [parse_rule(text) for text in args.rule])
    current = parse_artifact(args.tool, args.new)
    baseline = parse_artifact(args.old_tool or args.tool, args.old)
    report = analyze(current, baseline, rules, benchmark=f"{args.new} vs {args.old}")

    if args.json:
        _print_json(report.to_dict())
    else:
        print(render_table(report), end="")
    return EXIT_REGRESSION if report.regressed else EXIT_OK


def run_folded_cli(argv: list[str]) -> int:
    """Export an artifact's call graph as folded stacks."""
    parser = argparse.ArgumentParser(prog="instrument-bench folded", description="Export folded stacks")
    parser.add_argument("artifact", type=Path, help="Artifact file")
    parser.add_argument("--tool", type=_tool, default=ToolId.CALLGRIND, help="Tool that wrote it")
    parser.add_argument("--event", type=_event, default=EventKind.IR, help="Event kind to fold (default: Ir)")
    parser.add_argument("--output", "-o", type=Path, help="Output file (default: stdout)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--quiet", "-q", action="store_true", help="Errors only")
    args = parser.parse_args(argv)
    _configure_logging(args.verbose, args.quiet)

    model = parse_artifact(args.tool, args.artifact)
    if not model.has_graph:
        print(f"{args.tool.value} artifacts carry no call graph", file=sys.stderr)
        return EXIT_ERROR

    lines = folded_stacks(model.graph, args.event)
    if args.output is None:
        write_folded(lines, sys.stdout)
    else:
        with args.output.open("w", encoding="ascii", newline="\n") as fp:
            count = write_folded(lines, fp)
        logger.info(f"Wrote {count} stack line(s) to {args.output}")
    return EXIT_OK


COMMANDS = {
    "run": run_suite_cli,
    "parse": run_parse_cli,
    "compare": run_compare_cli,
    "folded": run_folded_cli,
}


def main(argv: list[str] | None = None) -> int:
    """
    Main CLI entry point with subcommands.

    Usage:
        instrument-bench run benches.toml           # Measure and gate
        instrument-bench parse callgrind.out.1234   # Show totals
        instrument-bench compare new.out old.out    # Gate two artifacts
        instrument-bench folded callgrind.out.1234  # Flamegraph input
    """
    _load_env()

    parser = argparse.ArgumentParser(
        prog="instrument-bench",
        description="Valgrind benchmark harness with baseline regression gating",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  run       Run a TOML suite under valgrind and compare against baselines
  parse     Parse one artifact and show its totals
  compare   Compare two artifacts of the same tool
  folded    Export a call graph as folded stacks

Examples:
  instrument-bench run benches.toml --jobs 4
  instrument-bench compare new.out old.out --rule Ir:+5 --json
  instrument-bench folded callgrind.out.1234 -o out.folded
        """,
    )
    parser.add_argument("command", choices=sorted(COMMANDS), help="Command to run")

    argv = sys.argv[1:] if argv is None else argv
    args, remaining = parser.parse_known_args(argv[:1])
    remaining += argv[1:]

    try:
        return COMMANDS[args.command](remaining)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    except ConfigurationError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except InstrumentBenchError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
