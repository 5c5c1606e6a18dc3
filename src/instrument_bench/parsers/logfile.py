"""
Parser for the text logs of the error-detecting tools (memcheck, helgrind, drd).

Every line the tool writes carries a `==PID==` prefix (`--PID--` for
debug output), optionally preceded by a `--time-stamp=yes` stamp:

    ==4242== Memcheck, a memory error detector
    ==4242== Using Valgrind-3.21.0 and LibVEX; rerun with -h for copyright info
    ==4242== Command: ./bench --fast
    ==4242== Parent PID: 4241
    ==4242==
    ==4242== HEAP SUMMARY:
    ==4242==     in use at exit: 0 bytes in 0 blocks
    ==4242==
    ==4242== ERROR SUMMARY: 0 errors from 0 contexts (suppressed: 0 from 0)

These tools report aggregates only, so the resulting CostModel has no
call graph.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from instrument_bench.model import CostModel, Costs, EventKind, LEAK_KINDS, ToolId
from instrument_bench.parsers.base import Line, ParseSession, format_version, parse_count

logger = logging.getLogger(__name__)

MIN_VALGRIND_VERSION = (3, 13, 0)
MAX_VALGRIND_VERSION = (4, 0, 0)

_PREFIX = r"^\s*(?:==|--)(?:[0-9:.]+\s+)?(?P<pid>[0-9]+)(?:==|--)"
_PREFIX_RE = re.compile(_PREFIX + r"\s?(?P<rest>.*?)\s*$")
_FIELD_RE = re.compile(r"^(?P<key>[^:]*?)\s*:\s*(?P<value>.*)$")
_VALGRIND_RE = re.compile(r"Using Valgrind-(?P<version>\d+\.\d+(?:\.\d+)?)")
_ERROR_SUMMARY_RE = re.compile(
    r"^(?P<errors>[\d,]+) errors? from (?P<contexts>[\d,]+) contexts?"
    r"(?: \(suppressed: (?P<suppressed>[\d,]+) from (?P<suppressed_contexts>[\d,]+)\))?"
)
_LEAK_RE = re.compile(
    r"^(?P<what>definitely lost|indirectly lost|possibly lost|still reachable):"
    r"\s+(?P<bytes>[\d,]+) bytes in (?P<blocks>[\d,]+) blocks?"
)
_NO_LEAKS = "All heap blocks were freed -- no leaks are possible"

_LEAK_KINDS = {
    "definitely lost": EventKind.DEFINITELY_LOST,
    "indirectly lost": EventKind.INDIRECTLY_LOST,
    "possibly lost": EventKind.POSSIBLY_LOST,
    "still reachable": EventKind.STILL_REACHABLE,
}


@dataclass
class LogfileSummary:
    """The human relevant parts of one tool log, for reports."""

    command: str
    pid: int
    valgrind_version: str
    fields: list[tuple[str, str]] = field(default_factory=list)
    body: list[str] = field(default_factory=list)
    error_summary: str | None = None
    costs: Costs = field(default_factory=Costs)


class LogfileParser:
    """Parser for the `--log-file` output of one error-detecting tool."""

    def __init__(self, tool: ToolId):
        if tool in (ToolId.CALLGRIND, ToolId.DHAT):
            raise ValueError(f"{tool} does not report through its log file")
        self.tool = tool

    def parse_bytes(self, data: bytes, source: str | None = None) -> CostModel:
        return self.to_model(self.summarize(data, source))

    def to_model(self, summary: LogfileSummary) -> CostModel:
        metadata = {
            "command": summary.command,
            "pid": str(summary.pid),
            "valgrind": summary.valgrind_version,
        }
        for key, value in summary.fields:
            metadata[key.lower().replace(" ", "_")] = value
        return CostModel(tool=self.tool, totals=summary.costs, metadata=metadata)

    def summarize(self, data: bytes, source: str | None = None) -> LogfileSummary:
        session = ParseSession(data, source)

        pid: int | None = None
        command: str | None = None
        version: str | None = None
        fields: list[tuple[str, str]] = []
        body: list[str] = []
        error_summary: str | None = None
        error_line: Line | None = None
        costs = Costs()
        in_header = True

        for line in session.reader:
            if not line.text.strip():
                continue
            match = _PREFIX_RE.match(line.text)
            if match is None:
                if pid is None:
                    raise session.error("not a valgrind log: missing ==PID== prefix", line)
                # unprefixed output belongs to the target
                body.append(line.text)
                continue
            if pid is None:
                pid = int(match.group("pid"))
            rest = match.group("rest")

            if in_header:
                if not rest:
                    in_header = False
                    continue
                found = _VALGRIND_RE.search(rest)
                if found is not None:
                    parsed = session.check_version(
                        found.group("version"),
                        MIN_VALGRIND_VERSION,
                        MAX_VALGRIND_VERSION,
                        "valgrind",
                        line,
                    )
                    version = format_version(parsed)
                    continue
                field_match = _FIELD_RE.match(rest)
                if field_match is not None:
                    key = field_match.group("key")
                    value = field_match.group("value").strip()
                    if key.lower() == "command":
                        command = value
                    elif key.lower() == "parent pid":
                        fields.append((key, value))
                continue

            field_match = _FIELD_RE.match(rest)
            if field_match is not None and field_match.group("key").lower() == "error summary":
                # verbose runs repeat the summary; the last one wins
                error_summary = field_match.group("value").strip()
                error_line = line
                continue

            leak = _LEAK_RE.match(rest.strip())
            if leak is not None:
                costs.accumulate(_LEAK_KINDS[leak.group("what")], parse_count(leak.group("bytes")))
            elif rest.strip() == _NO_LEAKS:
                for kind in LEAK_KINDS:
                    costs.accumulate(kind, 0)
            body.append(rest)

        if pid is None:
            raise session.truncated("empty log file")
        if error_summary is None:
            raise session.truncated("log ends before the ERROR SUMMARY line")
        self._error_counts(session, error_line, error_summary, costs)
        if version is None:
            raise session.error("header lacks the 'Using Valgrind-X.Y.Z' line")
        if command is None:
            raise session.error("header lacks the 'Command:' line")

        while body and not body[-1].strip():
            body.pop()

        return LogfileSummary(
            command=command,
            pid=pid,
            valgrind_version=version,
            fields=fields,
            body=body,
            error_summary=error_summary,
            costs=costs,
        )

    def _error_counts(
        self,
        session: ParseSession,
        line: Line | None,
        text: str,
        costs: Costs,
    ) -> None:
        match = _ERROR_SUMMARY_RE.match(text)
        if match is None:
            raise session.error(f"unreadable error summary '{text}'", line)
        costs.accumulate(EventKind.ERRORS, parse_count(match.group("errors")))
        costs.accumulate(EventKind.CONTEXTS, parse_count(match.group("contexts")))
        costs.accumulate(
            EventKind.SUPPRESSED_ERRORS, parse_count(match.group("suppressed") or "0")
        )
        costs.accumulate(
            EventKind.SUPPRESSED_CONTEXTS,
            parse_count(match.group("suppressed_contexts") or "0"),
        )
