"""
Callgrind output parser.

Reads the callgrind profile format (https://valgrind.org/docs/manual/cl-format.html)
in a single forward pass and produces a CostModel with a full call graph.

A curated sample of what this parser must understand:

    # callgrind format
    version: 1
    creator: callgrind-3.21.0
    positions: line
    events: Ir Dr Dw
    summary: 120 40 20

    ob=(1) /bin/bench
    fl=(1) bench.c
    fn=(1) main
    16 20 8 4
    cfn=(2) work
    calls=3 20
    16 100 32 16

    fn=(2)
    20 100 32 16

    totals: 120 40 20

The cost line that follows `calls=` is the INCLUSIVE cost of that call
edge; every other cost line is self cost of the current function.
"""

from __future__ import annotations

import logging
import re

from instrument_bench.model import CallGraph, CostModel, Costs, EventKind, NodeKey, ToolId
from instrument_bench.parsers.base import Line, ParseSession

logger = logging.getLogger(__name__)

SUPPORTED_FORMAT_VERSION = 1
MIN_CREATOR_VERSION = (3, 13, 0)
MAX_CREATOR_VERSION = (4, 0, 0)

_HEADER_RE = re.compile(r"^(?P<key>[a-zA-Z][a-zA-Z0-9_]*):\s*(?P<value>.*)$")
_KEY_RE = re.compile(r"^(?P<key>[a-z]+)=(?P<value>.*)$")
_POSITION_RE = re.compile(r"^(\*|[+-]?(0x[0-9a-fA-F]+|\d+))$")

_POSITION_MODES = {
    "line": 1,
    "instr": 1,
    "instr line": 2,
    "line instr": 2,
}

# Keyed lines (ob=, fn=, cfn=, ...) and the name namespace each one uses.
_OBJECT_KEYS = {"ob", "cob"}
_FILE_KEYS = {"fl", "fi", "fe", "cfi", "cfl"}
_FUNCTION_KEYS = {"fn", "cfn"}

_METADATA_KEYS = {"cmd", "pid", "part", "thread", "creator"}


def _is_cost_line(text: str) -> bool:
    return bool(text) and (text[0].isdigit() or text[0] in "+-*")


class _State:
    """Mutable parse position: current object/file/function and pending call."""

    def __init__(self) -> None:
        self.events: list[EventKind | None] | None = None
        self.positions = 1
        self.version_seen = False
        self.object = ""
        self.file: str | None = None
        self.node: int | None = None
        self.call_object: str | None = None
        self.call_file: str | None = None
        self.call_function: str | None = None
        self.summary: Costs | None = None
        self.totals: Costs | None = None
        self.metadata: dict[str, str] = {}


class CallgrindParser:
    """Parser for `callgrind.out` artifacts."""

    tool = ToolId.CALLGRIND

    def parse_bytes(self, data: bytes, source: str | None = None) -> CostModel:
        session = ParseSession(data, source)
        if not data.strip():
            raise session.truncated("empty artifact")

        state = _State()
        graph = CallGraph()
        first = True

        for line in session.reader:
            text = line.text.strip()
            if not text:
                continue

            if text.startswith("#"):
                if first and "callgrind format" not in text:
                    logger.warning(
                        f"{source or '<memory>'}: missing file format specifier, "
                        f"assuming callgrind format"
                    )
                first = False
                continue
            if first:
                logger.warning(
                    f"{source or '<memory>'}: missing file format specifier, "
                    f"assuming callgrind format"
                )
                first = False

            if _is_cost_line(text):
                self._self_cost_line(session, state, graph, line, text)
                continue

            keyed = _KEY_RE.match(text)
            if keyed is not None:
                self._keyed_line(session, state, graph, line, keyed.group("key"), keyed.group("value"))
                continue

            header = _HEADER_RE.match(text)
            if header is not None:
                self._header(session, state, line, header.group("key"), header.group("value"))
                continue

            raise session.error(f"unrecognized line '{text[:80]}'", line)

        return self._finish(session, state, graph)

    # -- headers ----------------------------------------------------------------

    def _header(
        self,
        session: ParseSession,
        state: _State,
        line: Line,
        key: str,
        value: str,
    ) -> None:
        value = value.strip()
        if key == "version":
            try:
                version = int(value, 0)
            except ValueError:
                raise session.error(f"invalid format version '{value}'", line) from None
            if version != SUPPORTED_FORMAT_VERSION:
                raise session.unsupported(
                    f"callgrind format version {version} is not supported "
                    f"(expected {SUPPORTED_FORMAT_VERSION})",
                    line,
                )
            state.version_seen = True
        elif key == "creator":
            if value.startswith("callgrind"):
                session.check_version(
                    value, MIN_CREATOR_VERSION, MAX_CREATOR_VERSION, "callgrind", line
                )
            else:
                logger.warning(f"{session.source or '<memory>'}: unknown creator '{value}'")
            state.metadata["creator"] = value
        elif key == "positions":
            mode = " ".join(value.split())
            if mode not in _POSITION_MODES:
                raise session.error(f"invalid positions mode '{value}'", line)
            state.positions = _POSITION_MODES[mode]
        elif key == "events":
            if state.events is not None:
                raise session.error("events redefined", line)
            names = value.split()
            if not names:
                raise session.error("empty events line", line)
            state.events = []
            for name in names:
                kind = EventKind.parse(name)
                if kind is None:
                    logger.warning(
                        f"{session.source or '<memory>'}: ignoring unknown event '{name}'"
                    )
                state.events.append(kind)
        elif key in ("summary", "totals"):
            costs = self._costs(session, state, line, value.split())
            if key == "summary":
                state.summary = costs
            else:
                state.totals = costs
        elif key == "desc":
            previous = state.metadata.get("desc")
            state.metadata["desc"] = f"{previous}; {value}" if previous else value
        elif key in _METADATA_KEYS:
            state.metadata[key] = value
        else:
            logger.debug(f"{session.source or '<memory>'}: skipping header '{key}'")

    # -- keyed lines ------------------------------------------------------------------

    def _keyed_line(
        self,
        session: ParseSession,
        state: _State,
        graph: CallGraph,
        line: Line,
        key: str,
        value: str,
    ) -> None:
        if key in _OBJECT_KEYS:
            name = session.resolve_name("object", value, line)
            if key == "ob":
                state.object = name
            else:
                state.call_object = name
        elif key in _FILE_KEYS:
            name = session.resolve_name("file", value, line)
            if key == "fl":
                state.file = name
            elif key in ("cfi", "cfl"):
                state.call_file = name
            # fi/fe only move the source file of the following cost lines
        elif key in _FUNCTION_KEYS:
            name = session.resolve_name("function", value, line)
            if key == "fn":
                state.node = graph.intern(NodeKey(state.object, name), source=state.file)
            else:
                state.call_function = name
        elif key == "calls":
            self._call(session, state, graph, line, value)
        elif key in ("jump", "jcnd"):
            following = session.reader.next_line()
            if following is None:
                raise session.truncated(f"artifact ends after '{key}=' line", line)
        else:
            logger.debug(f"{session.source or '<memory>'}: skipping line '{key}'")

    def _call(
        self,
        session: ParseSession,
        state: _State,
        graph: CallGraph,
        line: Line,
        value: str,
    ) -> None:
        tokens = value.split()
        if not tokens:
            raise session.error("calls= without a call count", line)
        try:
            count = int(tokens[0])
        except ValueError:
            raise session.error(f"invalid call count '{tokens[0]}'", line) from None
        if state.node is None:
            raise session.error("calls= before any fn=", line)
        if state.call_function is None:
            raise session.error("calls= without a preceding cfn=", line)

        cost_line = session.reader.next_line()
        if cost_line is None:
            raise session.truncated("artifact ends between calls= and its cost line", line)
        text = cost_line.text.strip()
        if not _is_cost_line(text):
            raise session.error("expected the inclusive cost line of the call", cost_line)
        inclusive = self._cost_line_costs(session, state, cost_line, text)

        callee = graph.intern(
            NodeKey(state.call_object if state.call_object is not None else state.object,
                    state.call_function),
            source=state.call_file,
        )
        graph.add_edge(state.node, callee, inclusive, calls=count)
        state.call_object = None
        state.call_file = None
        state.call_function = None

    # -- cost lines -------------------------------------------------------------------

    def _self_cost_line(
        self,
        session: ParseSession,
        state: _State,
        graph: CallGraph,
        line: Line,
        text: str,
    ) -> None:
        if state.node is None:
            raise session.error("cost line before any fn=", line)
        graph.add_self_cost(state.node, self._cost_line_costs(session, state, line, text))

    def _cost_line_costs(
        self,
        session: ParseSession,
        state: _State,
        line: Line,
        text: str,
    ) -> Costs:
        tokens = text.split()
        if len(tokens) < state.positions:
            raise session.error(
                f"expected {state.positions} position(s) on cost line", line
            )
        for token in tokens[: state.positions]:
            if not _POSITION_RE.match(token):
                raise session.error(f"invalid position '{token}'", line)
        return self._costs(session, state, line, tokens[state.positions:])

    def _costs(
        self,
        session: ParseSession,
        state: _State,
        line: Line,
        tokens: list[str],
    ) -> Costs:
        if state.events is None:
            raise session.error("cost values before the events: header", line)
        if len(tokens) > len(state.events):
            raise session.error(
                f"{len(tokens)} cost values but only {len(state.events)} events", line
            )
        costs = Costs()
        # missing trailing values are zero
        padded = tokens + ["0"] * (len(state.events) - len(tokens))
        for kind, token in zip(state.events, padded):
            if kind is None:
                continue
            try:
                value = int(token)
            except ValueError:
                raise session.error(f"invalid cost value '{token}'", line) from None
            if value < 0:
                raise session.error(f"negative cost value '{token}'", line)
            costs.accumulate(kind, value)
        return costs

    # -- completion ---------------------------------------------------------------------

    def _finish(self, session: ParseSession, state: _State, graph: CallGraph) -> CostModel:
        if state.events is None:
            raise session.truncated("artifact ends before the events: header")
        if not session.reader.ended_with_newline:
            raise session.truncated("last line is incomplete")
        if not state.version_seen:
            logger.warning(
                f"{session.source or '<memory>'}: no version: header, assuming version "
                f"{SUPPORTED_FORMAT_VERSION}"
            )

        if state.summary is not None and state.totals is not None and state.summary != state.totals:
            raise session.error(f"summary {state.summary} does not match totals {state.totals}")
        totals = state.totals if state.totals is not None else state.summary
        if totals is None:
            raise session.truncated("artifact has neither summary: nor totals:")

        cycles = graph.mark_cycles()
        if cycles:
            logger.debug(f"{session.source or '<memory>'}: {cycles} recursive call edge(s)")

        model = CostModel(
            tool=ToolId.CALLGRIND,
            totals=totals.with_derived(),
            graph=graph,
            metadata=state.metadata,
        )
        model.validate(session.source)
        return model
