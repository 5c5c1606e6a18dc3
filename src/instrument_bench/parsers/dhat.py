"""
DHAT JSON output parser.

DHAT writes one JSON document per process (`dhat.out.<pid>`):

    {
      "dhatFileVersion": 2,
      "mode": "heap",
      "cmd": "./bench",
      "pid": 4242,
      "pps": [
        {"tb": 1024, "tbk": 2, "tl": 500, "gb": 1024, "gbk": 2,
         "eb": 0, "ebk": 0, "rb": 2048, "wb": 1024, "fs": [1, 2]}
      ],
      "ftbl": [
        "[root]",
        "0x4C2DB8F: malloc (in /usr/libexec/valgrind/vgpreload_dhat-amd64-linux.so)",
        "0x10915E: main (bench.c:7)"
      ]
    }

`ftbl` is the symbol table; `fs` lists frame indices innermost first.
Every program point becomes a path [root] -> outermost -> ... -> leaf in
the call graph. The leaf takes the point's self cost and every edge on the
path accumulates it inclusively.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from instrument_bench.core.errors import ParseError, TruncatedArtifact, UnsupportedFormatVersion
from instrument_bench.model import CallGraph, CostModel, Costs, EventKind, NodeKey, ToolId

logger = logging.getLogger(__name__)

SUPPORTED_FILE_VERSIONS = frozenset({2})
SUPPORTED_MODES = frozenset({"heap", "copy", "ad-hoc"})

ROOT_FRAME = "[root]"

# Program point field -> event kind
PP_FIELDS: dict[str, EventKind] = {
    "tb": EventKind.TOTAL_BYTES,
    "tbk": EventKind.TOTAL_BLOCKS,
    "tl": EventKind.TOTAL_LIFETIMES,
    "gb": EventKind.AT_T_GMAX_BYTES,
    "gbk": EventKind.AT_T_GMAX_BLOCKS,
    "eb": EventKind.AT_T_END_BYTES,
    "ebk": EventKind.AT_T_END_BLOCKS,
    "rb": EventKind.READS_BYTES,
    "wb": EventKind.WRITES_BYTES,
}

_FRAME_RE = re.compile(
    r"^(?:0x[0-9A-Fa-f]+:\s+)?(?P<function>.+?)"
    r"(?:\s+\((?:in\s+(?P<object>[^)]+)|(?P<file>[^()]+):(?P<line>\d+))\))?$"
)


def decode_frame(text: str) -> tuple[NodeKey, str | None, int | None]:
    """Split a DHAT frame string into (key, source file, line)."""
    text = text.strip()
    if text == ROOT_FRAME:
        return NodeKey(ROOT_FRAME), None, None
    match = _FRAME_RE.match(text)
    if match is None:
        return NodeKey("", text or None), None, None
    function = match.group("function").strip()
    if function == "???":
        function = None
    line = match.group("line")
    return (
        NodeKey(match.group("object") or "", function),
        match.group("file"),
        int(line) if line else None,
    )


class DhatParser:
    """Parser for `dhat.out` artifacts."""

    tool = ToolId.DHAT

    def parse_bytes(self, data: bytes, source: str | None = None) -> CostModel:
        if not data.strip():
            raise TruncatedArtifact("empty artifact", source=source, offset=0)
        document = self._load(data, source)
        if not isinstance(document, dict):
            raise ParseError("expected a JSON object at top level", source=source)

        self._check_header(document, source)

        frames = document.get("ftbl")
        points = document.get("pps")
        if not isinstance(frames, list) or not isinstance(points, list):
            raise ParseError("document lacks 'ftbl' or 'pps' arrays", source=source)

        graph = CallGraph()
        root = graph.intern(NodeKey(ROOT_FRAME))
        nodes: dict[int, int] = {}
        totals = Costs()

        for number, point in enumerate(points):
            if not isinstance(point, dict):
                raise ParseError(f"program point {number} is not an object", source=source)
            costs = self._point_costs(point, number, source)
            stack = [
                self._frame_node(graph, frames, nodes, root, index, number, source)
                for index in reversed(point.get("fs", []))
            ]
            self._add_path(graph, root, stack, costs)
            totals.add_in_place(costs)

        metadata = {"mode": document["mode"], "dhatFileVersion": str(document["dhatFileVersion"])}
        for key in ("cmd", "pid"):
            if key in document:
                metadata[key] = str(document[key])

        model = CostModel(tool=ToolId.DHAT, totals=totals, graph=graph, metadata=metadata)
        model.validate(source)
        logger.debug(
            f"{source or '<memory>'}: {len(points)} program point(s), {len(graph)} node(s)"
        )
        return model

    # -- document -------------------------------------------------------------

    def _load(self, data: bytes, source: str | None) -> Any:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"not valid UTF-8: {e.reason}", source=source, offset=e.start) from None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            at_end = e.pos >= len(text.rstrip()) or e.msg.startswith("Unterminated string")
            error_cls = TruncatedArtifact if at_end else ParseError
            raise error_cls(
                f"invalid JSON: {e.msg}",
                source=source,
                line=e.lineno,
                offset=len(text[: e.pos].encode("utf-8")),
            ) from None

    def _check_header(self, document: dict[str, Any], source: str | None) -> None:
        version = document.get("dhatFileVersion")
        if version is None:
            raise ParseError("missing 'dhatFileVersion'", source=source)
        if version not in SUPPORTED_FILE_VERSIONS:
            raise UnsupportedFormatVersion(
                f"dhatFileVersion {version} is not supported "
                f"(expected one of {sorted(SUPPORTED_FILE_VERSIONS)})",
                source=source,
            )
        mode = document.get("mode")
        if mode not in SUPPORTED_MODES:
            raise ParseError(f"unknown DHAT mode '{mode}'", source=source)

    # -- program points ---------------------------------------------------------

    def _point_costs(self, point: dict[str, Any], number: int, source: str | None) -> Costs:
        costs = Costs()
        for field_name, kind in PP_FIELDS.items():
            if field_name not in point:
                continue
            value = point[field_name]
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ParseError(
                    f"program point {number}: '{field_name}' is not a non-negative integer",
                    source=source,
                )
            costs.accumulate(kind, value)
        return costs

    def _frame_node(
        self,
        graph: CallGraph,
        frames: list[Any],
        nodes: dict[int, int],
        root: int,
        index: Any,
        number: int,
        source: str | None,
    ) -> int:
        if not isinstance(index, int) or not 0 <= index < len(frames):
            raise ParseError(
                f"program point {number}: frame index {index!r} outside ftbl "
                f"of {len(frames)} entries",
                source=source,
            )
        node = nodes.get(index)
        if node is None:
            frame = frames[index]
            if not isinstance(frame, str):
                raise ParseError(f"ftbl entry {index} is not a string", source=source)
            key, file, line = decode_frame(frame)
            node = root if key.binary == ROOT_FRAME else graph.intern(key, file, line)
            nodes[index] = node
        return node

    def _add_path(self, graph: CallGraph, root: int, stack: list[int], costs: Costs) -> None:
        """Attach one program point's costs along its resolved call path.

        A frame already on the active path closes a recursion: the edge into
        it is a cycle edge and the path is cut back to the earlier
        activation. Cut edges keep their call count but carry no cost.
        """
        path = [root]
        position = {root: 0}
        uncosted: list[tuple[int, int, bool]] = []

        for node in stack:
            if node in position:
                uncosted.append((path[-1], node, True))
                cut = position[node] + 1
                for i in range(cut, len(path)):
                    uncosted.append((path[i - 1], path[i], False))
                    del position[path[i]]
                del path[cut:]
            else:
                position[node] = len(path)
                path.append(node)

        for caller, callee in zip(path, path[1:]):
            graph.add_edge(caller, callee, costs, calls=1)
        for caller, callee, is_cycle in uncosted:
            graph.add_edge(caller, callee, calls=1, is_cycle=is_cycle)
        graph.add_self_cost(path[-1], costs)
