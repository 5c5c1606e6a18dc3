"""
Folded-stack export for external flamegraph renderers.

Output grammar, one line per unique root-to-leaf path:

    frame;frame;...;frame <integer-cost>\n

Output is deterministic: roots and siblings are visited by descending
cost, then by name, then by arena index. Recursive graphs are handled by
skipping cycle edges and frames already on the current path.
"""

from __future__ import annotations

import logging
from typing import Iterable, TextIO

from instrument_bench.model import CallGraph, EventKind

logger = logging.getLogger(__name__)


def frame_name(name: str) -> str:
    """A frame name safe for the folded grammar: ASCII, no `;`, no newline."""
    cleaned = name.replace(";", ":").replace("\n", " ").replace("\r", " ")
    return cleaned.encode("ascii", "backslashreplace").decode("ascii")


def folded_stacks(graph: CallGraph | None, kind: EventKind = EventKind.IR) -> list[str]:
    """
    Convert a call graph into folded stack lines for `kind`.

    A node reached with cost `c` out of its inclusive cost `I` contributes
    `self * c // I` to its path and passes `edge * c // I` down each child
    edge, so every path sums to at most what its root measured.
    """
    if graph is None or len(graph) == 0:
        return []

    inclusive = {node.index: graph.inclusive(node.index).get(kind) or 0 for node in graph}
    names = {node.index: frame_name(node.name) for node in graph}
    totals: dict[str, int] = {}

    roots = sorted(graph.roots(), key=lambda i: (-inclusive[i], names[i], i))
    for root in roots:
        if inclusive[root] == 0:
            continue
        # (node, cost reaching it, path of frame names, indices on the path)
        pending: list[tuple[int, int, tuple[str, ...], frozenset[int]]] = [
            (root, inclusive[root], (names[root],), frozenset({root}))
        ]
        while pending:
            index, cost, path, on_path = pending.pop()
            node = graph.node(index)
            whole = inclusive[index]
            if whole == 0 or cost == 0:
                continue

            own = (node.self_cost.get(kind) or 0) * cost // whole
            if own:
                key = ";".join(path)
                totals[key] = totals.get(key, 0) + own

            children = []
            for callee, edge in node.edges.items():
                if edge.is_cycle or callee in on_path:
                    continue
                share = (edge.inclusive.get(kind) or 0) * cost // whole
                if share:
                    children.append((share, callee))
            children.sort(key=lambda item: (-item[0], names[item[1]], item[1]))
            # reversed so the first child is processed first
            for share, callee in reversed(children):
                pending.append((callee, share, path + (names[callee],), on_path | {callee}))

    lines = [f"{path} {cost}" for path, cost in totals.items() if cost > 0]
    logger.debug(f"Folded {len(graph)} node(s) into {len(lines)} stack line(s) for {kind.value}")
    return lines


def write_folded(lines: Iterable[str], fp: TextIO) -> int:
    """Write folded lines, each terminated by `\\n`. Returns the line count."""
    count = 0
    for line in lines:
        fp.write(line)
        fp.write("\n")
        count += 1
    return count
