"""
Call graph - cost attribution units and the call edges between them.

Nodes live in an arena (`CallGraph._nodes`) and refer to each other by
index, so recursive and mutually recursive calls never create ownership
cycles. Any traversal that follows edges keeps a visited set of indices.

A call edge carries the INCLUSIVE cost of the calls it represents. An edge
that closes a cycle (recursion) is flagged `is_cycle`; inclusive sums skip
it because its cost is already part of an outer activation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

from instrument_bench.model.costs import Costs


@dataclass(frozen=True, order=True)
class NodeKey:
    """Identity of a call node: the binary plus the function, if known."""

    binary: str
    function: str | None = None

    @property
    def frame(self) -> str:
        """Display name of the node in stack frames."""
        if self.function:
            return self.function
        return self.binary or "???"


@dataclass
class CallEdge:
    """Inclusive cost and call count of caller -> callee."""

    inclusive: Costs = field(default_factory=Costs)
    calls: int = 0
    is_cycle: bool = False


@dataclass
class CallNode:
    """One cost attribution unit."""

    index: int
    key: NodeKey
    self_cost: Costs = field(default_factory=Costs)
    edges: dict[int, CallEdge] = field(default_factory=dict)
    source: str | None = None
    line: int | None = None

    @property
    def name(self) -> str:
        return self.key.frame


class CallGraph:
    """Arena of CallNodes addressed by stable index."""

    def __init__(self) -> None:
        self._nodes: list[CallNode] = []
        self._index: dict[NodeKey, int] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[CallNode]:
        return iter(self._nodes)

    def node(self, index: int) -> CallNode:
        return self._nodes[index]

    def find(self, key: NodeKey) -> int | None:
        return self._index.get(key)

    # -- building ---------------------------------------------------------------

    def intern(self, key: NodeKey, source: str | None = None, line: int | None = None) -> int:
        """Index of the node for `key`, creating it on first sight."""
        index = self._index.get(key)
        if index is None:
            index = len(self._nodes)
            self._nodes.append(CallNode(index=index, key=key, source=source, line=line))
            self._index[key] = index
        else:
            node = self._nodes[index]
            if node.source is None and source is not None:
                node.source = source
            if node.line is None and line is not None:
                node.line = line
        return index

    def add_self_cost(self, index: int, costs: Costs) -> None:
        self._nodes[index].self_cost.add_in_place(costs)

    def add_edge(
        self,
        caller: int,
        callee: int,
        inclusive: Costs | None = None,
        calls: int = 0,
        is_cycle: bool = False,
    ) -> CallEdge:
        """Merge a call into the caller -> callee edge."""
        edges = self._nodes[caller].edges
        edge = edges.get(callee)
        if edge is None:
            edge = CallEdge()
            edges[callee] = edge
        if inclusive is not None:
            edge.inclusive.add_in_place(inclusive)
        edge.calls += calls
        edge.is_cycle = edge.is_cycle or is_cycle
        return edge

    def merge(self, other: CallGraph) -> None:
        """Fold another graph into this one, matching nodes by key."""
        mapping: dict[int, int] = {}
        for node in other:
            mapping[node.index] = self.intern(node.key, node.source, node.line)
            self.add_self_cost(mapping[node.index], node.self_cost)
        for node in other:
            for callee, edge in node.edges.items():
                self.add_edge(
                    mapping[node.index],
                    mapping[callee],
                    edge.inclusive,
                    edge.calls,
                    edge.is_cycle,
                )

    # -- cycles -----------------------------------------------------------------

    def mark_cycles(self) -> int:
        """Flag every edge that points back into the active call stack.

        Depth-first from the entry nodes (no caller other than themselves)
        in index order, then from any node still unvisited, which only
        happens for cycles nothing outside them calls. Children are visited
        in index order. Returns the number of cycle edges.
        """
        called: set[int] = set()
        for node in self._nodes:
            for edge in node.edges.values():
                edge.is_cycle = False
            called.update(callee for callee in node.edges if callee != node.index)

        unvisited, active, done = 0, 1, 2
        state = [unvisited] * len(self._nodes)
        marked = 0

        entries = [index for index in range(len(self._nodes)) if index not in called]
        for start in entries + list(range(len(self._nodes))):
            if state[start] != unvisited:
                continue
            state[start] = active
            stack: list[tuple[int, Iterator[int]]] = [
                (start, iter(sorted(self._nodes[start].edges)))
            ]
            while stack:
                index, children = stack[-1]
                child = next(children, None)
                if child is None:
                    state[index] = done
                    stack.pop()
                    continue
                if state[child] == active:
                    self._nodes[index].edges[child].is_cycle = True
                    marked += 1
                elif state[child] == unvisited:
                    state[child] = active
                    stack.append((child, iter(sorted(self._nodes[child].edges))))
        return marked

    # -- accounting ---------------------------------------------------------------

    def inclusive(self, index: int) -> Costs:
        """Self cost plus all non-cycle outgoing edges."""
        node = self._nodes[index]
        total = node.self_cost.copy()
        for edge in node.edges.values():
            if not edge.is_cycle:
                total.add_in_place(edge.inclusive)
        return total

    def incoming(self) -> dict[int, list[int]]:
        """callee index -> caller indices over non-cycle edges."""
        callers: dict[int, list[int]] = {node.index: [] for node in self._nodes}
        for node in self._nodes:
            for callee, edge in node.edges.items():
                if not edge.is_cycle:
                    callers[callee].append(node.index)
        return callers

    def roots(self) -> list[int]:
        """Nodes nobody calls (ignoring cycle edges), in index order."""
        return [index for index, callers in self.incoming().items() if not callers]

    def root_inclusive(self) -> Costs:
        total = Costs()
        for index in self.roots():
            total.add_in_place(self.inclusive(index))
        return total
