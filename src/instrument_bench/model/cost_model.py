"""
CostModel - the normalized result of one profiling run.

Every parser produces one of these regardless of the tool's raw format, so
comparison and export code never needs to know which tool ran.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from instrument_bench.core.errors import ParseError
from instrument_bench.model.callgraph import CallGraph
from instrument_bench.model.costs import Costs


class ToolId(str, Enum):
    """The external tools with a parser. Values are valgrind `--tool=` ids."""

    CALLGRIND = "callgrind"
    DHAT = "dhat"
    MEMCHECK = "memcheck"
    HELGRIND = "helgrind"
    DRD = "drd"

    def __str__(self) -> str:
        return self.value


@dataclass
class CostModel:
    """Totals of one run, plus the call graph when the tool reports one."""

    tool: ToolId
    totals: Costs
    graph: CallGraph | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def has_graph(self) -> bool:
        return self.graph is not None and len(self.graph) > 0

    def validate(self, source: str | None = None) -> None:
        """Check that the graph's root inclusive costs fit inside the totals.

        Raises:
            ParseError: naming the offending event kinds.
        """
        if self.graph is None:
            return
        root = self.graph.root_inclusive()
        inclusive_kinds = [kind for kind in root if kind.is_inclusive]
        over = root.exceeds(self.totals, inclusive_kinds)
        if over:
            details = ", ".join(
                f"{kind.value}: {root[kind]} > {self.totals[kind]}" for kind in over
            )
            raise ParseError(
                f"call graph integrity violated, root inclusive cost exceeds totals ({details})",
                source=source,
            )

    def merge(self, other: CostModel) -> CostModel:
        """Aggregate two runs of the same tool (e.g. one artifact per process)."""
        if other.tool != self.tool:
            raise ValueError(f"Cannot merge {other.tool} into {self.tool}")

        graph: CallGraph | None = None
        if self.graph is not None or other.graph is not None:
            graph = CallGraph()
            for part in (self.graph, other.graph):
                if part is not None:
                    graph.merge(part)
            if self.tool == ToolId.CALLGRIND:
                graph.mark_cycles()

        metadata = dict(self.metadata)
        for key, value in other.metadata.items():
            if key in metadata and metadata[key] != value:
                metadata[key] = f"{metadata[key]},{value}"
            else:
                metadata.setdefault(key, value)

        return CostModel(
            tool=self.tool,
            totals=self.totals + other.totals,
            graph=graph,
            metadata=metadata,
        )
