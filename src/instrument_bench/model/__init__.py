"""
Cost model - tool-agnostic data structures for one profiling run.

- events.py: EventKind enumeration and kind groups
- costs.py: Costs (saturating counters), CostDiff, percentage_diff
- callgraph.py: arena-based CallGraph with cycle marking
- cost_model.py: CostModel + ToolId
"""

from instrument_bench.model.events import (
    EventKind,
    CACHE_SIM_KINDS,
    DERIVED_KINDS,
    HEAP_KINDS,
    ERROR_KINDS,
    LEAK_KINDS,
    INCLUSIVE_KINDS,
)
from instrument_bench.model.costs import (
    Costs,
    CostDiff,
    U64_MAX,
    UNBOUNDED,
    percentage_diff,
    factor_diff,
)
from instrument_bench.model.callgraph import (
    CallEdge,
    CallGraph,
    CallNode,
    NodeKey,
)
from instrument_bench.model.cost_model import (
    CostModel,
    ToolId,
)

__all__ = [
    # Events
    "EventKind",
    "CACHE_SIM_KINDS",
    "DERIVED_KINDS",
    "HEAP_KINDS",
    "ERROR_KINDS",
    "LEAK_KINDS",
    "INCLUSIVE_KINDS",
    # Costs
    "Costs",
    "CostDiff",
    "U64_MAX",
    "UNBOUNDED",
    "percentage_diff",
    "factor_diff",
    # Call graph
    "CallEdge",
    "CallGraph",
    "CallNode",
    "NodeKey",
    # Model
    "CostModel",
    "ToolId",
]
