"""
Event kinds - the counters an external tool can report.

Values are the raw names the tools themselves print (callgrind's `events:`
line, for example), so a parser can map a column header straight to a
member. Each tool reports a subset; kinds it does not measure are ABSENT
from its costs, never zero.
"""

from __future__ import annotations

from enum import Enum


class EventKind(str, Enum):
    """A measurable counter."""

    # callgrind: always on
    IR = "Ir"
    # --collect-systime
    SYS_COUNT = "sysCount"
    SYS_TIME = "sysTime"
    SYS_CPU_TIME = "sysCpuTime"
    # --collect-bus
    GE = "Ge"
    # --cache-sim
    DR = "Dr"
    DW = "Dw"
    I1MR = "I1mr"
    D1MR = "D1mr"
    D1MW = "D1mw"
    ILMR = "ILmr"
    DLMR = "DLmr"
    DLMW = "DLmw"
    # --branch-sim
    BC = "Bc"
    BCM = "Bcm"
    BI = "Bi"
    BIM = "Bim"
    # --simulate-wb
    ILDMR = "ILdmr"
    DLDMR = "DLdmr"
    DLDMW = "DLdmw"
    # --cacheuse
    AC_COST1 = "AcCost1"
    AC_COST2 = "AcCost2"
    SP_LOSS1 = "SpLoss1"
    SP_LOSS2 = "SpLoss2"

    # Derived from the cache-sim counters
    L1_HITS = "L1hits"
    LL_HITS = "LLhits"
    RAM_HITS = "RamHits"
    TOTAL_RW = "TotalRW"
    ESTIMATED_CYCLES = "EstimatedCycles"

    # dhat
    TOTAL_BYTES = "TotalBytes"
    TOTAL_BLOCKS = "TotalBlocks"
    TOTAL_LIFETIMES = "TotalLifetimes"
    AT_T_GMAX_BYTES = "AtTGmaxBytes"
    AT_T_GMAX_BLOCKS = "AtTGmaxBlocks"
    AT_T_END_BYTES = "AtTEndBytes"
    AT_T_END_BLOCKS = "AtTEndBlocks"
    READS_BYTES = "ReadsBytes"
    WRITES_BYTES = "WritesBytes"

    # memcheck, helgrind, drd
    ERRORS = "Errors"
    CONTEXTS = "Contexts"
    SUPPRESSED_ERRORS = "SuppressedErrors"
    SUPPRESSED_CONTEXTS = "SuppressedContexts"
    # memcheck leak summary (bytes)
    DEFINITELY_LOST = "DefinitelyLost"
    INDIRECTLY_LOST = "IndirectlyLost"
    POSSIBLY_LOST = "PossiblyLost"
    STILL_REACHABLE = "StillReachable"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, name: str) -> EventKind | None:
        """Map a raw tool name to a member, or None if unknown."""
        return _BY_NAME.get(name.strip())

    @property
    def label(self) -> str:
        """Human readable name for reports."""
        return _LABELS.get(self, self.value)

    @property
    def is_inclusive(self) -> bool:
        """True if call-edge costs of this kind include the callee's costs."""
        return self in INCLUSIVE_KINDS

    @property
    def order(self) -> int:
        """Declaration index, used for canonical ordering."""
        return _ORDER[self]


_BY_NAME: dict[str, EventKind] = {kind.value: kind for kind in EventKind}
_ORDER: dict[EventKind, int] = {kind: i for i, kind in enumerate(EventKind)}

# The nine counters `--cache-sim=yes` produces, in callgrind's column order.
CACHE_SIM_KINDS: tuple[EventKind, ...] = (
    EventKind.IR,
    EventKind.DR,
    EventKind.DW,
    EventKind.I1MR,
    EventKind.D1MR,
    EventKind.D1MW,
    EventKind.ILMR,
    EventKind.DLMR,
    EventKind.DLMW,
)

DERIVED_KINDS: frozenset[EventKind] = frozenset(
    {
        EventKind.L1_HITS,
        EventKind.LL_HITS,
        EventKind.RAM_HITS,
        EventKind.TOTAL_RW,
        EventKind.ESTIMATED_CYCLES,
    }
)

HEAP_KINDS: tuple[EventKind, ...] = (
    EventKind.TOTAL_BYTES,
    EventKind.TOTAL_BLOCKS,
    EventKind.TOTAL_LIFETIMES,
    EventKind.AT_T_GMAX_BYTES,
    EventKind.AT_T_GMAX_BLOCKS,
    EventKind.AT_T_END_BYTES,
    EventKind.AT_T_END_BLOCKS,
    EventKind.READS_BYTES,
    EventKind.WRITES_BYTES,
)

ERROR_KINDS: tuple[EventKind, ...] = (
    EventKind.ERRORS,
    EventKind.CONTEXTS,
    EventKind.SUPPRESSED_ERRORS,
    EventKind.SUPPRESSED_CONTEXTS,
)

LEAK_KINDS: tuple[EventKind, ...] = (
    EventKind.DEFINITELY_LOST,
    EventKind.INDIRECTLY_LOST,
    EventKind.POSSIBLY_LOST,
    EventKind.STILL_REACHABLE,
)

# Error and leak counts are process totals; derived kinds are only ever
# computed on totals. Everything else sums along call edges.
INCLUSIVE_KINDS: frozenset[EventKind] = frozenset(
    kind
    for kind in EventKind
    if kind not in DERIVED_KINDS and kind not in ERROR_KINDS and kind not in LEAK_KINDS
)

_LABELS: dict[EventKind, str] = {
    EventKind.IR: "Instructions",
    EventKind.DR: "Data reads",
    EventKind.DW: "Data writes",
    EventKind.I1MR: "I1 read misses",
    EventKind.D1MR: "D1 read misses",
    EventKind.D1MW: "D1 write misses",
    EventKind.ILMR: "LL instr read misses",
    EventKind.DLMR: "LL data read misses",
    EventKind.DLMW: "LL data write misses",
    EventKind.BC: "Conditional branches",
    EventKind.BCM: "Mispredicted cond branches",
    EventKind.BI: "Indirect branches",
    EventKind.BIM: "Mispredicted ind branches",
    EventKind.L1_HITS: "L1 hits",
    EventKind.LL_HITS: "LL hits",
    EventKind.RAM_HITS: "RAM hits",
    EventKind.TOTAL_RW: "Total read+write",
    EventKind.ESTIMATED_CYCLES: "Estimated cycles",
    EventKind.TOTAL_BYTES: "Total bytes",
    EventKind.TOTAL_BLOCKS: "Total blocks",
    EventKind.TOTAL_LIFETIMES: "Total lifetimes",
    EventKind.AT_T_GMAX_BYTES: "At t-gmax bytes",
    EventKind.AT_T_GMAX_BLOCKS: "At t-gmax blocks",
    EventKind.AT_T_END_BYTES: "At t-end bytes",
    EventKind.AT_T_END_BLOCKS: "At t-end blocks",
    EventKind.READS_BYTES: "Reads bytes",
    EventKind.WRITES_BYTES: "Writes bytes",
    EventKind.ERRORS: "Errors",
    EventKind.CONTEXTS: "Contexts",
    EventKind.SUPPRESSED_ERRORS: "Suppressed errors",
    EventKind.SUPPRESSED_CONTEXTS: "Suppressed contexts",
    EventKind.DEFINITELY_LOST: "Definitely lost",
    EventKind.INDIRECTLY_LOST: "Indirectly lost",
    EventKind.POSSIBLY_LOST: "Possibly lost",
    EventKind.STILL_REACHABLE: "Still reachable",
}
