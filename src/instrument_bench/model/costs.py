"""
Costs - a mapping from EventKind to a non-negative 64-bit counter.

This is the CostEntry of the cost model. A kind that is not in the mapping
was not measured; `get()` returns None for it rather than 0.

Arithmetic is saturating on both ends: addition clamps at 2**64 - 1 and
subtraction floors at 0, so reported differences never wrap.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping

from instrument_bench.model.events import CACHE_SIM_KINDS, EventKind

U64_MAX = 2**64 - 1

# Percent delta reported when the baseline is zero and the current value is not.
UNBOUNDED = math.inf


def _check(kind: EventKind, value: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"Cost for {kind} must be an int, got {type(value).__name__}")
    if value < 0 or value > U64_MAX:
        raise ValueError(f"Cost for {kind} out of range: {value}")
    return value


def percentage_diff(new: int, old: int) -> float:
    """Percent change from old to new.

    Both zero is no change; a zero baseline with a nonzero current value is
    UNBOUNDED instead of a division error.
    """
    if new == old:
        return 0.0
    if old == 0:
        return UNBOUNDED
    # multiply first so 1000 -> 1100 is exactly 10.0
    return (new - old) * 100 / old


def factor_diff(new: int, old: int) -> float:
    """Ratio new/old, 1.0 for equal values and UNBOUNDED for a zero baseline."""
    if new == old:
        return 1.0
    if old == 0:
        return UNBOUNDED
    return new / old


@dataclass(frozen=True)
class CostDiff:
    """One event kind compared between a new and an old measurement.

    At least one of `new` / `old` is present. `diff_pct` and `factor` are
    only present when both are.
    """

    new: int | None
    old: int | None
    diff_pct: float | None = None
    factor: float | None = None


class Costs:
    """Ordered EventKind -> counter mapping with saturating arithmetic."""

    def __init__(
        self,
        values: Costs | Mapping[EventKind, int] | Iterable[tuple[EventKind, int]] | None = None,
    ):
        self._values: dict[EventKind, int] = {}
        if values is None:
            return
        if isinstance(values, Costs):
            values = values._values
        items = values.items() if isinstance(values, Mapping) else values
        for kind, value in items:
            kind = EventKind(kind)
            self._values[kind] = _check(kind, value)

    @classmethod
    def zeros(cls, kinds: Iterable[EventKind]) -> Costs:
        """Costs with every kind present and set to zero."""
        return cls((kind, 0) for kind in kinds)

    # -- mapping interface --------------------------------------------------

    def get(self, kind: EventKind) -> int | None:
        return self._values.get(kind)

    def __getitem__(self, kind: EventKind) -> int:
        return self._values[kind]

    def __contains__(self, kind: object) -> bool:
        return kind in self._values

    def __iter__(self) -> Iterator[EventKind]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __bool__(self) -> bool:
        return bool(self._values)

    def items(self) -> Iterator[tuple[EventKind, int]]:
        return iter(self._values.items())

    def kinds(self) -> list[EventKind]:
        return list(self._values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Costs):
            return NotImplemented
        return self._values == other._values

    def __repr__(self) -> str:
        inner = ", ".join(f"{kind.value}={value}" for kind, value in self._values.items())
        return f"Costs({inner})"

    def to_dict(self) -> dict[str, int]:
        """Plain dict keyed by raw event name, in canonical kind order."""
        return {kind.value: self._values[kind] for kind in self.canonical_kinds()}

    def canonical_kinds(self) -> list[EventKind]:
        return sorted(self._values, key=lambda kind: kind.order)

    def copy(self) -> Costs:
        return Costs(self._values)

    # -- arithmetic -----------------------------------------------------------

    def accumulate(self, kind: EventKind, value: int) -> None:
        """Add `value` to one kind in place, creating it if absent."""
        _check(kind, value)
        self._values[kind] = min(self._values.get(kind, 0) + value, U64_MAX)

    def add_in_place(self, other: Costs) -> None:
        for kind, value in other.items():
            self.accumulate(kind, value)

    def add(self, other: Costs) -> Costs:
        """Elementwise sum over the union of kinds."""
        result = self.copy()
        result.add_in_place(other)
        return result

    __add__ = add

    def saturating_sub(self, other: Costs) -> Costs:
        """Elementwise difference over the kinds of `self`, floored at zero."""
        return Costs(
            (kind, max(value - other._values.get(kind, 0), 0))
            for kind, value in self._values.items()
        )

    __sub__ = saturating_sub

    def scaled(self, numerator: int, denominator: int) -> Costs:
        """Every counter multiplied by numerator/denominator, rounded down."""
        if denominator == 0:
            return Costs.zeros(self._values)
        return Costs(
            (kind, value * numerator // denominator) for kind, value in self._values.items()
        )

    def exceeds(self, other: Costs, kinds: Iterable[EventKind]) -> list[EventKind]:
        """Kinds (among `kinds`) for which self is strictly larger than other."""
        return [
            kind
            for kind in kinds
            if kind in self._values
            and kind in other._values
            and self._values[kind] > other._values[kind]
        ]

    # -- comparison -----------------------------------------------------------

    def factor_view(self, baseline: Costs) -> dict[EventKind, CostDiff]:
        """Compare against a baseline for every kind present on either side."""
        kinds = sorted(set(self._values) | set(baseline._values), key=lambda k: k.order)
        view: dict[EventKind, CostDiff] = {}
        for kind in kinds:
            new = self._values.get(kind)
            old = baseline._values.get(kind)
            if new is not None and old is not None:
                view[kind] = CostDiff(
                    new=new,
                    old=old,
                    diff_pct=percentage_diff(new, old),
                    factor=factor_diff(new, old),
                )
            else:
                view[kind] = CostDiff(new=new, old=old)
        return view

    # -- derived events -------------------------------------------------------

    def has_cache_sim(self) -> bool:
        return all(kind in self._values for kind in CACHE_SIM_KINDS)

    def with_derived(self) -> Costs:
        """Add the cache summary kinds when all cache-sim counters are present.

        Cycle estimate: L1 hits + 5 * LL hits + 35 * RAM hits.
        """
        if not self.has_cache_sim():
            return self.copy()

        v = self._values
        ram_hits = v[EventKind.ILMR] + v[EventKind.DLMR] + v[EventKind.DLMW]
        l1_miss = v[EventKind.I1MR] + v[EventKind.D1MR] + v[EventKind.D1MW]
        ll_hits = max(l1_miss - ram_hits, 0)
        total_rw = v[EventKind.IR] + v[EventKind.DR] + v[EventKind.DW]
        l1_hits = max(total_rw - ram_hits - ll_hits, 0)
        cycles = l1_hits + 5 * ll_hits + 35 * ram_hits

        result = self.copy()
        for kind, value in (
            (EventKind.L1_HITS, l1_hits),
            (EventKind.LL_HITS, ll_hits),
            (EventKind.RAM_HITS, ram_hits),
            (EventKind.TOTAL_RW, total_rw),
            (EventKind.ESTIMATED_CYCLES, cycles),
        ):
            result._values[kind] = min(value, U64_MAX)
        return result
