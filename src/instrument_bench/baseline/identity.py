"""
Benchmark identity - the stable key a baseline is stored under.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

MAX_SEGMENT_LENGTH = 64
HASH_LENGTH = 8

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_segment(text: str) -> str:
    """Turn arbitrary text into a single safe path segment.

    Unsafe characters become `_` and long names are cut. Whenever the
    result differs from the input, a short hash of the input is appended
    so two different names never collapse into the same segment.
    """
    cleaned = _UNSAFE_RE.sub("_", text)
    if cleaned.startswith("."):
        cleaned = "_" + cleaned[1:]
    cleaned = cleaned[:MAX_SEGMENT_LENGTH] or "_"
    if cleaned == text:
        return cleaned
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:HASH_LENGTH]
    return f"{cleaned}-{digest}"


@dataclass(frozen=True, order=True)
class BenchmarkId:
    """Identity of one benchmark case: group, case name and optional parameters."""

    group: str
    case: str
    params: str | None = None

    def __post_init__(self) -> None:
        if not self.group or not self.case:
            raise ValueError("BenchmarkId needs a non-empty group and case")

    @property
    def key(self) -> str:
        """Human readable unique key, e.g. `parsers::bench_json[large]`."""
        suffix = f"[{self.params}]" if self.params else ""
        return f"{self.group}::{self.case}{suffix}"

    def path_segments(self) -> tuple[str, str]:
        """(group, case) directory names, safe on any filesystem."""
        case = f"{self.case}.{self.params}" if self.params else self.case
        return sanitize_segment(self.group), sanitize_segment(case)

    @classmethod
    def parse(cls, key: str) -> BenchmarkId:
        """Inverse of `key`."""
        group, sep, rest = key.partition("::")
        if not sep:
            raise ValueError(f"Benchmark key '{key}' lacks the 'group::case' separator")
        params = None
        if rest.endswith("]") and "[" in rest:
            rest, _, params = rest[:-1].partition("[")
        return cls(group=group, case=rest, params=params or None)

    def __str__(self) -> str:
        return self.key
