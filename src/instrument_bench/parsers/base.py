"""
Shared parsing machinery: a forward-only line reader and a per-session
symbol table.

One ParseSession exists per artifact. Nothing here is cached across
sessions, so two parses never influence each other.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterator

from instrument_bench.core.errors import (
    ParseError,
    TruncatedArtifact,
    UnsupportedFormatVersion,
)

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?")
_COMPRESSED_RE = re.compile(r"^\((?P<id>\d+)\)(?:\s+(?P<name>.*))?$")

Version = tuple[int, int, int]


@dataclass(frozen=True)
class Line:
    """One line of an artifact with its 1-based number and byte offset."""

    number: int
    offset: int
    text: str


class LineReader:
    """Single forward pass over the lines of a byte buffer."""

    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0
        self._number = 0
        self.last: Line | None = None
        self.ended_with_newline = data.endswith(b"\n") or not data

    def __iter__(self) -> Iterator[Line]:
        while True:
            line = self.next_line()
            if line is None:
                return
            yield line

    def next_line(self) -> Line | None:
        if self._pos >= len(self._data):
            return None
        end = self._data.find(b"\n", self._pos)
        if end == -1:
            end = len(self._data)
        raw = self._data[self._pos:end]
        self._number += 1
        line = Line(
            number=self._number,
            offset=self._pos,
            text=raw.rstrip(b"\r").decode("utf-8", errors="replace"),
        )
        self._pos = end + 1
        self.last = line
        return line

    @property
    def size(self) -> int:
        return len(self._data)


@dataclass
class SymbolTable:
    """Interning table for name compression `(id) name` / `(id)`.

    Each namespace (objects, files, functions) has its own id space.
    """

    namespaces: dict[str, dict[int, str]] = field(default_factory=dict)

    def define(self, namespace: str, ident: int, name: str) -> str:
        self.namespaces.setdefault(namespace, {})[ident] = name
        return name

    def lookup(self, namespace: str, ident: int) -> str | None:
        return self.namespaces.get(namespace, {}).get(ident)

    def size(self, namespace: str) -> int:
        return len(self.namespaces.get(namespace, {}))


class ParseSession:
    """State of one parse: reader, symbol table and error helpers."""

    def __init__(self, data: bytes, source: str | None = None):
        self.source = source
        self.reader = LineReader(data)
        self.symbols = SymbolTable()

    # -- errors -----------------------------------------------------------------

    def error(self, message: str, line: Line | None = None) -> ParseError:
        line = line or self.reader.last
        return ParseError(
            message,
            source=self.source,
            line=line.number if line else None,
            offset=line.offset if line else None,
        )

    def truncated(self, message: str, line: Line | None = None) -> TruncatedArtifact:
        line = line or self.reader.last
        return TruncatedArtifact(
            message,
            source=self.source,
            line=line.number if line else None,
            offset=line.offset if line else self.reader.size,
        )

    def unsupported(self, message: str, line: Line | None = None) -> UnsupportedFormatVersion:
        line = line or self.reader.last
        return UnsupportedFormatVersion(
            message,
            source=self.source,
            line=line.number if line else None,
            offset=line.offset if line else None,
        )

    # -- helpers ------------------------------------------------------------------

    def resolve_name(self, namespace: str, raw: str, line: Line) -> str:
        """Decode a possibly compressed name, defining or looking it up."""
        raw = raw.strip()
        match = _COMPRESSED_RE.match(raw)
        if match is None:
            return raw
        ident = int(match.group("id"))
        name = match.group("name")
        if name is not None:
            return self.symbols.define(namespace, ident, name)
        resolved = self.symbols.lookup(namespace, ident)
        if resolved is None:
            raise self.error(f"reference to undefined {namespace} id ({ident})", line)
        return resolved

    def check_version(
        self,
        text: str,
        minimum: Version,
        maximum: Version,
        what: str,
        line: Line | None = None,
    ) -> Version:
        """Parse a dotted version and require minimum <= version < maximum."""
        version = parse_version(text)
        if version is None:
            raise self.error(f"could not read {what} version from '{text}'", line)
        if not (minimum <= version < maximum):
            raise self.unsupported(
                f"{what} version {format_version(version)} is outside the supported "
                f"range [{format_version(minimum)}, {format_version(maximum)})",
                line,
            )
        logger.debug(f"{self.source or '<memory>'}: {what} version {format_version(version)}")
        return version


def parse_version(text: str) -> Version | None:
    match = _VERSION_RE.search(text)
    if match is None:
        return None
    major, minor, patch = match.groups()
    return int(major), int(minor), int(patch or 0)


def format_version(version: Version) -> str:
    return ".".join(str(part) for part in version)


def parse_count(text: str) -> int:
    """Parse a decimal counter that may contain thousands separators."""
    return int(text.replace(",", ""))
