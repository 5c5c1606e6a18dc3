"""
Parsers module - one parser per external tool, all producing a CostModel.

ARCHITECTURE:
-------------
- base.py: LineReader, SymbolTable, ParseSession (one per parse)
- callgrind.py: callgrind.out format with full call graph
- dhat.py: DHAT JSON with allocation-site graph
- logfile.py: memcheck / helgrind / drd logs (aggregates only)

The registry is closed: supporting a new tool means one ToolId member and
one parser class registered here.
"""

from __future__ import annotations

import logging
from pathlib import Path

from instrument_bench.core.errors import ParseError
from instrument_bench.core.protocols import ToolParser
from instrument_bench.model import CostModel, ToolId
from instrument_bench.parsers.base import LineReader, ParseSession, SymbolTable
from instrument_bench.parsers.callgrind import CallgrindParser
from instrument_bench.parsers.dhat import DhatParser, decode_frame
from instrument_bench.parsers.logfile import LogfileParser, LogfileSummary

logger = logging.getLogger(__name__)

PARSERS: dict[ToolId, ToolParser] = {
    ToolId.CALLGRIND: CallgrindParser(),
    ToolId.DHAT: DhatParser(),
    ToolId.MEMCHECK: LogfileParser(ToolId.MEMCHECK),
    ToolId.HELGRIND: LogfileParser(ToolId.HELGRIND),
    ToolId.DRD: LogfileParser(ToolId.DRD),
}


def get_parser(tool: ToolId | str) -> ToolParser:
    """Parser registered for `tool`."""
    return PARSERS[ToolId(tool)]


def parse_artifact(tool: ToolId | str, artifact: Path | str | bytes) -> CostModel:
    """
    Parse one artifact of `tool` from a path or from raw bytes.

    Raises:
        ParseError: the artifact does not match the format
        TruncatedArtifact: the artifact ends early (retryable)
        UnsupportedFormatVersion: the declared version is out of range
    """
    parser = get_parser(tool)
    if isinstance(artifact, bytes):
        return parser.parse_bytes(artifact)

    data, source = _read(artifact)
    logger.debug(f"Parsing {parser.tool} artifact {source} ({len(data)} bytes)")
    return parser.parse_bytes(data, source=source)


def summarize_log(tool: ToolId | str, artifact: Path | str) -> LogfileSummary:
    """
    Read one log of an error-detecting tool, keeping the report body.

    Raises the same errors as parse_artifact; ValueError for profilers.
    """
    parser = LogfileParser(ToolId(tool))
    data, source = _read(artifact)
    return parser.summarize(data, source=source)


def _read(artifact: Path | str) -> tuple[bytes, str]:
    path = Path(artifact)
    try:
        return path.read_bytes(), str(path)
    except OSError as e:
        raise ParseError(f"cannot read artifact: {e.strerror}", source=str(path)) from e


__all__ = [
    "PARSERS",
    "get_parser",
    "parse_artifact",
    "summarize_log",
    # Machinery
    "LineReader",
    "ParseSession",
    "SymbolTable",
    # Parsers
    "CallgrindParser",
    "DhatParser",
    "LogfileParser",
    "LogfileSummary",
    "decode_frame",
]
