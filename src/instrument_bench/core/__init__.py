"""
Core module - shared protocols and the error taxonomy.

USAGE:
------
from instrument_bench.core import ToolParser, BaselineStore, ParseError
"""

from instrument_bench.core.errors import (
    InstrumentBenchError,
    ConfigurationError,
    ToolNotFound,
    TargetSpawnFailed,
    ToolFatalError,
    ParseError,
    TruncatedArtifact,
    UnsupportedFormatVersion,
    BaselineWriteConflict,
    ToolMismatchError,
)
from instrument_bench.core.protocols import (
    ToolParser,
    BaselineStore,
)

__all__ = [
    # Errors
    "InstrumentBenchError",
    "ConfigurationError",
    "ToolNotFound",
    "TargetSpawnFailed",
    "ToolFatalError",
    "ParseError",
    "TruncatedArtifact",
    "UnsupportedFormatVersion",
    "BaselineWriteConflict",
    "ToolMismatchError",
    # Protocols
    "ToolParser",
    "BaselineStore",
]
