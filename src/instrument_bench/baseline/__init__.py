"""
Baseline module - persisted cost models keyed by benchmark and slot.

- identity.py: BenchmarkId and path sanitizing
- schema.py: pydantic on-disk format + canonical serialization
- store.py: FileBaselineStore, InMemoryBaselineStore, factory
"""

from instrument_bench.baseline.identity import (
    BenchmarkId,
    sanitize_segment,
)
from instrument_bench.baseline.schema import (
    SCHEMA_VERSION,
    BaselineDocument,
    ModelDocument,
    deserialize_document,
    document_to_model,
    model_to_document,
    serialize_model,
)
from instrument_bench.baseline.store import (
    CURRENT_SLOT,
    DEFAULT_BASELINE_ROOT,
    Baseline,
    Provenance,
    FileBaselineStore,
    InMemoryBaselineStore,
    get_baseline_store,
    validate_slot,
)

__all__ = [
    # Identity
    "BenchmarkId",
    "sanitize_segment",
    # Schema
    "SCHEMA_VERSION",
    "BaselineDocument",
    "ModelDocument",
    "deserialize_document",
    "document_to_model",
    "model_to_document",
    "serialize_model",
    # Store
    "CURRENT_SLOT",
    "DEFAULT_BASELINE_ROOT",
    "Baseline",
    "Provenance",
    "FileBaselineStore",
    "InMemoryBaselineStore",
    "get_baseline_store",
    "validate_slot",
]
