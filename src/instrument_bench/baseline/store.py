"""
Baseline storage - Protocol and implementations for storing cost baselines.

Following the gold standard pattern:
1. Protocol defines the interface (core.protocols.BaselineStore)
2. FileBaselineStore for production (persistent)
3. InMemoryBaselineStore for testing (fast, no I/O)
4. Factory function for convenience

A store hands out frozen snapshots: the CostModel in a loaded Baseline is
rebuilt from the serialized document, so mutating it never affects what
is stored.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from instrument_bench.baseline.identity import BenchmarkId
from instrument_bench.baseline.schema import (
    BaselineDocument,
    ProvenanceDocument,
    deserialize_document,
    document_to_model,
    model_to_document,
    serialize_document,
)
from instrument_bench.core.errors import BaselineWriteConflict, ConfigurationError
from instrument_bench.core.protocols import BaselineStore
from instrument_bench.model import CostModel, ToolId

logger = logging.getLogger(__name__)

DEFAULT_BASELINE_ROOT = Path("target") / "instrument-bench"
CURRENT_SLOT = "current"

_SLOT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


# ---------------------------------------------------------------------------
# BASELINE DATA MODEL
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Provenance:
    """Where a baseline came from."""

    command: str
    timestamp: datetime
    tool: ToolId


@dataclass(frozen=True)
class Baseline:
    """Stored cost model of a previous run.

    Deviations of a new run beyond the regression rules' thresholds
    trigger regression failures.
    """

    benchmark: BenchmarkId
    slot: str
    model: CostModel
    provenance: Provenance


def validate_slot(slot: str) -> str:
    """Slot names become file names, so only a safe alphabet is allowed."""
    if not _SLOT_RE.match(slot):
        raise ConfigurationError(
            f"Invalid baseline slot '{slot}': use letters, digits, '.', '_' and '-'"
        )
    return slot


def _document(benchmark: BenchmarkId, slot: str, model: CostModel, command: str) -> BaselineDocument:
    return BaselineDocument(
        benchmark=benchmark.key,
        slot=slot,
        provenance=ProvenanceDocument(
            command=command,
            timestamp=datetime.now(timezone.utc),
            tool=model.tool,
        ),
        model=model_to_document(model),
    )


def _baseline(benchmark: BenchmarkId, document: BaselineDocument) -> Baseline:
    return Baseline(
        benchmark=benchmark,
        slot=document.slot,
        model=document_to_model(document.model),
        provenance=Provenance(
            command=document.provenance.command,
            timestamp=document.provenance.timestamp,
            tool=document.provenance.tool,
        ),
    )


# ---------------------------------------------------------------------------
# FILE-BASED IMPLEMENTATION (Production)
# ---------------------------------------------------------------------------


class FileBaselineStore:
    """Production baseline store: one JSON file per (benchmark, slot).

    Layout: `<root>/<group>/<case>/<slot>.json`. Writes go to a temporary
    file that atomically replaces the target, so readers never see a
    partial baseline. Across sessions the last write wins; within one
    session (one store instance) each key may be written once.
    """

    def __init__(self, root: Path | str | None = None):
        self._root = Path(root) if root is not None else DEFAULT_BASELINE_ROOT
        self._written: set[tuple[str, str]] = set()
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        """Get the baseline root directory."""
        return self._root

    def path_for(self, benchmark: BenchmarkId, slot: str) -> Path:
        group, case = benchmark.path_segments()
        return self._root / group / case / f"{validate_slot(slot)}.json"

    def load(self, benchmark: BenchmarkId, slot: str) -> Baseline | None:
        """Load a baseline, returns None if none was ever saved.

        Raises:
            ParseError: the stored file is corrupt or violates the schema
        """
        path = self.path_for(benchmark, slot)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            logger.debug(f"No '{slot}' baseline for {benchmark.key} at {path}")
            return None
        document = deserialize_document(data, source=str(path))
        if document.benchmark != benchmark.key:
            logger.warning(
                f"{path} was written for '{document.benchmark}', loading it for "
                f"'{benchmark.key}' (sanitized names collide?)"
            )
        return _baseline(benchmark, document)

    def save(
        self,
        benchmark: BenchmarkId,
        slot: str,
        model: CostModel,
        command: str = "",
    ) -> Baseline:
        """Persist `model` under (benchmark, slot), replacing prior content.

        Raises:
            BaselineWriteConflict: the key was already written by this store,
                or another writer holds its lock file
        """
        path = self.path_for(benchmark, slot)
        key = (benchmark.key, slot)
        with self._lock:
            if key in self._written:
                raise BaselineWriteConflict(benchmark.key, slot)
            self._written.add(key)

        path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = path.with_name(path.name + ".lock")
        lock_fd = _acquire_lock(lock_path)
        if lock_fd is None:
            raise BaselineWriteConflict(benchmark.key, slot)

        try:
            os.write(lock_fd, str(os.getpid()).encode("ascii"))
            document = _document(benchmark, slot, model, command)
            self._atomic_write(path, serialize_document(document))
        finally:
            os.close(lock_fd)
            lock_path.unlink(missing_ok=True)

        logger.info(f"Saved '{slot}' baseline for {benchmark.key} to {path}")
        return _baseline(benchmark, document)

    def _atomic_write(self, path: Path, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def _lock_holder_alive(lock_path: Path) -> bool:
    """False only when the lock names a pid that no longer exists."""
    try:
        pid = int(lock_path.read_text(encoding="ascii").strip())
    except FileNotFoundError:
        return False
    except (OSError, ValueError):
        # empty while the writer has yet to record its pid
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        pass
    return True


def _acquire_lock(lock_path: Path) -> int | None:
    """Create the lock file, reclaiming it once if its writer died."""
    for _ in range(2):
        try:
            return os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            if _lock_holder_alive(lock_path):
                return None
            logger.warning(f"Removing stale lock {lock_path}")
            lock_path.unlink(missing_ok=True)
    return None


# ---------------------------------------------------------------------------
# IN-MEMORY IMPLEMENTATION (Testing)
# ---------------------------------------------------------------------------


class InMemoryBaselineStore:
    """Test baseline store - no file I/O.

    Stores serialized documents so loaded baselines are independent
    snapshots, exactly like the file store.
    """

    def __init__(self) -> None:
        self._documents: dict[tuple[str, str], bytes] = {}
        self._written: set[tuple[str, str]] = set()
        self._lock = threading.Lock()

    @property
    def saved_keys(self) -> list[tuple[str, str]]:
        """(benchmark key, slot) pairs written so far (for test assertions)."""
        return sorted(self._written)

    def seed(self, benchmark: BenchmarkId, slot: str, model: CostModel, command: str = "") -> None:
        """Pre-populate a baseline without counting as a session write."""
        document = _document(benchmark, validate_slot(slot), model, command)
        self._documents[(benchmark.key, slot)] = serialize_document(document)

    def load(self, benchmark: BenchmarkId, slot: str) -> Baseline | None:
        """Return the stored baseline."""
        data = self._documents.get((benchmark.key, validate_slot(slot)))
        if data is None:
            return None
        return _baseline(benchmark, deserialize_document(data, source="<memory>"))

    def save(
        self,
        benchmark: BenchmarkId,
        slot: str,
        model: CostModel,
        command: str = "",
    ) -> Baseline:
        """Store the baseline in memory."""
        key = (benchmark.key, validate_slot(slot))
        with self._lock:
            if key in self._written:
                raise BaselineWriteConflict(benchmark.key, slot)
            self._written.add(key)
            document = _document(benchmark, slot, model, command)
            self._documents[key] = serialize_document(document)
        return _baseline(benchmark, document)


# ---------------------------------------------------------------------------
# FACTORY FUNCTION
# ---------------------------------------------------------------------------


def get_baseline_store(
    use_file: bool = True,
    root: Path | str | None = None,
) -> BaselineStore:
    """
    Factory function for baseline stores.

    Args:
        use_file: If True, use FileBaselineStore. If False, use InMemoryBaselineStore.
        root: Baseline root directory for FileBaselineStore.

    Returns:
        BaselineStore implementation.

    Example:
        # Production
        store = get_baseline_store(root=config.home)

        # Testing
        store = get_baseline_store(use_file=False)
    """
    if use_file:
        return FileBaselineStore(root)
    else:
        return InMemoryBaselineStore()
