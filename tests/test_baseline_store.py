"""
Unit Tests for the Baseline Store

Tests benchmark identity, the on-disk schema and both store
implementations. File store tests use pytest's tmp_path.
"""

import json
import os
import threading
from unittest.mock import patch

import pytest

from instrument_bench.baseline import (
    BenchmarkId,
    FileBaselineStore,
    InMemoryBaselineStore,
    deserialize_document,
    get_baseline_store,
    sanitize_segment,
    serialize_model,
)
from instrument_bench.core.errors import (
    BaselineWriteConflict,
    ConfigurationError,
    ParseError,
    UnsupportedFormatVersion,
)
from instrument_bench.core.protocols import BaselineStore
from instrument_bench.model import CallGraph, CostModel, Costs, EventKind, NodeKey, ToolId


# ---------------------------------------------------------------------------
# FIXTURES
# ---------------------------------------------------------------------------


@pytest.fixture
def benchmark():
    return BenchmarkId("parsers", "bench_json", "large")


@pytest.fixture
def graph_model():
    """main -> work with a recursive work -> work edge."""
    graph = CallGraph()
    main = graph.intern(NodeKey("/bin/bench", "main"), source="bench.c")
    work = graph.intern(NodeKey("/bin/bench", "work"))
    graph.add_self_cost(main, Costs({EventKind.IR: 100, EventKind.DR: 10}))
    graph.add_self_cost(work, Costs({EventKind.IR: 900, EventKind.DR: 90}))
    graph.add_edge(main, work, Costs({EventKind.IR: 900, EventKind.DR: 90}), calls=2)
    graph.add_edge(work, work, Costs({EventKind.IR: 400, EventKind.DR: 40}), calls=7)
    graph.mark_cycles()
    return CostModel(
        tool=ToolId.CALLGRIND,
        totals=Costs({EventKind.IR: 1000, EventKind.DR: 100}),
        graph=graph,
        metadata={"pid": "42", "cmd": "./bench"},
    )


@pytest.fixture
def file_store(tmp_path):
    return FileBaselineStore(tmp_path / "baselines")


# ---------------------------------------------------------------------------
# IDENTITY TESTS
# ---------------------------------------------------------------------------


class TestBenchmarkId:
    """Test keys and path sanitizing."""

    def test_key(self, benchmark):
        assert benchmark.key == "parsers::bench_json[large]"
        assert str(BenchmarkId("g", "c")) == "g::c"

    def test_parse_round_trip(self, benchmark):
        assert BenchmarkId.parse(benchmark.key) == benchmark
        assert BenchmarkId.parse("g::c") == BenchmarkId("g", "c")

    def test_parse_requires_separator(self):
        with pytest.raises(ValueError):
            BenchmarkId.parse("no-separator")

    def test_empty_parts_rejected(self):
        with pytest.raises(ValueError):
            BenchmarkId("", "case")

    def test_safe_segment_unchanged(self):
        assert sanitize_segment("bench_json.large") == "bench_json.large"

    def test_unsafe_segment_gets_hash_suffix(self):
        first = sanitize_segment("a/b")
        second = sanitize_segment("a:b")
        assert first.startswith("a_b-")
        assert first != second

    def test_no_hidden_or_traversal_segments(self):
        assert not sanitize_segment("..").startswith(".")
        assert "/" not in sanitize_segment("../../etc")

    def test_long_segment_is_capped(self):
        assert len(sanitize_segment("x" * 500)) <= 64 + 9


# ---------------------------------------------------------------------------
# SCHEMA TESTS
# ---------------------------------------------------------------------------


class TestSerialization:
    """Test canonical serialization and schema validation."""

    def test_serialization_is_deterministic(self, graph_model):
        assert serialize_model(graph_model) == serialize_model(graph_model)

    def test_kinds_are_written_in_canonical_order(self):
        model = CostModel(ToolId.CALLGRIND, Costs([(EventKind.DR, 1), (EventKind.IR, 2)]))
        text = serialize_model(model).decode()
        assert text.index('"Ir"') < text.index('"Dr"')

    def test_insertion_order_does_not_change_bytes(self):
        first = CostModel(ToolId.CALLGRIND, Costs([(EventKind.DR, 1), (EventKind.IR, 2)]),
                          metadata={"b": "2", "a": "1"})
        second = CostModel(ToolId.CALLGRIND, Costs([(EventKind.IR, 2), (EventKind.DR, 1)]),
                           metadata={"a": "1", "b": "2"})
        assert serialize_model(first) == serialize_model(second)

    def test_unknown_schema_version(self):
        data = json.dumps({"schema_version": 2}).encode()
        with pytest.raises(UnsupportedFormatVersion):
            deserialize_document(data, source="x.json")

    def test_invalid_json(self):
        with pytest.raises(ParseError, match="not valid JSON"):
            deserialize_document(b"{nope", source="x.json")


# ---------------------------------------------------------------------------
# FILE STORE TESTS
# ---------------------------------------------------------------------------


class TestFileBaselineStore:
    """Test the production store against a temporary directory."""

    def test_implements_protocol(self, file_store):
        assert isinstance(file_store, BaselineStore)

    def test_missing_baseline_is_none(self, file_store, benchmark):
        assert file_store.load(benchmark, "current") is None

    def test_layout(self, file_store, benchmark):
        path = file_store.path_for(benchmark, "current")
        assert path == file_store.root / "parsers" / "bench_json.large" / "current.json"

    def test_save_then_load_restores_model(self, file_store, benchmark, graph_model):
        file_store.save(benchmark, "current", graph_model, command="valgrind ./bench")
        loaded = file_store.load(benchmark, "current")

        assert loaded.slot == "current"
        assert loaded.provenance.command == "valgrind ./bench"
        assert loaded.provenance.tool == ToolId.CALLGRIND
        assert loaded.model.totals == graph_model.totals
        assert serialize_model(loaded.model) == serialize_model(graph_model)

    def test_loaded_cycle_flags_survive(self, file_store, benchmark, graph_model):
        file_store.save(benchmark, "current", graph_model)
        graph = file_store.load(benchmark, "current").model.graph
        work = graph.find(NodeKey("/bin/bench", "work"))
        assert graph.node(work).edges[work].is_cycle
        assert graph.inclusive(work)[EventKind.IR] == 900

    def test_loaded_model_is_a_snapshot(self, file_store, benchmark, graph_model):
        file_store.save(benchmark, "current", graph_model)
        first = file_store.load(benchmark, "current")
        first.model.totals.accumulate(EventKind.IR, 5)
        assert file_store.load(benchmark, "current").model.totals[EventKind.IR] == 1000

    def test_second_write_in_session_conflicts(self, file_store, benchmark, graph_model):
        file_store.save(benchmark, "current", graph_model)
        with pytest.raises(BaselineWriteConflict):
            file_store.save(benchmark, "current", graph_model)

    def test_other_slot_is_independent(self, file_store, benchmark, graph_model):
        file_store.save(benchmark, "current", graph_model)
        file_store.save(benchmark, "main", graph_model)
        assert file_store.load(benchmark, "main") is not None

    def test_new_session_overwrites(self, tmp_path, benchmark, graph_model):
        FileBaselineStore(tmp_path).save(benchmark, "current", graph_model)
        smaller = CostModel(ToolId.CALLGRIND, Costs({EventKind.IR: 1}))
        FileBaselineStore(tmp_path).save(benchmark, "current", smaller)
        loaded = FileBaselineStore(tmp_path).load(benchmark, "current")
        assert loaded.model.totals[EventKind.IR] == 1

    def test_held_lock_file_conflicts(self, file_store, benchmark, graph_model):
        path = file_store.path_for(benchmark, "current")
        path.parent.mkdir(parents=True)
        path.with_name("current.json.lock").write_text(str(os.getpid()))
        with pytest.raises(BaselineWriteConflict):
            file_store.save(benchmark, "current", graph_model)

    def test_stale_lock_from_dead_writer_is_reclaimed(self, file_store, benchmark, graph_model):
        path = file_store.path_for(benchmark, "current")
        path.parent.mkdir(parents=True)
        lock = path.with_name("current.json.lock")
        lock.write_text("999999")
        with patch("instrument_bench.baseline.store.os.kill", side_effect=ProcessLookupError) as kill:
            file_store.save(benchmark, "current", graph_model)
        kill.assert_called_once_with(999999, 0)
        assert path.exists()
        assert not lock.exists()

    def test_half_written_lock_still_conflicts(self, file_store, benchmark, graph_model):
        path = file_store.path_for(benchmark, "current")
        path.parent.mkdir(parents=True)
        path.with_name("current.json.lock").write_text("")
        with pytest.raises(BaselineWriteConflict):
            file_store.save(benchmark, "current", graph_model)

    def test_no_temporary_files_left(self, file_store, benchmark, graph_model):
        file_store.save(benchmark, "current", graph_model)
        directory = file_store.path_for(benchmark, "current").parent
        assert sorted(os.listdir(directory)) == ["current.json"]

    def test_corrupt_baseline_is_a_parse_error(self, file_store, benchmark):
        path = file_store.path_for(benchmark, "current")
        path.parent.mkdir(parents=True)
        path.write_text('{"schema_version": 1, "benchmark": "x"}')
        with pytest.raises(ParseError, match="schema violation"):
            file_store.load(benchmark, "current")

    def test_negative_count_rejected(self, file_store, benchmark, graph_model):
        file_store.save(benchmark, "current", graph_model)
        path = file_store.path_for(benchmark, "current")
        document = json.loads(path.read_text())
        document["model"]["totals"]["Ir"] = -5
        path.write_text(json.dumps(document))
        with pytest.raises(ParseError, match="model.totals"):
            file_store.load(benchmark, "current")

    def test_invalid_slot(self, file_store, benchmark):
        with pytest.raises(ConfigurationError):
            file_store.path_for(benchmark, "../escape")


# ---------------------------------------------------------------------------
# IN-MEMORY STORE TESTS
# ---------------------------------------------------------------------------


class TestInMemoryBaselineStore:
    """Test the in-memory double used by harness tests."""

    def test_seed_and_load(self, benchmark, graph_model):
        store = InMemoryBaselineStore()
        store.seed(benchmark, "current", graph_model)
        assert store.load(benchmark, "current").model.totals == graph_model.totals
        assert store.saved_keys == []

    def test_conflict_semantics_match_file_store(self, benchmark, graph_model):
        store = InMemoryBaselineStore()
        store.save(benchmark, "current", graph_model)
        with pytest.raises(BaselineWriteConflict):
            store.save(benchmark, "current", graph_model)

    def test_concurrent_writers_only_one_wins(self, benchmark, graph_model):
        store = InMemoryBaselineStore()
        errors = []

        def write():
            try:
                store.save(benchmark, "current", graph_model)
            except BaselineWriteConflict as e:
                errors.append(e)

        threads = [threading.Thread(target=write) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(errors) == 3
        assert store.saved_keys == [(benchmark.key, "current")]


class TestFactory:
    def test_factory(self, tmp_path):
        assert isinstance(get_baseline_store(use_file=False), InMemoryBaselineStore)
        store = get_baseline_store(use_file=True, root=tmp_path)
        assert isinstance(store, FileBaselineStore)
        assert store.root == tmp_path
