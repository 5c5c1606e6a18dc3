"""
Unit Tests for the Tool Output Parsers

Golden artifacts live in tests/fixtures; their expected values were worked
out by hand. Malformed inputs are built inline as bytes.
"""

from pathlib import Path

import pytest

from instrument_bench.core.errors import ParseError, TruncatedArtifact, UnsupportedFormatVersion
from instrument_bench.model import EventKind, NodeKey, ToolId
from instrument_bench.parsers import (
    CallgrindParser,
    DhatParser,
    LogfileParser,
    decode_frame,
    get_parser,
    parse_artifact,
)
from instrument_bench.parsers.base import parse_count, parse_version

FIXTURES = Path(__file__).parent / "fixtures"

MINIMAL_CALLGRIND = b"""# callgrind format
version: 1
events: Ir
fn=main
1 10
totals: 10
"""


# ---------------------------------------------------------------------------
# REGISTRY TESTS
# ---------------------------------------------------------------------------


class TestRegistry:
    """Test the closed parser registry."""

    def test_every_tool_has_a_parser(self):
        for tool in ToolId:
            assert get_parser(tool).tool == tool

    def test_missing_file_is_a_parse_error(self, tmp_path):
        with pytest.raises(ParseError, match="cannot read artifact"):
            parse_artifact(ToolId.CALLGRIND, tmp_path / "nope.out")

    def test_parse_from_bytes(self):
        model = parse_artifact("callgrind", MINIMAL_CALLGRIND)
        assert model.totals[EventKind.IR] == 10

    def test_logfile_parser_rejects_profilers(self):
        with pytest.raises(ValueError):
            LogfileParser(ToolId.CALLGRIND)


class TestBaseHelpers:
    def test_parse_version(self):
        assert parse_version("callgrind-3.21.0") == (3, 21, 0)
        assert parse_version("3.13") == (3, 13, 0)
        assert parse_version("none") is None

    def test_parse_count_strips_separators(self):
        assert parse_count("74,880") == 74880


# ---------------------------------------------------------------------------
# CALLGRIND TESTS
# ---------------------------------------------------------------------------


@pytest.fixture
def callgrind_model():
    return parse_artifact(ToolId.CALLGRIND, FIXTURES / "callgrind.out.sample")


class TestCallgrindParser:
    """Test the callgrind format parser against the golden artifact."""

    def test_totals(self, callgrind_model):
        totals = callgrind_model.totals
        assert totals[EventKind.IR] == 1000
        assert totals[EventKind.DR] == 300
        assert totals[EventKind.DLMW] == 1

    def test_derived_events_are_added(self, callgrind_model):
        assert callgrind_model.totals[EventKind.ESTIMATED_CYCLES] == 1850

    def test_metadata(self, callgrind_model):
        metadata = callgrind_model.metadata
        assert metadata["pid"] == "4242"
        assert metadata["cmd"] == "./bench_json --size large"
        assert metadata["creator"] == "callgrind-3.21.0"
        assert metadata["desc"].count(";") == 1

    def test_compressed_names_resolve_to_one_node(self, callgrind_model):
        graph = callgrind_model.graph
        assert len(graph) == 3
        parse = graph.node(graph.find(NodeKey("/usr/bin/bench_json", "parse")))
        assert parse.source == "parse.c"
        assert parse.self_cost[EventKind.IR] == 800

    def test_recursive_edge_is_not_double_counted(self, callgrind_model):
        graph = callgrind_model.graph
        main = graph.find(NodeKey("/usr/bin/bench_json", "main"))
        parse = graph.find(NodeKey("/usr/bin/bench_json", "parse"))

        assert graph.node(parse).edges[parse].is_cycle
        assert graph.node(parse).edges[parse].calls == 3
        assert graph.inclusive(parse)[EventKind.IR] == 800
        assert graph.roots() == [main]
        assert graph.inclusive(main)[EventKind.IR] == 1000

    def test_mutual_recursion_with_callee_block_first(self):
        data = (
            b"version: 1\nevents: Ir\n"
            b"fn=b\n1 10\ncfn=a\ncalls=1 1\n1 20\n"
            b"fn=a\n1 20\ncfn=b\ncalls=1 1\n1 10\n"
            b"fn=main\n1 30\ncfn=a\ncalls=1 1\n1 30\n"
            b"totals: 60\n"
        )
        graph = CallgrindParser().parse_bytes(data).graph
        index = {node.name: node.index for node in graph}

        assert graph.node(index["b"]).edges[index["a"]].is_cycle
        assert not graph.node(index["a"]).edges[index["b"]].is_cycle
        assert graph.roots() == [index["main"]]
        assert graph.root_inclusive()[EventKind.IR] == 60

    def test_call_edge_carries_inclusive_cost(self, callgrind_model):
        graph = callgrind_model.graph
        main = graph.find(NodeKey("/usr/bin/bench_json", "main"))
        emit = graph.find(NodeKey("/usr/bin/bench_json", "emit"))
        edge = graph.node(main).edges[emit]
        assert edge.calls == 2
        assert edge.inclusive[EventKind.IR] == 100

    def test_missing_trailing_values_are_zero(self):
        data = b"version: 1\nevents: Ir Dr\nfn=main\n1 10\ntotals: 10\n"
        model = CallgrindParser().parse_bytes(data)
        assert model.totals[EventKind.DR] == 0
        assert model.graph.node(0).self_cost[EventKind.DR] == 0

    def test_unknown_events_are_skipped(self):
        data = b"version: 1\nevents: Ir Foo\nfn=main\n1 10 99\ntotals: 10 99\n"
        model = CallgrindParser().parse_bytes(data)
        assert model.totals.to_dict() == {"Ir": 10}

    def test_unsupported_format_version(self):
        data = MINIMAL_CALLGRIND.replace(b"version: 1", b"version: 2")
        with pytest.raises(UnsupportedFormatVersion) as excinfo:
            CallgrindParser().parse_bytes(data, source="callgrind.out.1")
        assert excinfo.value.line == 2

    def test_creator_outside_supported_range(self):
        data = MINIMAL_CALLGRIND.replace(b"version: 1\n", b"version: 1\ncreator: callgrind-3.10.1\n")
        with pytest.raises(UnsupportedFormatVersion, match="3.10.1"):
            CallgrindParser().parse_bytes(data)

    def test_missing_final_newline_is_truncated(self):
        with pytest.raises(TruncatedArtifact):
            CallgrindParser().parse_bytes(MINIMAL_CALLGRIND.rstrip(b"\n"))

    def test_calls_without_cost_line_is_truncated(self):
        data = b"version: 1\nevents: Ir\nfn=main\ncfn=work\ncalls=1 2\n"
        with pytest.raises(TruncatedArtifact):
            CallgrindParser().parse_bytes(data)

    def test_no_totals_is_truncated(self):
        data = b"version: 1\nevents: Ir\nfn=main\n1 10\n"
        with pytest.raises(TruncatedArtifact):
            CallgrindParser().parse_bytes(data)

    def test_empty_artifact_is_truncated(self):
        with pytest.raises(TruncatedArtifact):
            CallgrindParser().parse_bytes(b"")

    def test_summary_totals_mismatch(self):
        data = b"version: 1\nevents: Ir\nsummary: 11\nfn=main\n1 10\ntotals: 10\n"
        with pytest.raises(ParseError, match="does not match"):
            CallgrindParser().parse_bytes(data)

    def test_too_many_cost_values_reports_position(self):
        data = b"version: 1\nevents: Ir\nfn=main\n1 10 20\ntotals: 10\n"
        with pytest.raises(ParseError) as excinfo:
            CallgrindParser().parse_bytes(data, source="callgrind.out.7")
        error = excinfo.value
        assert error.line == 4
        assert error.offset == len(b"version: 1\nevents: Ir\nfn=main\n")
        assert "callgrind.out.7" in str(error)

    def test_undefined_compressed_reference(self):
        data = b"version: 1\nevents: Ir\nfn=(3)\n1 10\ntotals: 10\n"
        with pytest.raises(ParseError, match="undefined function id"):
            CallgrindParser().parse_bytes(data)

    def test_parses_are_independent(self):
        parser = CallgrindParser()
        parser.parse_bytes(b"version: 1\nevents: Ir\nfn=(1) main\n1 10\ntotals: 10\n")
        with pytest.raises(ParseError):
            parser.parse_bytes(b"version: 1\nevents: Ir\nfn=(1)\n1 10\ntotals: 10\n")


# ---------------------------------------------------------------------------
# DHAT TESTS
# ---------------------------------------------------------------------------


@pytest.fixture
def dhat_model():
    return parse_artifact(ToolId.DHAT, FIXTURES / "dhat.out.sample")


def _dhat(pps, ftbl, version=2, mode="heap"):
    import json

    return json.dumps(
        {"dhatFileVersion": version, "mode": mode, "pps": pps, "ftbl": ftbl}
    ).encode()


class TestDhatParser:
    """Test the DHAT JSON parser."""

    def test_totals(self, dhat_model):
        totals = dhat_model.totals
        assert totals[EventKind.TOTAL_BYTES] == 1280
        assert totals[EventKind.TOTAL_BLOCKS] == 6
        assert totals[EventKind.AT_T_GMAX_BYTES] == 1152
        assert totals[EventKind.AT_T_END_BYTES] == 64
        assert totals[EventKind.WRITES_BYTES] == 1280

    def test_metadata(self, dhat_model):
        assert dhat_model.metadata["mode"] == "heap"
        assert dhat_model.metadata["pid"] == "5151"

    def test_paths_hang_off_root(self, dhat_model):
        graph = dhat_model.graph
        root = graph.find(NodeKey("[root]"))
        main = graph.find(NodeKey("", "main"))
        assert graph.roots() == [root]
        assert graph.inclusive(root)[EventKind.TOTAL_BYTES] == 1280
        assert graph.node(root).edges[main].inclusive[EventKind.TOTAL_BYTES] == 1280

    def test_leaf_takes_self_cost(self, dhat_model):
        graph = dhat_model.graph
        malloc = graph.find(
            NodeKey("/usr/libexec/valgrind/vgpreload_dhat-amd64-linux.so", "malloc")
        )
        assert graph.node(malloc).self_cost[EventKind.TOTAL_BYTES] == 1280

    def test_recursion_is_cut_back(self):
        # innermost first: a <- b <- a <- main
        data = _dhat(
            [{"tb": 100, "fs": [1, 2, 1, 3]}],
            ["[root]", "a (x.c:1)", "b (x.c:2)", "main (x.c:3)"],
        )
        model = DhatParser().parse_bytes(data)
        graph = model.graph
        a = graph.find(NodeKey("", "a"))
        b = graph.find(NodeKey("", "b"))

        assert graph.node(b).edges[a].is_cycle
        assert graph.node(a).self_cost[EventKind.TOTAL_BYTES] == 100
        assert graph.inclusive(a)[EventKind.TOTAL_BYTES] == 100
        assert graph.root_inclusive()[EventKind.TOTAL_BYTES] == 100

    def test_unsupported_version(self):
        with pytest.raises(UnsupportedFormatVersion):
            DhatParser().parse_bytes(_dhat([], ["[root]"], version=1))

    def test_unknown_mode(self):
        with pytest.raises(ParseError, match="mode"):
            DhatParser().parse_bytes(_dhat([], ["[root]"], mode="stack"))

    def test_cut_off_document_is_truncated(self):
        # drop the closing brace
        data = (FIXTURES / "dhat.out.sample").read_bytes().rstrip()[:-1]
        with pytest.raises(TruncatedArtifact):
            DhatParser().parse_bytes(data)

    def test_syntax_error_in_the_middle_is_a_parse_error(self):
        data = b'{"dhatFileVersion": 2,, "mode": "heap"}'
        with pytest.raises(ParseError) as excinfo:
            DhatParser().parse_bytes(data)
        assert not isinstance(excinfo.value, TruncatedArtifact)
        assert excinfo.value.offset == 22

    def test_frame_index_outside_table(self):
        with pytest.raises(ParseError, match="outside ftbl"):
            DhatParser().parse_bytes(_dhat([{"tb": 1, "fs": [5]}], ["[root]"]))


class TestDecodeFrame:
    def test_object_frame(self):
        key, file, line = decode_frame("0x4C2DB8F: malloc (in /lib/libc.so.6)")
        assert key == NodeKey("/lib/libc.so.6", "malloc")
        assert file is None and line is None

    def test_source_frame(self):
        key, file, line = decode_frame("0x10915E: build_table (bench.c:12)")
        assert key == NodeKey("", "build_table")
        assert (file, line) == ("bench.c", 12)

    def test_unknown_function(self):
        key, _, _ = decode_frame("0x10915E: ??? (in /usr/bin/bench)")
        assert key.function is None
        assert key.frame == "/usr/bin/bench"


# ---------------------------------------------------------------------------
# LOGFILE TESTS
# ---------------------------------------------------------------------------


HELGRIND_LOG = b"""==77== Helgrind, a thread error detector
==77== Using Valgrind-3.22.0 and LibVEX; rerun with -h for copyright info
==77== Command: ./bench_threads
==77==
==77== Possible data race during write of size 4 at 0x10C014 by thread #2
==77==
==77== ERROR SUMMARY: 1 errors from 1 contexts (suppressed: 12 from 4)
"""


class TestLogfileParser:
    """Test the memcheck / helgrind / drd log parser."""

    def test_memcheck_golden_log(self):
        model = parse_artifact(ToolId.MEMCHECK, FIXTURES / "memcheck.log.sample")
        assert model.graph is None
        assert model.totals.to_dict() == {
            "Errors": 3,
            "Contexts": 2,
            "SuppressedErrors": 0,
            "SuppressedContexts": 0,
            "DefinitelyLost": 1024,
            "IndirectlyLost": 0,
            "PossiblyLost": 0,
            "StillReachable": 128,
        }

    def test_memcheck_metadata(self):
        model = parse_artifact(ToolId.MEMCHECK, FIXTURES / "memcheck.log.sample")
        assert model.metadata["command"] == "./bench_leak --iterations 10"
        assert model.metadata["pid"] == "4242"
        assert model.metadata["valgrind"] == "3.21.0"
        assert model.metadata["parent_pid"] == "4241"

    def test_helgrind_suppressed_counts(self):
        model = LogfileParser(ToolId.HELGRIND).parse_bytes(HELGRIND_LOG)
        assert model.totals[EventKind.ERRORS] == 1
        assert model.totals[EventKind.SUPPRESSED_ERRORS] == 12
        assert model.totals[EventKind.SUPPRESSED_CONTEXTS] == 4
        assert EventKind.DEFINITELY_LOST not in model.totals

    def test_summary_keeps_body(self):
        summary = LogfileParser(ToolId.HELGRIND).summarize(HELGRIND_LOG)
        assert summary.pid == 77
        assert summary.body[0].startswith("Possible data race")

    def test_last_error_summary_wins(self):
        data = HELGRIND_LOG + b"==77== ERROR SUMMARY: 4 errors from 2 contexts\n"
        model = LogfileParser(ToolId.DRD).parse_bytes(data)
        assert model.totals[EventKind.ERRORS] == 4
        assert model.totals[EventKind.SUPPRESSED_ERRORS] == 0

    def test_no_leaks_sets_leak_kinds_to_zero(self):
        data = HELGRIND_LOG.replace(
            b"==77== ERROR SUMMARY",
            b"==77== All heap blocks were freed -- no leaks are possible\n==77== ERROR SUMMARY",
        )
        model = LogfileParser(ToolId.MEMCHECK).parse_bytes(data)
        assert model.totals[EventKind.DEFINITELY_LOST] == 0
        assert model.totals[EventKind.STILL_REACHABLE] == 0

    def test_log_without_error_summary_is_truncated(self):
        data = HELGRIND_LOG.rsplit(b"==77== ERROR", 1)[0]
        with pytest.raises(TruncatedArtifact):
            LogfileParser(ToolId.HELGRIND).parse_bytes(data)

    def test_unsupported_valgrind_version(self):
        data = HELGRIND_LOG.replace(b"Valgrind-3.22.0", b"Valgrind-3.8.1")
        with pytest.raises(UnsupportedFormatVersion):
            LogfileParser(ToolId.HELGRIND).parse_bytes(data)

    def test_not_a_valgrind_log(self):
        with pytest.raises(ParseError, match="PID"):
            LogfileParser(ToolId.MEMCHECK).parse_bytes(b"hello world\n")
