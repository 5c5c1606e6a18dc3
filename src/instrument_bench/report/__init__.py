"""
Report module - human and machine readable output.

- table.py: per-benchmark comparison table
- folded.py: folded stacks for flamegraph renderers
- summary.py: aggregate batch summary
"""

from instrument_bench.report.table import format_delta, render_table
from instrument_bench.report.folded import folded_stacks, frame_name, write_folded
from instrument_bench.report.summary import render_batch_summary

__all__ = [
    "format_delta",
    "render_table",
    "folded_stacks",
    "frame_name",
    "write_folded",
    "render_batch_summary",
]
