"""
Orchestrator module - runs targets under valgrind.

- tools.py: per-tool arguments, output file naming, preserved environment
- workspace.py: scoped artifact directory
- runner.py: command building, process lifecycle, artifact collection
"""

from instrument_bench.orchestrator.tools import (
    TOOLS,
    ValgrindTool,
    tool_spec,
)
from instrument_bench.orchestrator.workspace import ArtifactWorkspace
from instrument_bench.orchestrator.runner import (
    ExitWith,
    ToolInvocation,
    ToolRun,
    build_command,
    build_env,
    resolve_tool_binary,
    run_tool,
    terminate_all,
)

__all__ = [
    # Tools
    "TOOLS",
    "ValgrindTool",
    "tool_spec",
    # Workspace
    "ArtifactWorkspace",
    # Runner
    "ExitWith",
    "ToolInvocation",
    "ToolRun",
    "build_command",
    "build_env",
    "resolve_tool_binary",
    "run_tool",
    "terminate_all",
]
