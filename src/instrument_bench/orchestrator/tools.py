"""
Per-tool command line behaviour.

Each supported tool knows its `--tool=` id, its fixed default arguments,
how to redirect its output file and which environment variables survive
`env_clear`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from instrument_bench.model import ToolId

# Variables kept when the caller clears the environment.
PRESERVED_ENV = ("LD_PRELOAD", "LD_LIBRARY_PATH")
# memcheck needs these to symbolize and to find debuginfo
MEMCHECK_PRESERVED_ENV = ("PATH", "HOME", "DEBUGINFOD_URLS")

_PID_RE = re.compile(r"\.(\d+)")


@dataclass(frozen=True)
class ValgrindTool:
    """Command line facts about one tool."""

    id: ToolId
    default_args: tuple[str, ...] = ()
    output_flag: str | None = None
    output_prefix: str | None = None
    preserved_env: tuple[str, ...] = PRESERVED_ENV

    @property
    def has_output_file(self) -> bool:
        return self.output_flag is not None

    @property
    def log_prefix(self) -> str:
        return f"{self.id.value}.log"

    def output_args(self, directory: Path) -> list[str]:
        """Flags that send every per-process file into `directory`."""
        args = [f"--log-file={directory / self.log_prefix}.%p"]
        if self.output_flag is not None:
            args.append(f"{self.output_flag}={directory / self.output_prefix}.%p")
        return args

    def artifacts(self, directory: Path) -> list[Path]:
        """Output files in `directory`, ordered by pid then name."""
        if self.output_prefix is None:
            return []
        return _ordered(directory.glob(f"{self.output_prefix}.*"))

    def logs(self, directory: Path) -> list[Path]:
        return _ordered(directory.glob(f"{self.log_prefix}.*"))


def _ordered(paths) -> list[Path]:
    def key(path: Path) -> tuple[int, str]:
        match = _PID_RE.search(path.name)
        return (int(match.group(1)) if match else -1, path.name)

    return sorted((path for path in paths if path.is_file()), key=key)


TOOLS: dict[ToolId, ValgrindTool] = {
    ToolId.CALLGRIND: ValgrindTool(
        id=ToolId.CALLGRIND,
        # fixed cache geometry so results do not depend on the host cpu
        default_args=(
            "--I1=32768,8,64",
            "--D1=32768,8,64",
            "--LL=8388608,16,64",
            "--cache-sim=yes",
            "--compress-strings=no",
            "--compress-pos=no",
        ),
        output_flag="--callgrind-out-file",
        output_prefix="callgrind.out",
    ),
    ToolId.DHAT: ValgrindTool(
        id=ToolId.DHAT,
        output_flag="--dhat-out-file",
        output_prefix="dhat.out",
    ),
    ToolId.MEMCHECK: ValgrindTool(
        id=ToolId.MEMCHECK,
        default_args=("--leak-check=full",),
        preserved_env=PRESERVED_ENV + MEMCHECK_PRESERVED_ENV,
    ),
    ToolId.HELGRIND: ValgrindTool(id=ToolId.HELGRIND),
    ToolId.DRD: ValgrindTool(id=ToolId.DRD),
}


def tool_spec(tool: ToolId | str) -> ValgrindTool:
    return TOOLS[ToolId(tool)]
