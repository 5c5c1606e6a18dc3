"""
Process orchestrator - runs a target under valgrind and collects its output.

The orchestrator:
1. Resolves the valgrind binary (missing binary halts the whole batch)
2. Builds the command line: [setarch ARCH -R] valgrind --tool=T ... target args
3. Spawns it in its own process group and waits, with an optional timeout
4. On timeout or Ctrl-C terminates the whole group (SIGTERM, then SIGKILL)
5. Enumerates artifacts only after the process has exited

A target that exits unexpectedly is NOT an error here: its artifacts are
still returned and the run is flagged `target_failed`.
"""

from __future__ import annotations

import logging
import os
import platform
import shlex
import shutil
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path

from instrument_bench.config import HarnessConfig
from instrument_bench.core.errors import (
    ConfigurationError,
    TargetSpawnFailed,
    ToolFatalError,
    ToolNotFound,
)
from instrument_bench.model import ToolId
from instrument_bench.observability import get_tracer, tool_run_attributes
from instrument_bench.orchestrator.tools import tool_spec
from instrument_bench.orchestrator.workspace import ArtifactWorkspace

logger = logging.getLogger(__name__)

VALGRIND = "valgrind"
TERMINATE_GRACE_SECONDS = 2.0


# ---------------------------------------------------------------------------
# INVOCATION DATA MODEL
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExitWith:
    """Expected exit of the target: success, any failure, or one exact code."""

    kind: str = "success"
    code: int | None = None

    @classmethod
    def success(cls) -> ExitWith:
        return cls("success")

    @classmethod
    def failure(cls) -> ExitWith:
        return cls("failure")

    @classmethod
    def exact(cls, code: int) -> ExitWith:
        return cls("code", code)

    @classmethod
    def parse(cls, value: str | int) -> ExitWith:
        """`success`, `failure` or an integer exit code."""
        if isinstance(value, int) and not isinstance(value, bool):
            return cls.exact(value)
        text = str(value).strip().lower()
        if text in ("success", "failure"):
            return cls(text)
        try:
            return cls.exact(int(text))
        except ValueError:
            raise ConfigurationError(
                f"Invalid exit expectation '{value}': use success, failure or a code"
            ) from None

    def matches(self, exit_code: int | None) -> bool:
        """True if a target that exited with `exit_code` behaved as expected.

        A target killed by a signal (exit_code None) never matches.
        """
        if exit_code is None:
            return False
        if self.kind == "success":
            return exit_code == 0
        if self.kind == "failure":
            return exit_code != 0
        return exit_code == self.code

    def __str__(self) -> str:
        return str(self.code) if self.kind == "code" else self.kind


@dataclass
class ToolInvocation:
    """Everything needed to run one target under one tool."""

    executable: Path | str
    args: list[str] = field(default_factory=list)
    tool: ToolId = ToolId.CALLGRIND
    env: dict[str, str] = field(default_factory=dict)
    env_clear: bool = False
    tool_args: list[str] = field(default_factory=list)
    entry_point: str | None = None
    trace_children: bool = False
    current_dir: Path | None = None
    timeout: float | None = None
    exit_with: ExitWith = field(default_factory=ExitWith.success)


@dataclass
class ToolRun:
    """Outcome of one run: where the output went and how the target ended."""

    tool: ToolId
    command: list[str]
    artifacts: list[Path]
    logs: list[Path]
    tool_exit_code: int | None
    target_exit_code: int | None
    target_signal: int | None = None
    timed_out: bool = False
    target_failed: bool = False
    stdout: str = ""
    stderr: str = ""

    @property
    def command_line(self) -> str:
        return shlex.join(self.command)

    @property
    def outputs(self) -> list[Path]:
        """The files the tool's parser reads: artifacts, or logs for log-only tools."""
        return self.artifacts if tool_spec(self.tool).has_output_file else self.logs


# ---------------------------------------------------------------------------
# BINARY RESOLUTION
# ---------------------------------------------------------------------------


def resolve_tool_binary(config: HarnessConfig) -> Path:
    """
    Locate valgrind.

    Raises:
        ToolNotFound: configured path missing, or nothing on PATH
    """
    if config.valgrind_path is not None:
        path = Path(config.valgrind_path)
        if path.is_file() and os.access(path, os.X_OK):
            return path
        raise ToolNotFound(VALGRIND, searched=str(path))

    found = shutil.which(VALGRIND)
    if found is None:
        raise ToolNotFound(VALGRIND, searched=os.environ.get("PATH", ""))
    return Path(found)


def _resolve_executable(invocation: ToolInvocation) -> str:
    executable = str(invocation.executable)
    if os.sep in executable:
        path = Path(executable)
        if invocation.current_dir is not None and not path.is_absolute():
            path = Path(invocation.current_dir) / path
        if not path.is_file():
            raise TargetSpawnFailed(executable, "no such file")
        if not os.access(path, os.X_OK):
            raise TargetSpawnFailed(executable, "not executable")
        return str(path.resolve())
    found = shutil.which(executable)
    if found is None:
        raise TargetSpawnFailed(executable, "not found on PATH")
    return found


# ---------------------------------------------------------------------------
# COMMAND LINE AND ENVIRONMENT
# ---------------------------------------------------------------------------


def build_command(
    invocation: ToolInvocation,
    config: HarnessConfig,
    workspace: ArtifactWorkspace,
    valgrind: Path | str,
    executable: str | None = None,
) -> list[str]:
    spec = tool_spec(invocation.tool)
    command: list[str] = []

    if not config.allow_aslr and platform.system() == "Linux":
        setarch = shutil.which("setarch")
        if setarch is not None:
            command += [setarch, config.arch, "-R"]
        else:
            logger.warning("setarch not found, running with ASLR enabled")

    command += [str(valgrind), f"--tool={spec.id.value}"]
    command += list(spec.default_args)
    if invocation.trace_children:
        command.append("--trace-children=yes")
    if invocation.entry_point and invocation.tool == ToolId.CALLGRIND:
        command += ["--collect-atstart=no", f"--toggle-collect={invocation.entry_point}"]
    command += list(invocation.tool_args)
    command += spec.output_args(workspace.path)
    command.append(executable or str(invocation.executable))
    command += list(invocation.args)
    return command


def build_env(invocation: ToolInvocation, base: dict[str, str] | None = None) -> dict[str, str]:
    """Ambient environment plus overrides, or only preserved variables on env_clear."""
    ambient = dict(os.environ) if base is None else dict(base)
    if invocation.env_clear:
        preserved = tool_spec(invocation.tool).preserved_env
        env = {key: ambient[key] for key in preserved if key in ambient}
    else:
        env = ambient
    env.update(invocation.env)
    return env


# ---------------------------------------------------------------------------
# PROCESS LIFECYCLE
# ---------------------------------------------------------------------------


def _terminate_group(process: subprocess.Popen) -> None:
    """SIGTERM the process group, SIGKILL it if it is still alive after a grace period."""
    try:
        os.killpg(process.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        process.wait(timeout=TERMINATE_GRACE_SECONDS)
        return
    except subprocess.TimeoutExpired:
        pass
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    process.wait()


_live_processes: set[subprocess.Popen] = set()
_live_lock = threading.Lock()


def terminate_all() -> int:
    """Terminate the process group of every tool run still in flight.

    Called from the main thread on Ctrl-C, since worker threads never see
    KeyboardInterrupt. Returns how many groups were signalled.
    """
    with _live_lock:
        processes = list(_live_processes)
    for process in processes:
        logger.warning(f"Terminating process group {process.pid}")
        _terminate_group(process)
    return len(processes)


def _fatal_diagnostics(stderr: str) -> str | None:
    lines = [line for line in stderr.splitlines() if line.startswith("valgrind:")]
    return "\n".join(lines) if lines else None


def run_tool(
    invocation: ToolInvocation,
    config: HarnessConfig,
    workspace: ArtifactWorkspace,
    valgrind: Path | str | None = None,
) -> ToolRun:
    """
    Run the target under the selected tool and collect every output file.

    Raises:
        ToolNotFound: valgrind could not be located or started
        TargetSpawnFailed: the target executable or working directory does not exist
        ToolFatalError: valgrind failed before running the target
        KeyboardInterrupt: re-raised after the process group was terminated
    """
    valgrind = valgrind or resolve_tool_binary(config)
    if invocation.current_dir is not None and not Path(invocation.current_dir).is_dir():
        raise TargetSpawnFailed(
            str(invocation.executable), f"working directory {invocation.current_dir} does not exist"
        )
    executable = _resolve_executable(invocation)
    command = build_command(invocation, config, workspace, valgrind, executable)
    env = build_env(invocation)
    timeout = invocation.timeout if invocation.timeout is not None else config.timeout

    logger.debug(f"Running: {shlex.join(command)}")
    tracer = get_tracer()
    with tracer.start_span(f"tool_run.{invocation.tool.value}") as span:
        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                cwd=invocation.current_dir,
                start_new_session=True,
                text=True,
                errors="replace",
            )
        except FileNotFoundError as e:
            if e.filename in (None, command[0]):
                raise ToolNotFound(command[0], searched=e.filename) from e
            raise TargetSpawnFailed(executable, f"{e.strerror}: {e.filename}") from e
        except OSError as e:
            raise TargetSpawnFailed(executable, e.strerror or str(e)) from e

        with _live_lock:
            _live_processes.add(process)
        timed_out = False
        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"{invocation.executable}: timed out after {timeout}s, terminating")
            timed_out = True
            _terminate_group(process)
            stdout, stderr = process.communicate()
        except KeyboardInterrupt:
            logger.warning(f"Interrupted, terminating {invocation.executable}")
            _terminate_group(process)
            raise
        finally:
            with _live_lock:
                _live_processes.discard(process)

        if stderr:
            logger.debug(f"{invocation.tool.value} stderr:\n{stderr.rstrip()}")

        spec = tool_spec(invocation.tool)
        artifacts = spec.artifacts(workspace.path)
        logs = spec.logs(workspace.path)

        returncode = process.returncode
        target_exit = returncode if returncode is not None and returncode >= 0 else None
        target_signal = -returncode if returncode is not None and returncode < 0 else None

        if not artifacts and not logs:
            diagnostics = _fatal_diagnostics(stderr)
            if diagnostics is not None or not timed_out:
                raise ToolFatalError(spec.id.value, returncode, diagnostics or stderr)

        target_failed = timed_out or not invocation.exit_with.matches(target_exit)
        if target_failed:
            logger.warning(
                f"{invocation.executable}: exit code {target_exit}, signal {target_signal}, "
                f"expected {invocation.exit_with}"
            )

        run = ToolRun(
            tool=invocation.tool,
            command=command,
            artifacts=artifacts,
            logs=logs,
            tool_exit_code=returncode,
            target_exit_code=target_exit,
            target_signal=target_signal,
            timed_out=timed_out,
            target_failed=target_failed,
            stdout=stdout,
            stderr=stderr,
        )
        for key, value in tool_run_attributes(
            invocation.tool.value,
            returncode,
            target_exit,
            timed_out,
            len(run.outputs),
        ).items():
            span.set_attribute(key, value)
        span.set_status("error" if target_failed else "ok")
        return run
