"""
Unit Tests for the Process Orchestrator

subprocess.Popen and os.killpg are mocked, so no valgrind is needed.
Artifact files are created in the workspace up front; the orchestrator
only enumerates them after the (mocked) process has exited.
"""

import os
import signal
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from instrument_bench.config import HarnessConfig
from instrument_bench.core.errors import (
    ConfigurationError,
    TargetSpawnFailed,
    ToolFatalError,
    ToolNotFound,
)
from instrument_bench.model import ToolId
from instrument_bench.orchestrator import (
    ArtifactWorkspace,
    ExitWith,
    ToolInvocation,
    build_command,
    build_env,
    resolve_tool_binary,
    run_tool,
    terminate_all,
    tool_spec,
)

POPEN = "instrument_bench.orchestrator.runner.subprocess.Popen"
KILLPG = "instrument_bench.orchestrator.runner.os.killpg"


# ---------------------------------------------------------------------------
# FIXTURES
# ---------------------------------------------------------------------------


@pytest.fixture
def config():
    return HarnessConfig(allow_aslr=True)


@pytest.fixture
def target(tmp_path):
    """An executable file standing in for the benchmark binary."""
    path = tmp_path / "bench"
    path.write_text("#!/bin/sh\nexit 0\n")
    path.chmod(0o755)
    return path


@pytest.fixture
def workspace(tmp_path):
    with ArtifactWorkspace(parent=tmp_path / "work") as ws:
        yield ws


def _process(returncode=0, stdout="", stderr=""):
    process = MagicMock()
    process.pid = 4321
    process.returncode = returncode
    process.communicate.return_value = (stdout, stderr)
    return process


# ---------------------------------------------------------------------------
# EXIT EXPECTATION TESTS
# ---------------------------------------------------------------------------


class TestExitWith:
    def test_success(self):
        assert ExitWith.success().matches(0)
        assert not ExitWith.success().matches(1)

    def test_failure(self):
        assert ExitWith.failure().matches(3)
        assert not ExitWith.failure().matches(0)

    def test_exact_code(self):
        assert ExitWith.parse(3).matches(3)
        assert ExitWith.parse("3").matches(3)
        assert not ExitWith.parse(3).matches(0)

    def test_signal_never_matches(self):
        assert not ExitWith.failure().matches(None)

    def test_invalid(self):
        with pytest.raises(ConfigurationError):
            ExitWith.parse("sometimes")


# ---------------------------------------------------------------------------
# COMMAND LINE TESTS
# ---------------------------------------------------------------------------


class TestBuildCommand:
    """Test the valgrind command line."""

    def test_callgrind_command(self, config, workspace):
        invocation = ToolInvocation(
            executable="/bin/bench",
            args=["--size", "large"],
            entry_point="bench::run",
            tool_args=["--dump-instr=yes"],
        )
        command = build_command(invocation, config, workspace, "/usr/bin/valgrind")

        assert command[:2] == ["/usr/bin/valgrind", "--tool=callgrind"]
        assert "--cache-sim=yes" in command
        assert "--I1=32768,8,64" in command
        assert "--collect-atstart=no" in command
        assert "--toggle-collect=bench::run" in command
        assert "--dump-instr=yes" in command
        assert f"--callgrind-out-file={workspace.path / 'callgrind.out'}.%p" in command
        assert f"--log-file={workspace.path / 'callgrind.log'}.%p" in command
        assert command[-3:] == ["/bin/bench", "--size", "large"]

    def test_memcheck_has_no_output_file_flag(self, config, workspace):
        invocation = ToolInvocation(executable="/bin/bench", tool=ToolId.MEMCHECK)
        command = build_command(invocation, config, workspace, "valgrind")
        assert "--leak-check=full" in command
        assert not any(arg.startswith("--callgrind-out-file") for arg in command)

    def test_trace_children(self, config, workspace):
        invocation = ToolInvocation(executable="/bin/bench", tool=ToolId.DHAT, trace_children=True)
        command = build_command(invocation, config, workspace, "valgrind")
        assert "--trace-children=yes" in command

    def test_aslr_disabled_with_setarch(self, workspace):
        config = HarnessConfig(allow_aslr=False, arch="x86_64")
        invocation = ToolInvocation(executable="/bin/bench")
        with patch("instrument_bench.orchestrator.runner.platform.system", return_value="Linux"), \
                patch("instrument_bench.orchestrator.runner.shutil.which", return_value="/usr/bin/setarch"):
            command = build_command(invocation, config, workspace, "valgrind")
        assert command[:4] == ["/usr/bin/setarch", "x86_64", "-R", "valgrind"]


class TestBuildEnv:
    """Test environment construction."""

    BASE = {"PATH": "/bin", "HOME": "/root", "LD_PRELOAD": "libfoo.so", "SECRET": "x"}

    def test_overrides_are_additive(self):
        env = build_env(ToolInvocation(executable="b", env={"A": "1"}), base=self.BASE)
        assert env["A"] == "1"
        assert env["SECRET"] == "x"

    def test_env_clear_keeps_preserved_variables(self):
        invocation = ToolInvocation(executable="b", env={"A": "1"}, env_clear=True)
        assert build_env(invocation, base=self.BASE) == {"LD_PRELOAD": "libfoo.so", "A": "1"}

    def test_memcheck_keeps_path_and_home(self):
        invocation = ToolInvocation(executable="b", tool=ToolId.MEMCHECK, env_clear=True)
        env = build_env(invocation, base=self.BASE)
        assert env == {"LD_PRELOAD": "libfoo.so", "PATH": "/bin", "HOME": "/root"}


class TestResolveToolBinary:
    def test_configured_path_missing(self, tmp_path):
        config = HarnessConfig(valgrind_path=tmp_path / "valgrind")
        with pytest.raises(ToolNotFound):
            resolve_tool_binary(config)

    def test_configured_path(self, target):
        assert resolve_tool_binary(HarnessConfig(valgrind_path=target)) == target

    def test_not_on_path(self):
        with patch("instrument_bench.orchestrator.runner.shutil.which", return_value=None):
            with pytest.raises(ToolNotFound):
                resolve_tool_binary(HarnessConfig())


# ---------------------------------------------------------------------------
# RUN TOOL TESTS
# ---------------------------------------------------------------------------


class TestRunTool:
    """Test the process lifecycle with a mocked Popen."""

    def test_collects_every_artifact_in_pid_order(self, config, target, workspace):
        for name in ("callgrind.out.900", "callgrind.out.1200", "callgrind.log.900"):
            (workspace.path / name).write_text("x")

        with patch(POPEN, return_value=_process()) as popen:
            run = run_tool(ToolInvocation(executable=target), config, workspace, valgrind="valgrind")

        assert [p.name for p in run.artifacts] == ["callgrind.out.900", "callgrind.out.1200"]
        assert [p.name for p in run.logs] == ["callgrind.log.900"]
        assert run.outputs == run.artifacts
        assert not run.target_failed
        assert popen.call_args.kwargs["start_new_session"] is True

    def test_log_tools_read_logs(self, config, target, workspace):
        (workspace.path / "memcheck.log.77").write_text("x")
        with patch(POPEN, return_value=_process()):
            run = run_tool(
                ToolInvocation(executable=target, tool=ToolId.MEMCHECK),
                config,
                workspace,
                valgrind="valgrind",
            )
        assert [p.name for p in run.outputs] == ["memcheck.log.77"]

    def test_nonzero_target_still_returns_artifacts(self, config, target, workspace):
        (workspace.path / "dhat.out.5").write_text("{}")
        with patch(POPEN, return_value=_process(returncode=1)):
            run = run_tool(
                ToolInvocation(executable=target, tool=ToolId.DHAT),
                config,
                workspace,
                valgrind="valgrind",
            )
        assert run.target_failed
        assert run.target_exit_code == 1
        assert len(run.artifacts) == 1

    def test_expected_failure_is_not_target_failed(self, config, target, workspace):
        (workspace.path / "callgrind.out.5").write_text("x")
        invocation = ToolInvocation(executable=target, exit_with=ExitWith.exact(3))
        with patch(POPEN, return_value=_process(returncode=3)):
            run = run_tool(invocation, config, workspace, valgrind="valgrind")
        assert not run.target_failed

    def test_killed_by_signal(self, config, target, workspace):
        (workspace.path / "callgrind.out.5").write_text("x")
        with patch(POPEN, return_value=_process(returncode=-signal.SIGSEGV)):
            run = run_tool(ToolInvocation(executable=target), config, workspace, valgrind="valgrind")
        assert run.target_signal == signal.SIGSEGV
        assert run.target_exit_code is None
        assert run.target_failed

    def test_fatal_tool_error(self, config, target, workspace):
        process = _process(returncode=1, stderr="valgrind: failed to start tool 'callgrind'\n")
        with patch(POPEN, return_value=process):
            with pytest.raises(ToolFatalError) as excinfo:
                run_tool(ToolInvocation(executable=target), config, workspace, valgrind="valgrind")
        assert "failed to start tool" in str(excinfo.value)

    def test_missing_executable(self, config, tmp_path, workspace):
        with patch(POPEN) as popen:
            with pytest.raises(TargetSpawnFailed):
                run_tool(
                    ToolInvocation(executable=tmp_path / "missing"),
                    config,
                    workspace,
                    valgrind="valgrind",
                )
        popen.assert_not_called()

    def test_timeout_terminates_process_group(self, config, target, workspace):
        (workspace.path / "callgrind.out.5").write_text("x")
        process = _process(returncode=-signal.SIGTERM)
        process.communicate.side_effect = [subprocess.TimeoutExpired("valgrind", 1), ("", "")]
        invocation = ToolInvocation(executable=target, timeout=1)

        with patch(POPEN, return_value=process), patch(KILLPG) as killpg:
            run = run_tool(invocation, config, workspace, valgrind="valgrind")

        killpg.assert_called_once_with(4321, signal.SIGTERM)
        assert run.timed_out
        assert run.target_failed

    def test_timeout_escalates_to_sigkill(self, config, target, workspace):
        (workspace.path / "callgrind.out.5").write_text("x")
        process = _process(returncode=-signal.SIGKILL)
        process.communicate.side_effect = [subprocess.TimeoutExpired("valgrind", 1), ("", "")]
        process.wait.side_effect = [subprocess.TimeoutExpired("valgrind", 2), None]

        with patch(POPEN, return_value=process), patch(KILLPG) as killpg:
            run_tool(ToolInvocation(executable=target, timeout=1), config, workspace, valgrind="valgrind")

        assert [c.args[1] for c in killpg.call_args_list] == [signal.SIGTERM, signal.SIGKILL]

    def test_keyboard_interrupt_terminates_and_reraises(self, config, target, workspace):
        process = _process()
        process.communicate.side_effect = KeyboardInterrupt
        with patch(POPEN, return_value=process), patch(KILLPG) as killpg:
            with pytest.raises(KeyboardInterrupt):
                run_tool(ToolInvocation(executable=target), config, workspace, valgrind="valgrind")
        killpg.assert_called_once_with(4321, signal.SIGTERM)

    def test_valgrind_binary_vanished(self, config, target, workspace):
        with patch(POPEN, side_effect=FileNotFoundError(2, "No such file", "valgrind")):
            with pytest.raises(ToolNotFound):
                run_tool(ToolInvocation(executable=target), config, workspace, valgrind="valgrind")

    def test_missing_working_directory_is_case_scoped(self, config, target, tmp_path, workspace):
        invocation = ToolInvocation(executable=target, current_dir=tmp_path / "gone")
        with patch(POPEN) as popen:
            with pytest.raises(TargetSpawnFailed) as excinfo:
                run_tool(invocation, config, workspace, valgrind="valgrind")
        assert "gone" in str(excinfo.value)
        popen.assert_not_called()

    def test_working_directory_vanishing_at_spawn_is_not_tool_not_found(
        self, config, target, tmp_path, workspace
    ):
        invocation = ToolInvocation(executable=target, current_dir=tmp_path)
        error = FileNotFoundError(2, "No such file or directory", str(tmp_path))
        with patch(POPEN, side_effect=error):
            with pytest.raises(TargetSpawnFailed):
                run_tool(invocation, config, workspace, valgrind="valgrind")

    def test_relative_executable_is_resolved_once(self, config, target, tmp_path, workspace):
        (workspace.path / "callgrind.out.5").write_text("x")
        invocation = ToolInvocation(executable=f"./{target.name}", current_dir=tmp_path)
        with patch(POPEN, return_value=_process()) as popen:
            run_tool(invocation, config, workspace, valgrind="valgrind")
        assert popen.call_args.args[0][-1] == str(target.resolve())

    def test_terminate_all_signals_runs_in_flight(self, config, target, workspace):
        process = _process()

        def interrupt_from_main(timeout=None):
            assert terminate_all() == 1
            return ("", "valgrind: killed\n")

        process.communicate.side_effect = interrupt_from_main
        with patch(POPEN, return_value=process), patch(KILLPG) as killpg:
            with pytest.raises(ToolFatalError):
                run_tool(ToolInvocation(executable=target), config, workspace, valgrind="valgrind")

        killpg.assert_called_once_with(4321, signal.SIGTERM)
        assert terminate_all() == 0


# ---------------------------------------------------------------------------
# WORKSPACE AND TOOL TESTS
# ---------------------------------------------------------------------------


class TestArtifactWorkspace:
    """The artifact directory is removed on every exit path."""

    def test_removed_after_block(self, tmp_path):
        with ArtifactWorkspace(parent=tmp_path) as ws:
            path = ws.path
            (path / "callgrind.out.1").write_text("x")
        assert not path.exists()

    def test_removed_on_exception(self, tmp_path):
        with pytest.raises(RuntimeError):
            with ArtifactWorkspace(parent=tmp_path) as ws:
                path = ws.path
                raise RuntimeError("boom")
        assert not path.exists()

    def test_keep(self, tmp_path):
        with ArtifactWorkspace(keep=True, parent=tmp_path) as ws:
            path = ws.path
        assert path.exists()

    def test_path_outside_block(self):
        with pytest.raises(RuntimeError):
            ArtifactWorkspace().path


class TestToolSpec:
    def test_output_file_tools(self):
        assert tool_spec(ToolId.CALLGRIND).has_output_file
        assert tool_spec("dhat").has_output_file
        assert not tool_spec(ToolId.HELGRIND).has_output_file

    def test_artifacts_ignore_directories(self, tmp_path):
        (tmp_path / "dhat.out.3").mkdir()
        (tmp_path / "dhat.out.10").write_text("{}")
        assert [p.name for p in tool_spec(ToolId.DHAT).artifacts(Path(tmp_path))] == ["dhat.out.10"]
