"""
Tests for the daemonization supervisor.

============================================================
PURPOSE
============================================================
TEST PRINCIPLES:
- Steps run in the documented order
- Parents of both forks exit 0
- Every OS failure becomes a SystemResourceError
- A real detach leaves a process that is not a session leader

============================================================
"""

import errno
import os
import subprocess
import sys
import textwrap
import time
from pathlib import Path

import pytest

from core.exceptions import SystemResourceError
from daemonization import DaemonizationStep, DaemonizationSupervisor


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _without_flush(calls):
    return [call for call in calls if call[0] != "flush_stdio"]


# ============================================================
# STEP ORDER
# ============================================================

class TestDaemonizeSequence:
    """Full sequence against recording process operations."""

    def test_child_path_runs_every_step_in_order(self, recording_ops_factory):
        ops = recording_ops_factory(fork_results=(0, 0))
        supervisor = DaemonizationSupervisor(ops)

        supervisor.daemonize()

        assert _without_flush(ops.calls) == [
            ("open_null", os.O_RDONLY),
            ("dup2", (7, 0)),
            ("close", 7),
            ("open_null", os.O_WRONLY),
            ("dup2", (7, 1)),
            ("dup2", (7, 2)),
            ("close", 7),
            ("fork", None),
            ("setsid", None),
            ("fork", None),
        ]
        assert supervisor.last_step == DaemonizationStep.SECOND_FORK

    def test_stdio_is_flushed_before_redirects_and_forks(self, recording_ops_factory):
        ops = recording_ops_factory(fork_results=(0, 0))
        DaemonizationSupervisor(ops).daemonize()

        names = [name for name, _ in ops.calls]
        for index, name in enumerate(names):
            if name in ("fork", "open_null"):
                assert names[index - 1] == "flush_stdio"

    def test_first_fork_parent_exits_zero(self, recording_ops_factory, parent_exited):
        ops = recording_ops_factory(fork_results=(4242,))
        supervisor = DaemonizationSupervisor(ops)

        with pytest.raises(parent_exited) as exc_info:
            supervisor.daemonize()

        assert exc_info.value.status == 0
        assert ("setsid", None) not in ops.calls

    def test_second_fork_parent_exits_zero(self, recording_ops_factory, parent_exited):
        ops = recording_ops_factory(fork_results=(0, 4343))
        supervisor = DaemonizationSupervisor(ops)

        with pytest.raises(parent_exited) as exc_info:
            supervisor.daemonize()

        assert exc_info.value.status == 0
        assert _without_flush(ops.calls)[-3:] == [
            ("setsid", None),
            ("fork", None),
            ("exit_parent", 0),
        ]

    def test_low_null_descriptor_is_kept_open(self, recording_ops_factory):
        ops = recording_ops_factory(null_fd=0)
        DaemonizationSupervisor(ops).redirect_stdin()

        assert ("close", 0) not in ops.calls

    def test_steps_are_ordered(self):
        orders = [step.order for step in DaemonizationStep]
        assert orders == sorted(orders)
        assert [s.step_id for s in DaemonizationStep][:2] == ["redirect_stdin", "redirect_stdout_stderr"]


# ============================================================
# FAILURES
# ============================================================

class TestDaemonizeFailures:
    """OS failures are fatal and carry the OS error text."""

    def test_stdin_failure(self, recording_ops_factory):
        ops = recording_ops_factory(fail_on="open_null")

        with pytest.raises(SystemResourceError) as exc_info:
            DaemonizationSupervisor(ops).redirect_stdin()

        error = exc_info.value
        assert error.message.startswith("Failed to setup stdin: ")
        assert os.strerror(errno.EAGAIN) in error.message
        assert error.context["errno"] == errno.EAGAIN
        assert error.context["step"] == "redirect_stdin"

    def test_stdout_stderr_failure(self, recording_ops_factory):
        ops = recording_ops_factory(fail_on="dup2")

        with pytest.raises(SystemResourceError) as exc_info:
            DaemonizationSupervisor(ops).redirect_stdout_stderr()

        assert exc_info.value.message.startswith("Failed to setup std{out,err}")

    def test_fork_failure_is_not_retried(self, recording_ops_factory):
        ops = recording_ops_factory(fail_on="fork")

        with pytest.raises(SystemResourceError) as exc_info:
            DaemonizationSupervisor(ops).daemonize()

        assert exc_info.value.message.startswith("Failed to fork")
        assert [name for name, _ in ops.calls].count("fork") == 1
        assert ("setsid", None) not in ops.calls
        assert ("exit_parent", 0) not in ops.calls

    def test_setsid_failure(self, recording_ops_factory):
        ops = recording_ops_factory(fail_on="setsid")

        with pytest.raises(SystemResourceError) as exc_info:
            DaemonizationSupervisor(ops).become_session_leader()

        assert exc_info.value.context["step"] == "become_session_leader"


# ============================================================
# REAL DETACH
# ============================================================

@pytest.mark.skipif(not hasattr(os, "fork"), reason="requires os.fork")
class TestRealDaemonize:
    """Detach a real child interpreter."""

    def test_daemon_is_not_session_leader(self, tmp_path):
        marker = tmp_path / "daemon.txt"
        script = textwrap.dedent(f"""
            import os, sys
            sys.path.insert(0, {str(PROJECT_ROOT)!r})
            from daemonization import DaemonizationSupervisor

            DaemonizationSupervisor().daemonize()
            null = os.stat(os.devnull).st_rdev
            redirected = all(os.fstat(fd).st_rdev == null for fd in (0, 1, 2))
            with open({str(marker)!r} + ".tmp", "w") as fh:
                fh.write(f"{{os.getpid()}} {{os.getsid(0)}} {{redirected}}")
            os.rename({str(marker)!r} + ".tmp", {str(marker)!r})
        """)

        result = subprocess.run([sys.executable, "-c", script], timeout=30)
        assert result.returncode == 0

        deadline = time.monotonic() + 15
        while not marker.exists() and time.monotonic() < deadline:
            time.sleep(0.05)
        assert marker.exists(), "daemon never reported in"

        pid, sid, redirected = marker.read_text().split()
        assert int(pid) != int(sid)
        assert redirected == "True"
