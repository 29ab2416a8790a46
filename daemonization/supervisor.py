"""
Daemonization - Supervisor.

============================================================
RESPONSIBILITY
============================================================
Detaches the broker node from its controlling terminal.

Sequence (each step callable on its own):
1. REDIRECT_STDIN          null device -> fd 0
2. REDIRECT_STDOUT_STDERR  null device -> fds 1 and 2
3. FIRST_FORK              parent exits 0, child continues
4. BECOME_SESSION_LEADER   setsid()
5. SECOND_FORK             session leader exits 0

The second fork leaves a process that is not a session leader
and so can never acquire a controlling terminal again.

Any OS failure is fatal and never retried.

============================================================
"""

import logging
import os
from enum import Enum
from typing import Optional

from core.constants import EXIT_SUCCESS
from core.exceptions import SystemResourceError

from .process_ops import STDERR_FILENO, STDIN_FILENO, STDOUT_FILENO, ProcessOps


logger = logging.getLogger(__name__)


# ============================================================
# DAEMONIZATION STEPS
# ============================================================

class DaemonizationStep(Enum):
    """Detach steps in strict order."""

    REDIRECT_STDIN = (1, "redirect_stdin", "Failed to setup stdin")
    REDIRECT_STDOUT_STDERR = (2, "redirect_stdout_stderr", "Failed to setup std{out,err}")
    FIRST_FORK = (3, "first_fork", "Failed to fork")
    BECOME_SESSION_LEADER = (4, "become_session_leader", "Failed to create session")
    SECOND_FORK = (5, "second_fork", "Failed to fork")

    def __init__(self, order: int, step_id: str, failure: str):
        self._order = order
        self._step_id = step_id
        self._failure = failure

    @property
    def order(self) -> int:
        return self._order

    @property
    def step_id(self) -> str:
        return self._step_id

    @property
    def failure(self) -> str:
        """Diagnostic prefix when the step fails."""
        return self._failure


def _step_failed(step: DaemonizationStep, error: OSError) -> SystemResourceError:
    return SystemResourceError(
        f"{step.failure}: {error.strerror or error}",
        step=step.step_id,
        errno=error.errno,
        cause=error,
    )


# ============================================================
# SUPERVISOR
# ============================================================

class DaemonizationSupervisor:
    """Runs the double-fork detach sequence."""

    def __init__(self, process_ops: Optional[ProcessOps] = None):
        self._ops = process_ops or ProcessOps()
        self._last_step: Optional[DaemonizationStep] = None

    @property
    def last_step(self) -> Optional[DaemonizationStep]:
        """Last step completed by this process."""
        return self._last_step

    def redirect_stdin(self) -> None:
        step = DaemonizationStep.REDIRECT_STDIN
        self._ops.flush_stdio()
        try:
            fd = self._ops.open_null(os.O_RDONLY)
            self._ops.dup2(fd, STDIN_FILENO)
            if fd > STDERR_FILENO:
                self._ops.close(fd)
        except OSError as e:
            raise _step_failed(step, e) from e
        self._last_step = step

    def redirect_stdout_stderr(self) -> None:
        step = DaemonizationStep.REDIRECT_STDOUT_STDERR
        self._ops.flush_stdio()
        try:
            fd = self._ops.open_null(os.O_WRONLY)
            self._ops.dup2(fd, STDOUT_FILENO)
            self._ops.dup2(fd, STDERR_FILENO)
            if fd > STDERR_FILENO:
                self._ops.close(fd)
        except OSError as e:
            raise _step_failed(step, e) from e
        self._last_step = step

    def first_fork(self) -> int:
        """Fork; the parent exits 0. Returns the fork result seen by the child (0)."""
        return self._fork(DaemonizationStep.FIRST_FORK)

    def become_session_leader(self) -> None:
        step = DaemonizationStep.BECOME_SESSION_LEADER
        try:
            self._ops.setsid()
        except OSError as e:
            raise _step_failed(step, e) from e
        self._last_step = step

    def second_fork(self) -> int:
        """Fork again; the session leader exits 0."""
        return self._fork(DaemonizationStep.SECOND_FORK)

    def _fork(self, step: DaemonizationStep) -> int:
        self._ops.flush_stdio()
        try:
            pid = self._ops.fork()
        except OSError as e:
            raise _step_failed(step, e) from e
        if pid > 0:
            self._ops.exit_parent(EXIT_SUCCESS)
        self._last_step = step
        return pid

    def daemonize(self) -> None:
        """
        Run every step in order.

        Returns only in the final daemon process.

        Raises:
            SystemResourceError: If any step fails
        """
        logger.info("Detaching from controlling terminal")
        self.redirect_stdin()
        self.redirect_stdout_stderr()
        self.first_fork()
        self.become_session_leader()
        self.second_fork()
        logger.info(f"Running as daemon | pid={os.getpid()}")


__all__ = ["DaemonizationStep", "DaemonizationSupervisor"]
