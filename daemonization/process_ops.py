"""
Daemonization - Process Operations.

Thin adapter over the OS calls used to detach from the terminal,
so the detach sequence can run against a recording fake in tests.
"""

import os
import sys

from core.constants import EXIT_SUCCESS, NULL_DEVICE


STDIN_FILENO = 0
STDOUT_FILENO = 1
STDERR_FILENO = 2


class ProcessOps:
    """Real process operations. Every method may raise OSError."""

    def __init__(self, null_device: str = NULL_DEVICE):
        self.null_device = null_device

    def open_null(self, flags: int) -> int:
        return os.open(self.null_device, flags)

    def dup2(self, fd: int, target: int) -> None:
        os.dup2(fd, target)

    def close(self, fd: int) -> None:
        os.close(fd)

    def fork(self) -> int:
        return os.fork()

    def setsid(self) -> None:
        os.setsid()

    def exit_parent(self, status: int = EXIT_SUCCESS) -> None:
        # Skip atexit handlers and buffered-IO flushing owned by the child
        os._exit(status)

    def flush_stdio(self) -> None:
        for stream in (sys.stdout, sys.stderr):
            if stream is not None:
                try:
                    stream.flush()
                except (OSError, ValueError):
                    pass


__all__ = ["ProcessOps", "STDIN_FILENO", "STDOUT_FILENO", "STDERR_FILENO"]
