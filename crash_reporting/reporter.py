"""
Crash Reporting - Reporter.

============================================================
RESPONSIBILITY
============================================================
Process-wide crash reporter built on ``faulthandler``.

- One reporter per process, one handle per participating thread
- Key/value metadata for the global report context
- Fatal-signal handlers that write a report before the process dies

============================================================
FATAL SIGNAL PATH
============================================================
faulthandler installs C-level handlers on an alternate signal
stack. On SIGSEGV, SIGFPE, SIGABRT, SIGBUS or SIGILL it writes
the tracebacks of every thread to the report file, restores the
signal's default disposition and re-raises it, so the process
still terminates through the normal OS fault path.

Report file layout (``fqd-crash-<pid>.log``):
    {"record": "crash_context", ...}     one JSON line per update
    Fatal Python error: Segmentation fault
    <thread tracebacks>

============================================================
"""

import faulthandler
import logging
import os
import signal
import socket
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Dict, Iterable, List, Optional

from core.exceptions import CrashReporterError

from .schemas import AttachedThread, CrashContext


logger = logging.getLogger(__name__)


# ============================================================
# SIGNAL SETS
# ============================================================

def _platform_signals(*names: str) -> List[signal.Signals]:
    return [getattr(signal, name) for name in names if hasattr(signal, name)]


# SIGFPE appears twice; install_signal_handlers() collapses duplicates
FATAL_SIGNALS: List[signal.Signals] = _platform_signals(
    "SIGSEGV", "SIGFPE", "SIGABRT", "SIGBUS", "SIGILL", "SIGFPE",
)

# Signals faulthandler.enable() takes over
FAULTHANDLER_SIGNALS = frozenset(
    _platform_signals("SIGSEGV", "SIGFPE", "SIGABRT", "SIGBUS", "SIGILL")
)


# ============================================================
# CONFIGURATION AND HANDLES
# ============================================================

@dataclass(frozen=True)
class CrashReporterConfig:
    """Library-level crash reporter configuration."""

    report_dir: Path
    """Directory receiving crash report files."""

    all_threads: bool = True
    """Dump every thread's traceback, not only the faulting one."""

    file_prefix: str = "fqd-crash"

    def report_path(self, pid: Optional[int] = None) -> Path:
        return self.report_dir / f"{self.file_prefix}-{pid or os.getpid()}.log"


@dataclass
class CrashReporterHandle:
    """Per-thread crash reporter handle."""

    thread_name: str
    thread_ident: int
    attached_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================
# CRASH REPORTER
# ============================================================

class CrashReporter:
    """
    Process-wide crash reporter.

    Threads that want to participate call attach() themselves;
    nothing is attached on another thread's behalf.
    """

    def __init__(self, fault_handler: Any = faulthandler):
        self._fault_handler = fault_handler
        self._config: Optional[CrashReporterConfig] = None
        self._report_file: Optional[IO[str]] = None
        self._metadata: Dict[str, str] = {}
        self._handles: Dict[int, CrashReporterHandle] = {}
        self._installed: List[signal.Signals] = []
        self._local = threading.local()
        self._lock = threading.Lock()

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def is_enabled(self) -> bool:
        """True once init() succeeded."""
        return self._report_file is not None

    @property
    def config(self) -> Optional[CrashReporterConfig]:
        return self._config

    @property
    def report_path(self) -> Optional[Path]:
        if self._report_file is None:
            return None
        return Path(self._report_file.name)

    @property
    def metadata(self) -> Dict[str, str]:
        return dict(self._metadata)

    @property
    def installed_signals(self) -> List[signal.Signals]:
        return list(self._installed)

    @property
    def attached_threads(self) -> List[CrashReporterHandle]:
        with self._lock:
            return list(self._handles.values())

    # --------------------------------------------------------
    # Initialization
    # --------------------------------------------------------

    def config_init(self, report_dir: Optional[Path] = None) -> CrashReporterConfig:
        """Build and validate the library configuration."""
        directory = Path(report_dir) if report_dir else Path(tempfile.gettempdir())
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CrashReporterError(
                f"Cannot create crash report directory {directory}: {e.strerror or e}",
                operation="config_init",
                cause=e,
            ) from e

        if not os.access(directory, os.W_OK):
            raise CrashReporterError(
                f"Crash report directory is not writable: {directory}",
                operation="config_init",
            )

        return CrashReporterConfig(report_dir=directory)

    def init(self, config: CrashReporterConfig) -> None:
        """Open the report file for this process."""
        if self.is_enabled:
            return

        path = config.report_path()
        try:
            self._report_file = open(path, "a", encoding="utf-8")
        except OSError as e:
            raise CrashReporterError(
                f"Cannot open crash report file {path}: {e.strerror or e}",
                operation="init",
                cause=e,
            ) from e

        self._config = config
        logger.info(f"Crash reporter initialized | report={path}")

    def attach(self) -> CrashReporterHandle:
        """Attach a handle for the calling thread."""
        if not self.is_enabled:
            raise CrashReporterError("Crash reporter is not initialized", operation="attach")

        handle = getattr(self._local, "handle", None)
        if handle is not None:
            return handle

        current = threading.current_thread()
        handle = CrashReporterHandle(thread_name=current.name, thread_ident=threading.get_ident())
        self._local.handle = handle
        with self._lock:
            self._handles[handle.thread_ident] = handle

        logger.debug(f"Crash reporter handle attached | thread={handle.thread_name}")
        if self._installed:
            self._write_context()
        return handle

    def kv(self, key: str, value: str) -> None:
        """Set a key/value pair on the global report context."""
        if not self.is_enabled:
            raise CrashReporterError("Crash reporter is not initialized", operation="kv")
        if not key or not isinstance(key, str):
            raise CrashReporterError(f"Invalid metadata key: {key!r}", operation="kv")
        if not isinstance(value, str):
            raise CrashReporterError(f"Metadata value for {key} must be a string", operation="kv")

        self._metadata[key] = value
        self._write_context()

    # --------------------------------------------------------
    # Signal handlers
    # --------------------------------------------------------

    def install_signal_handlers(self, signals: Iterable[int]) -> List[signal.Signals]:
        """
        Install fatal-signal handlers.

        Failing to cover a signal is a warning, never an error.

        Returns:
            Signals now covered by a crash handler
        """
        if not self.is_enabled:
            raise CrashReporterError("Crash reporter is not initialized", operation="install")

        requested: List[signal.Signals] = []
        for signum in signals:
            try:
                sig = signal.Signals(signum)
            except ValueError:
                logger.warning(f"warning: failed to set signal handler {signum}: unknown signal")
                continue
            if sig not in requested:
                requested.append(sig)

        try:
            self._fault_handler.enable(file=self._report_file, all_threads=self._config.all_threads)
        except (RuntimeError, OSError, ValueError) as e:
            for sig in requested:
                logger.warning(f"warning: failed to set signal handler {sig.name}: {e}")
            return []

        installed: List[signal.Signals] = []
        for sig in requested:
            if sig not in FAULTHANDLER_SIGNALS:
                logger.warning(
                    f"warning: failed to set signal handler {sig.name}: not a fatal fault signal"
                )
                continue
            installed.append(sig)

        self._installed = installed
        self._write_context()
        logger.info(f"Crash handlers installed for {', '.join(s.name for s in installed)}")
        return installed

    # --------------------------------------------------------
    # Report context
    # --------------------------------------------------------

    def build_context(self) -> CrashContext:
        return CrashContext(
            application=self._metadata.get("application"),
            version=self._metadata.get("version"),
            pid=os.getpid(),
            hostname=socket.gethostname(),
            signals=[s.name for s in self._installed],
            metadata=dict(self._metadata),
            threads=[
                AttachedThread(name=h.thread_name, ident=h.thread_ident, attached_at=h.attached_at)
                for h in self.attached_threads
            ],
        )

    def _write_context(self) -> None:
        line = self.build_context().model_dump_json()
        with self._lock:
            try:
                self._report_file.write(line + "\n")
                self._report_file.flush()
            except OSError as e:
                raise CrashReporterError(
                    f"Cannot write crash context: {e.strerror or e}",
                    operation="write_context",
                    cause=e,
                ) from e

    # --------------------------------------------------------
    # Shutdown
    # --------------------------------------------------------

    def shutdown(self, remove_report: bool = True) -> None:
        """Disable handlers and close the report file after an orderly exit."""
        if not self.is_enabled:
            return

        if self._installed:
            self._fault_handler.disable()
            self._installed = []

        path = self.report_path
        self._report_file.close()
        self._report_file = None
        self._local = threading.local()
        with self._lock:
            self._handles.clear()

        if remove_report and path is not None:
            path.unlink(missing_ok=True)


# ============================================================
# PROCESS-WIDE SINGLETON
# ============================================================

_reporter: Optional[CrashReporter] = None
_reporter_lock = threading.Lock()


def get_reporter() -> CrashReporter:
    """Get the process-wide crash reporter."""
    global _reporter
    with _reporter_lock:
        if _reporter is None:
            _reporter = CrashReporter()
        return _reporter


def set_reporter(reporter: Optional[CrashReporter]) -> None:
    """Replace the process-wide crash reporter."""
    global _reporter
    with _reporter_lock:
        _reporter = reporter


def attach_current_thread() -> Optional[CrashReporterHandle]:
    """
    Attach the calling thread to crash reporting.

    A no-op returning None when reporting was never enabled.
    """
    reporter = _reporter
    if reporter is None or not reporter.is_enabled:
        return None
    return reporter.attach()


__all__ = [
    "FATAL_SIGNALS",
    "FAULTHANDLER_SIGNALS",
    "CrashReporterConfig",
    "CrashReporterHandle",
    "CrashReporter",
    "get_reporter",
    "set_reporter",
    "attach_current_thread",
]
