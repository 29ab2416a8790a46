"""
Crash Reporting Package.

Optional fatal-signal crash reports for a broker node.

Components:
- reporter: Process-wide crash reporter over faulthandler
- integrator: Startup wiring (config, init, attach, metadata, handlers)
- schemas: Crash context records written to report files
"""

from .integrator import CrashReportingIntegrator
from .reporter import (
    FATAL_SIGNALS,
    CrashReporter,
    CrashReporterConfig,
    CrashReporterHandle,
    attach_current_thread,
    get_reporter,
    set_reporter,
)
from .schemas import AttachedThread, CrashContext

__all__ = [
    "CrashReportingIntegrator",
    "FATAL_SIGNALS",
    "CrashReporter",
    "CrashReporterConfig",
    "CrashReporterHandle",
    "attach_current_thread",
    "get_reporter",
    "set_reporter",
    "AttachedThread",
    "CrashContext",
]
