"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the broker node bootstrap.

- Provides clear exception hierarchy
- Carries the process exit status of every fatal path
- Includes context for diagnostics

============================================================
EXCEPTION HIERARCHY
============================================================
BrokerException (base)
├── ConfigurationError
│   └── ModuleLoadError
├── IdentityResolutionError
├── SystemResourceError
├── CrashReporterError
├── ListenerStartupError
├── ConfigStoreError
├── WorkerPoolError
└── StateTransitionError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .constants import EXIT_FAILURE


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, the node cannot start."""

    CRITICAL = "critical"
    """Critical issue, the process is in an unknown state."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class BrokerException(Exception):
    """
    Base exception for all bootstrap errors.

    All exceptions carry:
    - severity: for log routing
    - context: for debugging
    - exit_code: process exit status when the error is fatal
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.HIGH
    default_exit_code: int = EXIT_FAILURE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        exit_code: Optional[int] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.cause = cause
        self.exit_code = exit_code if exit_code is not None else self.default_exit_code
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "exit_code": self.exit_code,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        line = f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
        if ctx_str:
            line += f" | {ctx_str}"
        return line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(BrokerException):
    """Malformed or invalid command-line input."""

    def __init__(
        self,
        message: str,
        option: Optional[str] = None,
        actual_value: Optional[Any] = None,
        show_usage: bool = False,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if option:
            context["option"] = option
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        self.show_usage = show_usage
        super().__init__(message, context=context, **kwargs)


class ModuleLoadError(ConfigurationError):
    """A module requested with -m could not be loaded."""

    def __init__(
        self,
        message: str,
        module_name: Optional[str] = None,
        search_dir: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if module_name:
            context["module_name"] = module_name
        if search_dir:
            context["search_dir"] = search_dir

        super().__init__(message, option="-m", context=context, **kwargs)


# ============================================================
# IDENTITY ERRORS
# ============================================================

class IdentityResolutionError(BrokerException):
    """Host identity could not be determined and no override was given."""

    def __init__(self, message: str, hostname: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})

        if hostname:
            context["hostname"] = hostname

        super().__init__(message, context=context, **kwargs)


# ============================================================
# SYSTEM ERRORS
# ============================================================

class SystemResourceError(BrokerException):
    """Descriptor redirection or fork failure while daemonizing."""

    default_severity = Severity.CRITICAL

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        errno: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if step:
            context["step"] = step
        if errno is not None:
            context["errno"] = errno

        super().__init__(message, context=context, **kwargs)


class CrashReporterError(BrokerException):
    """Crash reporter configuration or initialization failed."""

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})

        if operation:
            context["operation"] = operation

        super().__init__(message, context=context, **kwargs)


class StateTransitionError(BrokerException):
    """Invalid lifecycle state transition."""

    default_severity = Severity.CRITICAL

    def __init__(
        self,
        message: str,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if from_state:
            context["from_state"] = from_state
        if to_state:
            context["to_state"] = to_state

        super().__init__(message, context=context, **kwargs)


# ============================================================
# COLLABORATOR ERRORS
# ============================================================

class ConfigStoreError(BrokerException):
    """Persistent configuration/queue store could not be initialized."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})

        if path:
            context["path"] = path

        super().__init__(message, context=context, **kwargs)


class WorkerPoolError(BrokerException):
    """Worker-thread pool could not be started or stopped."""

    def __init__(self, message: str, thread_count: Optional[int] = None, **kwargs):
        context = kwargs.pop("context", {})

        if thread_count is not None:
            context["thread_count"] = thread_count

        super().__init__(message, context=context, **kwargs)


class ListenerStartupError(BrokerException):
    """Network listener could not bind or start."""

    def __init__(self, message: str, port: Optional[int] = None, **kwargs):
        context = kwargs.pop("context", {})

        if port is not None:
            context["port"] = port

        super().__init__(message, context=context, **kwargs)


# ============================================================
# EXCEPTION UTILITIES
# ============================================================

def wrap_exception(
    exc: BaseException,
    wrapper_class: type = BrokerException,
    message: Optional[str] = None,
    **kwargs,
) -> BrokerException:
    """Wrap a standard exception in a BrokerException."""
    msg = message or f"{type(exc).__name__}: {exc}"
    return wrapper_class(msg, cause=exc, **kwargs)


__all__ = [
    "Severity",
    "BrokerException",
    "ConfigurationError",
    "ModuleLoadError",
    "IdentityResolutionError",
    "SystemResourceError",
    "CrashReporterError",
    "StateTransitionError",
    "ConfigStoreError",
    "WorkerPoolError",
    "ListenerStartupError",
    "wrap_exception",
]
