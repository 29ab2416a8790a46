"""
Configuration Package.

Components:
- models: Immutable StartupConfiguration
- resolver: argv + environment -> StartupConfiguration
- debug_flags: Debug-flags string -> subsystem log levels
"""

from .debug_flags import apply_debug_flags, parse_debug_flags
from .models import (
    FORBIDDEN_NODE_IDENTITIES,
    UNKNOWN_NODE_IDENTITY,
    LogFormat,
    StartupConfiguration,
)
from .resolver import ConfigurationResolver, UsageRequested, usage_text

__all__ = [
    "apply_debug_flags",
    "parse_debug_flags",
    "FORBIDDEN_NODE_IDENTITIES",
    "UNKNOWN_NODE_IDENTITY",
    "LogFormat",
    "StartupConfiguration",
    "ConfigurationResolver",
    "UsageRequested",
    "usage_text",
]
