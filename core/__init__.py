"""
Core Module Package.

This package contains the core infrastructure components
that all other modules depend on.

Components:
- state_manager: Daemon lifecycle state machine
- exceptions: Custom exception hierarchy
- constants: System-wide constants and defaults
"""

from .constants import APPLICATION_NAME, VERSION, EXIT_SUCCESS, EXIT_FAILURE
from .state_manager import DaemonLifecycleState, LifecycleStateManager
from .exceptions import BrokerException

__all__ = [
    "APPLICATION_NAME",
    "VERSION",
    "EXIT_SUCCESS",
    "EXIT_FAILURE",
    "DaemonLifecycleState",
    "LifecycleStateManager",
    "BrokerException",
]
