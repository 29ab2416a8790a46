"""
Core Module - State Manager.

============================================================
RESPONSIBILITY
============================================================
Tracks the lifecycle state of the broker daemon process.

- Enforces the lifecycle state machine
- Records the exit status when the process terminates
- Keeps a bounded history of transitions

============================================================
STATE MACHINE
============================================================
NEW ──> FOREGROUND ─────────────────┐
 │                                  ├──> RUNNING ──> TERMINATED
 └──> DAEMONIZING ──> BACKGROUND ───┘

Every non-terminal state may also move directly to TERMINATED
when an unrecoverable failure occurs.

============================================================
"""

from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set
import logging
import threading

from .constants import EXIT_SUCCESS
from .exceptions import StateTransitionError


# ============================================================
# LIFECYCLE STATE
# ============================================================

class DaemonLifecycleState(Enum):
    """Lifecycle state of the daemon process."""

    NEW = "new"
    """Process started, nothing decided yet."""

    FOREGROUND = "foreground"
    """Staying attached to the controlling terminal."""

    DAEMONIZING = "daemonizing"
    """Detaching from the controlling terminal."""

    BACKGROUND = "background"
    """Both forks succeeded; running as a daemon."""

    RUNNING = "running"
    """Listener has been handed control."""

    TERMINATED = "terminated"
    """Process is exiting."""

    @property
    def is_terminal(self) -> bool:
        """Check if state is terminal."""
        return self == DaemonLifecycleState.TERMINATED

    @property
    def is_detached(self) -> bool:
        """Check if the process has left its controlling terminal."""
        return self == DaemonLifecycleState.BACKGROUND


# ============================================================
# STATE TRANSITIONS
# ============================================================

VALID_TRANSITIONS: Dict[DaemonLifecycleState, Set[DaemonLifecycleState]] = {
    DaemonLifecycleState.NEW: {
        DaemonLifecycleState.FOREGROUND,
        DaemonLifecycleState.DAEMONIZING,
        DaemonLifecycleState.TERMINATED,
    },
    DaemonLifecycleState.FOREGROUND: {
        DaemonLifecycleState.RUNNING,
        DaemonLifecycleState.TERMINATED,
    },
    DaemonLifecycleState.DAEMONIZING: {
        DaemonLifecycleState.BACKGROUND,
        DaemonLifecycleState.TERMINATED,
    },
    DaemonLifecycleState.BACKGROUND: {
        DaemonLifecycleState.RUNNING,
        DaemonLifecycleState.TERMINATED,
    },
    DaemonLifecycleState.RUNNING: {
        DaemonLifecycleState.TERMINATED,
    },
    DaemonLifecycleState.TERMINATED: set(),  # Terminal - no transitions
}


@dataclass
class StateTransition:
    """Record of a state transition."""

    transition_id: str
    from_state: DaemonLifecycleState
    to_state: DaemonLifecycleState
    reason: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    exit_status: Optional[int] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "transition_id": self.transition_id,
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
            "exit_status": self.exit_status,
            "context": self.context,
        }


# ============================================================
# STATE MANAGER
# ============================================================

class LifecycleStateManager:
    """
    Owns the daemon lifecycle state.

    The orchestrator drives it from the main thread; the listener
    may report readiness from its own thread, so transitions are
    serialized with a lock.
    """

    def __init__(
        self,
        initial_state: DaemonLifecycleState = DaemonLifecycleState.NEW,
        max_history: int = 50,
    ):
        self._state = initial_state
        self._reason = "Process start"
        self._exit_status: Optional[int] = None
        self._transition_count = 0
        self._history: List[StateTransition] = []
        self._max_history = max_history

        self._lock = threading.Lock()
        self._logger = logging.getLogger(__name__)

    @property
    def state(self) -> DaemonLifecycleState:
        """Get current lifecycle state."""
        return self._state

    @property
    def reason(self) -> str:
        """Get reason for current state."""
        return self._reason

    @property
    def exit_status(self) -> Optional[int]:
        """Exit status recorded on termination, None while alive."""
        return self._exit_status

    @property
    def is_terminated(self) -> bool:
        return self._state.is_terminal

    def get_history(self, limit: int = 10) -> List[StateTransition]:
        """Get transition history."""
        return self._history[-limit:]

    def visited_states(self) -> List[DaemonLifecycleState]:
        """States entered so far, in order."""
        if not self._history:
            return [self._state]
        return [self._history[0].from_state] + [t.to_state for t in self._history]

    def can_transition_to(self, target_state: DaemonLifecycleState) -> bool:
        """Check if transition to target state is valid."""
        return target_state in VALID_TRANSITIONS.get(self._state, set())

    def transition_to(
        self,
        target_state: DaemonLifecycleState,
        reason: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> StateTransition:
        """
        Transition to a new non-terminal state.

        Raises:
            StateTransitionError: If transition is invalid
        """
        if target_state.is_terminal:
            raise StateTransitionError(
                "Use terminate() to enter the terminated state",
                from_state=self._state.value,
                to_state=target_state.value,
            )
        return self._apply(target_state, reason, None, context)

    def terminate(
        self,
        exit_status: int = EXIT_SUCCESS,
        reason: str = "Orderly shutdown",
        context: Optional[Dict[str, Any]] = None,
    ) -> StateTransition:
        """Enter TERMINATED, recording the exit status."""
        return self._apply(DaemonLifecycleState.TERMINATED, reason, exit_status, context)

    def _apply(
        self,
        target_state: DaemonLifecycleState,
        reason: str,
        exit_status: Optional[int],
        context: Optional[Dict[str, Any]],
    ) -> StateTransition:
        with self._lock:
            if not self.can_transition_to(target_state):
                raise StateTransitionError(
                    f"Invalid state transition: {self._state.value} -> {target_state.value}",
                    from_state=self._state.value,
                    to_state=target_state.value,
                )

            self._transition_count += 1
            transition = StateTransition(
                transition_id=f"transition_{self._transition_count}",
                from_state=self._state,
                to_state=target_state,
                reason=reason,
                exit_status=exit_status,
                context=context or {},
            )

            old_state = self._state
            self._state = target_state
            self._reason = reason
            if target_state.is_terminal:
                self._exit_status = exit_status

            self._history.append(transition)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]

            self._logger.info(
                f"State transition: {old_state.value} -> {target_state.value} "
                f"| reason={reason}"
                + (f" | exit_status={exit_status}" if exit_status is not None else "")
            )

            return transition


__all__ = [
    "DaemonLifecycleState",
    "StateTransition",
    "LifecycleStateManager",
    "VALID_TRANSITIONS",
]
