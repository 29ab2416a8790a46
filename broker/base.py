"""
Broker - Collaborator Interfaces.

============================================================
PURPOSE
============================================================
Abstract interfaces for the broker subsystems the bootstrap
hands control to.

DESIGN PRINCIPLES:
- The bootstrap only knows these call contracts
- Routing, persistence layout and wire protocol stay behind them
- Fully testable with fake collaborators

============================================================
"""

from abc import ABC, abstractmethod
from ipaddress import IPv4Address
from pathlib import Path
from typing import Callable, Optional


ReadyCallback = Callable[[int], None]
"""Called by a listener with the bound port once it accepts connections."""


# ============================================================
# MODULE LOADER
# ============================================================

class ModuleLoader(ABC):
    """Loads routing modules named on the command line."""

    @abstractmethod
    def load(self, search_dir: Path, name: str) -> object:
        """
        Load a module immediately.

        Args:
            search_dir: Base directory for relative module names
            name: Module name or path

        Returns:
            The loaded module object

        Raises:
            ModuleLoadError: If the module cannot be loaded
        """

    @abstractmethod
    def init_globals(self, search_dir: Path) -> None:
        """
        Initialize the routing global functions once parsing is done.

        Args:
            search_dir: Module directory in effect after the last -l

        Raises:
            ModuleLoadError: If the global functions cannot be set up
        """


# ============================================================
# CONFIGURATION STORE
# ============================================================

class ConfigStore(ABC):
    """Persistent configuration and queue storage subsystem."""

    @abstractmethod
    def initialize(
        self,
        node_identity: IPv4Address,
        config_path: Optional[Path],
        queue_path: Optional[Path],
    ) -> None:
        """
        Initialize the store for this node.

        Raises:
            ConfigStoreError: If the store cannot be opened
        """


# ============================================================
# WORKER POOL
# ============================================================

class WorkerPool(ABC):
    """Fixed-size pool of message-processing threads."""

    @abstractmethod
    def start(self, thread_count: int) -> None:
        """
        Start exactly thread_count workers.

        Raises:
            WorkerPoolError: If the workers cannot be started
        """

    @abstractmethod
    def stop(self) -> None:
        """Stop all workers, draining queued work and joining threads."""


# ============================================================
# LISTENER
# ============================================================

class Listener(ABC):
    """Network accept/dispatch loop for client connections."""

    @abstractmethod
    def serve(
        self,
        port: int,
        web_root: Optional[Path] = None,
        on_ready: Optional[ReadyCallback] = None,
    ) -> None:
        """
        Bind to port and serve until shutdown. Blocks the caller.

        A normal return means orderly shutdown.

        Raises:
            ListenerStartupError: If the listener cannot bind or start
        """

    @abstractmethod
    def stop(self) -> None:
        """Ask a running serve() call to return. Safe from any thread."""


__all__ = [
    "ReadyCallback",
    "ModuleLoader",
    "ConfigStore",
    "WorkerPool",
    "Listener",
]
