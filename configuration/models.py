"""
Configuration - Models.

============================================================
RESPONSIBILITY
============================================================
Defines the immutable startup configuration of a broker node.

- Built once by the configuration resolver
- Passed explicitly to every downstream collaborator
- Never mutated once the handoff begins

============================================================
"""

import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from ipaddress import IPv4Address
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from core.constants import (
    DEFAULT_LISTEN_PORT,
    DEFAULT_MODULE_SEARCH_DIR,
    DEFAULT_WORKER_THREADS,
)


UNKNOWN_NODE_IDENTITY = IPv4Address("0.0.0.0")
LOOPBACK_NODE_IDENTITY = IPv4Address("127.0.0.1")

# Identities a node may never announce to the cluster
FORBIDDEN_NODE_IDENTITIES = frozenset({UNKNOWN_NODE_IDENTITY, LOOPBACK_NODE_IDENTITY})

MAX_PORT = 65535


# ============================================================
# LOG FORMAT
# ============================================================

class LogFormat(Enum):
    """Log record rendering."""

    TEXT = "text"
    """Human-readable single-line records."""

    JSON = "json"
    """One JSON object per record."""


# ============================================================
# STARTUP CONFIGURATION
# ============================================================

@dataclass(frozen=True)
class StartupConfiguration:
    """
    Validated runtime configuration of a broker node.

    node_identity stays None until the orchestrator merges the
    host-derived identity in with with_node_identity().
    """

    # Cluster identity
    node_identity: Optional[IPv4Address] = None

    # Network
    listen_port: int = DEFAULT_LISTEN_PORT

    # Process model
    run_in_foreground: bool = False
    crash_reporting_enabled: bool = False
    worker_thread_count: int = DEFAULT_WORKER_THREADS

    # Storage locations (collaborator defaults when None)
    config_store_path: Optional[Path] = None
    queue_storage_path: Optional[Path] = None
    web_root_path: Optional[Path] = None

    # Modules
    module_search_dir: Path = Path(DEFAULT_MODULE_SEARCH_DIR)
    loaded_modules: Tuple[str, ...] = ()

    # Diagnostics
    debug_flags: Optional[str] = None
    log_level: str = "INFO"
    log_format: LogFormat = LogFormat.TEXT
    log_file: Optional[Path] = None
    crash_report_dir: Optional[Path] = None

    @property
    def node_identity_bytes(self) -> Optional[bytes]:
        """Four-byte network-byte-order encoding of the node identity."""
        if self.node_identity is None:
            return None
        return self.node_identity.packed

    @property
    def node_identity_value(self) -> Optional[int]:
        """32-bit node identity as read from its network-order bytes."""
        if self.node_identity is None:
            return None
        return int(self.node_identity)

    @property
    def has_usable_identity(self) -> bool:
        return (
            self.node_identity is not None
            and self.node_identity not in FORBIDDEN_NODE_IDENTITIES
        )

    def with_node_identity(self, identity: IPv4Address) -> "StartupConfiguration":
        """Return a copy carrying the given node identity."""
        return dataclasses.replace(self, node_identity=identity)

    def validate(self) -> List[str]:
        """
        Validate configuration values.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not 0 <= self.listen_port <= MAX_PORT:
            errors.append(f"listen_port must be in 0..{MAX_PORT}, got {self.listen_port}")

        if self.worker_thread_count <= 0:
            errors.append(
                f"worker_thread_count must be positive, got {self.worker_thread_count}"
            )

        if self.node_identity is not None and self.node_identity in FORBIDDEN_NODE_IDENTITIES:
            errors.append(f"node_identity cannot be {self.node_identity}")

        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            errors.append(f"Unknown log level: {self.log_level}")

        return errors

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""

        def _path(value: Optional[Path]) -> Optional[str]:
            return str(value) if value is not None else None

        return {
            "node_identity": str(self.node_identity) if self.node_identity is not None else None,
            "listen_port": self.listen_port,
            "run_in_foreground": self.run_in_foreground,
            "crash_reporting_enabled": self.crash_reporting_enabled,
            "worker_thread_count": self.worker_thread_count,
            "config_store_path": _path(self.config_store_path),
            "queue_storage_path": _path(self.queue_storage_path),
            "web_root_path": _path(self.web_root_path),
            "module_search_dir": str(self.module_search_dir),
            "loaded_modules": list(self.loaded_modules),
            "debug_flags": self.debug_flags,
            "log_level": self.log_level,
            "log_format": self.log_format.value,
            "log_file": _path(self.log_file),
            "crash_report_dir": _path(self.crash_report_dir),
        }


__all__ = [
    "UNKNOWN_NODE_IDENTITY",
    "LOOPBACK_NODE_IDENTITY",
    "FORBIDDEN_NODE_IDENTITIES",
    "MAX_PORT",
    "LogFormat",
    "StartupConfiguration",
]
