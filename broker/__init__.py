"""
Broker Collaborators Package.

Call contracts for the subsystems a broker node hands control to,
plus the default in-process implementations.

Components:
- base: Abstract collaborator interfaces
- module_loader: Routing module loading for -m
- config_store: SQLite configuration and queue store
- worker_pool: Thread worker pool
- listener: Asyncio TCP listener
"""

from dataclasses import dataclass

from .base import ConfigStore, Listener, ModuleLoader, ReadyCallback, WorkerPool
from .config_store import SqliteConfigStore
from .listener import AsyncioListener
from .module_loader import PluginModuleLoader
from .worker_pool import ThreadWorkerPool


@dataclass
class BrokerServices:
    """The collaborators a starting node hands control to."""

    module_loader: ModuleLoader
    config_store: ConfigStore
    worker_pool: WorkerPool
    listener: Listener

    @classmethod
    def default(cls) -> "BrokerServices":
        return cls(
            module_loader=PluginModuleLoader(),
            config_store=SqliteConfigStore(),
            worker_pool=ThreadWorkerPool(),
            listener=AsyncioListener(),
        )


__all__ = [
    "BrokerServices",
    "ReadyCallback",
    "ModuleLoader",
    "ConfigStore",
    "WorkerPool",
    "Listener",
    "PluginModuleLoader",
    "SqliteConfigStore",
    "ThreadWorkerPool",
    "AsyncioListener",
]
