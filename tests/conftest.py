"""
Shared test fixtures.

Fake collaborators record every call the orchestrator makes so
tests can assert on order and arguments without forking,
binding sockets or touching /var.
"""

import errno
import logging
import os
from ipaddress import IPv4Address
from typing import Any, Callable, List, Optional, Tuple

import pytest

from broker import BrokerServices
from broker.base import ConfigStore, Listener, ModuleLoader, WorkerPool
from core.exceptions import ListenerStartupError, ModuleLoadError
from crash_reporting import reporter as reporter_module
from daemonization.process_ops import ProcessOps


# ============================================================
# FAKE COLLABORATORS
# ============================================================

class FakeModuleLoader(ModuleLoader):
    def __init__(self, calls: List[Tuple[str, Any]], failing: Tuple[str, ...] = ()):
        self.calls = calls
        self.failing = failing
        self.loaded: List[Tuple[str, str]] = []
        self.globals_error: Optional[Exception] = None

    def load(self, search_dir, name):
        self.calls.append(("load", (str(search_dir), name)))
        if name in self.failing:
            raise ModuleLoadError(f"Cannot load {name}", module_name=name, search_dir=str(search_dir))
        self.loaded.append((str(search_dir), name))
        return object()

    def init_globals(self, search_dir):
        self.calls.append(("module_loader.init_globals", str(search_dir)))
        if self.globals_error is not None:
            raise self.globals_error


class FakeConfigStore(ConfigStore):
    def __init__(self, calls: List[Tuple[str, Any]]):
        self.calls = calls

    def initialize(self, node_identity, config_path, queue_path):
        self.calls.append(("config_store.initialize", (node_identity, config_path, queue_path)))


class FakeWorkerPool(WorkerPool):
    def __init__(self, calls: List[Tuple[str, Any]]):
        self.calls = calls

    def start(self, thread_count):
        self.calls.append(("worker_pool.start", thread_count))

    def stop(self):
        self.calls.append(("worker_pool.stop", None))


class FakeListener(Listener):
    """Reports ready on the requested port, then returns or fails."""

    def __init__(self, calls: List[Tuple[str, Any]]):
        self.calls = calls
        self.fail_to_bind = False
        self.error_after_ready: Optional[Exception] = None
        self.observed_state: List[Any] = []
        self.state_check: Optional[Callable[[], Any]] = None

    def serve(self, port, web_root=None, on_ready=None):
        self.calls.append(("listener.serve", (port, web_root)))
        if self.fail_to_bind:
            raise ListenerStartupError(f"Cannot bind 0.0.0.0:{port}: Address in use", port=port)
        if on_ready is not None:
            on_ready(port)
        if self.state_check is not None:
            self.observed_state.append(self.state_check())
        if self.error_after_ready is not None:
            raise self.error_after_ready

    def stop(self):
        self.calls.append(("listener.stop", None))


class FakeIdentityResolver:
    def __init__(self, calls: List[Tuple[str, Any]], identity: str = "192.0.2.10"):
        self.calls = calls
        self.identity = IPv4Address(identity)

    def resolve(self):
        self.calls.append(("identity.resolve", None))
        return self.identity


class FakeDaemonizer:
    def __init__(self, calls: List[Tuple[str, Any]]):
        self.calls = calls
        self.error: Optional[Exception] = None

    def daemonize(self):
        self.calls.append(("daemonize", None))
        if self.error is not None:
            raise self.error


class FakeCrashIntegrator:
    def __init__(self, calls: List[Tuple[str, Any]]):
        self.calls = calls
        self.error: Optional[Exception] = None

    @property
    def reporter(self):
        return self

    def setup(self, report_dir=None):
        self.calls.append(("crash_reporting.setup", report_dir))
        if self.error is not None:
            raise self.error
        return []

    def shutdown(self):
        self.calls.append(("crash_reporting.shutdown", None))


class ParentExited(Exception):
    """Raised by RecordingProcessOps in place of os._exit()."""

    def __init__(self, status: int):
        super().__init__(status)
        self.status = status


class RecordingProcessOps(ProcessOps):
    """Records OS calls; fork() returns the scripted pids."""

    def __init__(self, fork_results=(0, 0), fail_on: Optional[str] = None, null_fd: int = 7):
        super().__init__()
        self.calls: List[Tuple[str, Any]] = []
        self.fork_results = list(fork_results)
        self.fail_on = fail_on
        self.null_fd = null_fd

    def _maybe_fail(self, name):
        if self.fail_on == name:
            raise OSError(errno.EAGAIN, os.strerror(errno.EAGAIN))

    def open_null(self, flags):
        self.calls.append(("open_null", flags))
        self._maybe_fail("open_null")
        return self.null_fd

    def dup2(self, fd, target):
        self.calls.append(("dup2", (fd, target)))
        self._maybe_fail("dup2")

    def close(self, fd):
        self.calls.append(("close", fd))

    def fork(self):
        self.calls.append(("fork", None))
        self._maybe_fail("fork")
        return self.fork_results.pop(0)

    def setsid(self):
        self.calls.append(("setsid", None))
        self._maybe_fail("setsid")

    def exit_parent(self, status=0):
        self.calls.append(("exit_parent", status))
        raise ParentExited(status)

    def flush_stdio(self):
        self.calls.append(("flush_stdio", None))


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def calls() -> List[Tuple[str, Any]]:
    """Shared, ordered call log for every fake collaborator."""
    return []


@pytest.fixture
def fake_services(calls):
    return BrokerServices(
        module_loader=FakeModuleLoader(calls),
        config_store=FakeConfigStore(calls),
        worker_pool=FakeWorkerPool(calls),
        listener=FakeListener(calls),
    )


@pytest.fixture
def fake_identity_resolver(calls):
    return FakeIdentityResolver(calls)


@pytest.fixture
def fake_daemonizer(calls):
    return FakeDaemonizer(calls)


@pytest.fixture
def fake_crash_integrator(calls):
    return FakeCrashIntegrator(calls)


@pytest.fixture
def module_loader_factory():
    return FakeModuleLoader


@pytest.fixture
def listener_factory():
    return FakeListener


@pytest.fixture
def recording_ops_factory():
    return RecordingProcessOps


@pytest.fixture
def parent_exited():
    return ParentExited


@pytest.fixture(autouse=True)
def isolated_crash_reporter():
    """Keep the process-wide crash reporter out of other tests."""
    reporter_module.set_reporter(None)
    yield
    current = reporter_module._reporter
    if current is not None:
        current.shutdown()
    reporter_module.set_reporter(None)


@pytest.fixture(autouse=True)
def restore_logger_levels():
    """Undo debug-flag level changes."""
    names = [
        "broker.worker_pool",
        "broker.module_loader",
        "broker.listener",
        "broker.config_store",
        "configuration",
        "node_identity",
        "crash_reporting",
    ]
    levels = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)
