"""
Tests for the default broker collaborators.

============================================================
PURPOSE
============================================================
Covers the module loader, the SQLite config store and the
thread worker pool.

TEST PRINCIPLES:
- Failures surface as typed bootstrap exceptions
- The worker pool starts exactly N threads and drains on stop

============================================================
"""

import logging
import sys
import threading
import time
from ipaddress import IPv4Address

import pytest

from broker import BrokerServices
from broker.config_store import NODE_IDENTITY_KEY, QUEUE_PATH_KEY, SqliteConfigStore
from broker.listener import AsyncioListener
from broker.module_loader import PluginModuleLoader, module_key
from broker.worker_pool import ThreadWorkerPool
from configuration import ConfigurationResolver
from core.exceptions import ConfigStoreError, ModuleLoadError, WorkerPoolError
from crash_reporting import CrashReporter, set_reporter


# ============================================================
# MODULE LOADER
# ============================================================

@pytest.fixture
def module_dir(tmp_path):
    directory = tmp_path / "modules"
    directory.mkdir()
    yield directory
    for name in list(sys.modules):
        if name.startswith("fqd_module_"):
            sys.modules.pop(name, None)


class TestPluginModuleLoader:
    """Loading modules named by -m."""

    def test_loads_relative_name_and_calls_hook(self, module_dir):
        (module_dir / "route_alpha.py").write_text(
            "HOOK_CALLS = []\n"
            "def on_load():\n"
            "    HOOK_CALLS.append('loaded')\n"
        )
        loader = PluginModuleLoader()

        module = loader.load(module_dir, "route_alpha")

        assert module.HOOK_CALLS == ["loaded"]
        assert loader.loaded_names == ["route_alpha"]

    def test_second_load_is_cached(self, module_dir):
        (module_dir / "route_beta.py").write_text(
            "HOOK_CALLS = []\n"
            "def on_load():\n"
            "    HOOK_CALLS.append('loaded')\n"
        )
        loader = PluginModuleLoader()

        first = loader.load(module_dir, "route_beta")
        second = loader.load(module_dir, "route_beta")

        assert first is second
        assert first.HOOK_CALLS == ["loaded"]

    def test_name_with_suffix_and_absolute_path(self, module_dir, tmp_path):
        (module_dir / "route_gamma.py").write_text("VALUE = 1\n")
        loader = PluginModuleLoader()

        assert loader.load(module_dir, "route_gamma.py").VALUE == 1
        assert loader.load(tmp_path / "elsewhere", str(module_dir / "route_gamma.py")).VALUE == 1

    def test_installed_package_name_is_not_a_module_file(self, module_dir):
        loader = PluginModuleLoader()

        with pytest.raises(ModuleLoadError, match="Module file not found"):
            loader.load(module_dir, "json")
        assert loader.loaded_names == []

    def test_same_name_in_two_directories_loads_both(self, tmp_path, module_dir):
        first, second = tmp_path / "a", tmp_path / "b"
        for directory in (first, second):
            directory.mkdir()
            (directory / "routing.py").write_text(f"ORIGIN = {directory.name!r}\n")
        loader = PluginModuleLoader()

        from_first = loader.load(first, "routing")
        from_second = loader.load(second, "routing")

        assert (from_first.ORIGIN, from_second.ORIGIN) == ("a", "b")
        assert loader.loaded["routing"] is from_second
        assert len(loader.loaded_paths) == 2

    def test_later_search_dir_applies_to_later_modules(self, tmp_path, module_dir):
        first, second = tmp_path / "a", tmp_path / "b"
        for directory in (first, second):
            directory.mkdir()
            (directory / "routing.py").write_text(f"ORIGIN = {directory.name!r}\n")
        loader = PluginModuleLoader()

        ConfigurationResolver(loader).resolve(
            ["-D", "-l", str(first), "-m", "routing", "-l", str(second), "-m", "routing"], {}
        )

        assert loader.loaded["routing"].ORIGIN == "b"

    @pytest.mark.parametrize("name", ["missing/route", "missing.py", "no_such_module_anywhere_fq"])
    def test_missing_module(self, module_dir, name):
        with pytest.raises(ModuleLoadError) as exc_info:
            PluginModuleLoader().load(module_dir, name)
        assert exc_info.value.context["module_name"] == name

    def test_empty_name(self, module_dir):
        with pytest.raises(ModuleLoadError):
            PluginModuleLoader().load(module_dir, "")

    def test_broken_module(self, module_dir):
        path = module_dir / "route_broken.py"
        path.write_text("def oops(:\n")
        with pytest.raises(ModuleLoadError):
            PluginModuleLoader().load(module_dir, "route_broken")
        assert module_key(path.resolve()) not in sys.modules

    def test_failing_hook(self, module_dir):
        (module_dir / "route_hook.py").write_text(
            "def on_load():\n"
            "    raise RuntimeError('refusing to load')\n"
        )
        with pytest.raises(ModuleLoadError, match="refusing to load"):
            PluginModuleLoader().load(module_dir, "route_hook")


class TestGlobalFunctions:
    """init_globals over the loaded modules."""

    def test_registers_exports_in_load_order(self, module_dir):
        (module_dir / "route_one.py").write_text(
            "def hash_key(v):\n    return 1\n"
            "def pick(v):\n    return 'one'\n"
            "GLOBAL_FUNCTIONS = {'hash_key': hash_key, 'pick': pick}\n"
        )
        (module_dir / "route_two.py").write_text(
            "def pick(v):\n    return 'two'\n"
            "GLOBAL_FUNCTIONS = {'pick': pick}\n"
        )
        (module_dir / "route_plain.py").write_text("VALUE = 1\n")
        loader = PluginModuleLoader()
        for name in ("route_one", "route_two", "route_plain"):
            loader.load(module_dir, name)

        loader.init_globals(module_dir)

        functions = loader.global_functions
        assert sorted(functions) == ["hash_key", "pick"]
        assert functions["pick"](None) == "two"
        assert loader.globals_dir == module_dir

    def test_no_modules_gives_empty_registry(self, tmp_path):
        loader = PluginModuleLoader()
        loader.init_globals(tmp_path / "does-not-exist")

        assert loader.global_functions == {}
        assert loader.globals_dir == tmp_path / "does-not-exist"

    @pytest.mark.parametrize("export", ["['not', 'a', 'mapping']", "{'pick': 42}"])
    def test_malformed_export_fails(self, module_dir, export):
        (module_dir / "route_bad.py").write_text(f"GLOBAL_FUNCTIONS = {export}\n")
        loader = PluginModuleLoader()
        loader.load(module_dir, "route_bad")

        with pytest.raises(ModuleLoadError):
            loader.init_globals(module_dir)


# ============================================================
# CONFIG STORE
# ============================================================

@pytest.fixture
def store(tmp_path):
    store = SqliteConfigStore(
        default_config_path=tmp_path / "default" / "fqd.sqlite",
        default_queue_path=tmp_path / "default" / "queues",
    )
    yield store
    store.close()


class TestSqliteConfigStore:
    """Config store initialization."""

    def test_initialize_with_explicit_paths(self, store, tmp_path):
        config_path = tmp_path / "cfg" / "node.sqlite"
        queue_path = tmp_path / "q"

        store.initialize(IPv4Address("10.0.0.5"), config_path, queue_path)

        assert config_path.exists()
        assert queue_path.is_dir()
        assert store.settings() == {
            NODE_IDENTITY_KEY: "10.0.0.5",
            QUEUE_PATH_KEY: str(queue_path),
        }

    def test_initialize_with_defaults(self, store, tmp_path):
        store.initialize(IPv4Address("10.0.0.6"), None, None)

        assert store.config_path == tmp_path / "default" / "fqd.sqlite"
        assert store.queue_path == tmp_path / "default" / "queues"
        assert store.node_identity == IPv4Address("10.0.0.6")

    def test_identity_change_warns(self, tmp_path, caplog):
        config_path = tmp_path / "node.sqlite"
        first = SqliteConfigStore()
        first.initialize(IPv4Address("10.0.0.5"), config_path, tmp_path / "q")
        first.close()

        second = SqliteConfigStore()
        with caplog.at_level(logging.WARNING, logger="broker.config_store"):
            second.initialize(IPv4Address("10.0.0.9"), config_path, tmp_path / "q")

        assert "10.0.0.5 -> 10.0.0.9" in caplog.text
        assert second.settings()[NODE_IDENTITY_KEY] == "10.0.0.9"
        second.close()

    def test_unusable_location_fails(self, store, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")

        with pytest.raises(ConfigStoreError):
            store.initialize(IPv4Address("10.0.0.5"), blocker / "fqd.sqlite", tmp_path / "q")

    def test_transaction_before_initialize_fails(self, store):
        with pytest.raises(ConfigStoreError):
            with store.transaction_scope():
                pass


# ============================================================
# WORKER POOL
# ============================================================

@pytest.fixture
def pool():
    pool = ThreadWorkerPool(join_timeout=10)
    yield pool
    pool.stop()


class TestThreadWorkerPool:
    """Start, submit, drain."""

    def test_starts_exactly_n_threads(self, pool):
        pool.start(4)

        names = {t.name for t in threading.enumerate() if t.name.startswith("fqd-worker-")}
        assert pool.thread_count == 4
        assert names == {f"fqd-worker-{i}" for i in range(4)}

    def test_stop_drains_queued_work(self, pool):
        results = []
        lock = threading.Lock()

        def work(value):
            time.sleep(0.001)
            with lock:
                results.append(value)

        pool.start(2)
        for value in range(25):
            pool.submit(work, value)
        pool.stop()

        assert sorted(results) == list(range(25))
        assert pool.processed == 25
        assert not pool.is_running

    def test_failing_work_does_not_kill_workers(self, pool):
        results = []

        def boom():
            raise ValueError("bad message")

        pool.start(1)
        pool.submit(boom)
        pool.submit(results.append, "after")
        pool.stop()

        assert pool.failed == 1
        assert results == ["after"]

    @pytest.mark.parametrize("count", [0, -1])
    def test_invalid_thread_count(self, pool, count):
        with pytest.raises(WorkerPoolError):
            pool.start(count)

    def test_double_start(self, pool):
        pool.start(1)
        with pytest.raises(WorkerPoolError):
            pool.start(1)

    def test_submit_requires_running_pool(self, pool):
        with pytest.raises(WorkerPoolError):
            pool.submit(print, "never")

    def test_stop_is_idempotent(self, pool):
        pool.start(1)
        pool.stop()
        pool.stop()
        assert pool.thread_count == 0

    def test_workers_attach_crash_handles(self, pool, tmp_path):
        reporter = CrashReporter()
        reporter.init(reporter.config_init(tmp_path))
        set_reporter(reporter)

        pool.start(2)
        pool.stop()

        names = {h.thread_name for h in reporter.attached_threads}
        assert names == {"fqd-worker-0", "fqd-worker-1"}


# ============================================================
# SERVICES BUNDLE
# ============================================================

class TestBrokerServices:
    """Default collaborator wiring."""

    def test_default_services(self):
        services = BrokerServices.default()

        assert isinstance(services.module_loader, PluginModuleLoader)
        assert isinstance(services.config_store, SqliteConfigStore)
        assert isinstance(services.worker_pool, ThreadWorkerPool)
        assert isinstance(services.listener, AsyncioListener)
