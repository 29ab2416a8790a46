"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
The startup orchestrator of a broker node.

- Runs the startup stages in strict order
- Owns the lifecycle state machine
- Owns the exit policy: one catch point, immediate termination
- Hands control to config store, worker pool and listener

============================================================
EXIT POLICY
============================================================
- 0   usage requested, or orderly shutdown after serving
- 255 any configuration, identity, daemonization,
      crash-reporter, collaborator or listener failure

A failed stage is reported on stderr and in the log, the
state machine enters TERMINATED, and no later stage runs.
Subsystems already started are not cleaned up.

============================================================
"""

import json
import logging
import logging.handlers
import os
import signal
import sys
import time
from datetime import datetime, timezone
from ipaddress import IPv4Address
from pathlib import Path
from typing import IO, Any, Callable, Mapping, Optional, Sequence, TypeVar

from broker import BrokerServices
from configuration import (
    FORBIDDEN_NODE_IDENTITIES,
    ConfigurationResolver,
    LogFormat,
    StartupConfiguration,
    UsageRequested,
    apply_debug_flags,
)
from core.constants import (
    APPLICATION_NAME,
    ENV_LOG_FORMAT,
    ENV_LOG_LEVEL,
    EXIT_SUCCESS,
    VERSION,
)
from core.exceptions import (
    BrokerException,
    ConfigurationError,
    IdentityResolutionError,
    ListenerStartupError,
    Severity,
    wrap_exception,
)
from core.state_manager import DaemonLifecycleState, LifecycleStateManager
from crash_reporting import CrashReportingIntegrator
from daemonization import DaemonizationSupervisor
from node_identity import NodeIdentityResolver

from .models import StageResult, StartupReport, StartupStage


logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================
# LOGGING SETUP
# ============================================================

_LOG_RECORD_RESERVED = set(logging.LogRecord(None, 0, "", 0, "", (), None).__dict__.keys())


class JsonFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "process": record.process,
            "thread": record.threadName,
        }

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in payload or key.startswith("_") or key in _LOG_RECORD_RESERVED:
                continue
            payload[key] = value

        return json.dumps(payload, default=str)


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Set up process logging.

    Replaces only the handler a previous call installed.

    Args:
        level: Log level
        log_format: Output format (text or json)
        log_file: Log file path (stderr if None)

    Returns:
        Configured logger
    """
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    if str(log_format).lower() == LogFormat.JSON.value:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | {APPLICATION_NAME}[%(process)d] | %(name)s | %(message)s"
        )

    if log_file is not None:
        handler: logging.Handler = logging.handlers.WatchedFileHandler(str(log_file))
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler._fqd_handler = True

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if getattr(existing, "_fqd_handler", False):
            root_logger.removeHandler(existing)
            existing.close()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    return logging.getLogger("orchestrator")


# ============================================================
# STARTUP ABORT
# ============================================================

class StartupAborted(Exception):
    """A stage failed and the process must exit with exit_status."""

    def __init__(self, exit_status: int):
        super().__init__(f"startup aborted with status {exit_status}")
        self.exit_status = exit_status


# ============================================================
# STARTUP ORCHESTRATOR
# ============================================================

class StartupOrchestrator:
    """
    Startup orchestrator.

    This is the single entrypoint of a broker node.
    It sequences every startup step and decides the exit status.
    """

    def __init__(
        self,
        services: Optional[BrokerServices] = None,
        identity_resolver: Optional[NodeIdentityResolver] = None,
        daemonizer: Optional[DaemonizationSupervisor] = None,
        crash_integrator: Optional[CrashReportingIntegrator] = None,
        state_manager: Optional[LifecycleStateManager] = None,
        configure_logging: bool = True,
        stdout: Optional[IO[str]] = None,
        stderr: Optional[IO[str]] = None,
    ):
        self._services = services or BrokerServices.default()
        self._identity_resolver = identity_resolver or NodeIdentityResolver()
        self._daemonizer = daemonizer or DaemonizationSupervisor()
        self._crash_integrator = crash_integrator or CrashReportingIntegrator()
        self._state = state_manager or LifecycleStateManager()
        self._configure_logging = configure_logging
        self._stdout = stdout
        self._stderr = stderr

        self._resolver = ConfigurationResolver(self._services.module_loader)
        self._config: Optional[StartupConfiguration] = None
        self._report = StartupReport()

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def config(self) -> Optional[StartupConfiguration]:
        """Configuration handed to collaborators, None before validation."""
        return self._config

    @property
    def state_manager(self) -> LifecycleStateManager:
        return self._state

    @property
    def report(self) -> StartupReport:
        return self._report

    @property
    def services(self) -> BrokerServices:
        return self._services

    # --------------------------------------------------------
    # Run
    # --------------------------------------------------------

    def run(self, argv: Sequence[str], environ: Optional[Mapping[str, str]] = None) -> int:
        """
        Run the node from startup to shutdown.

        Args:
            argv: Command-line arguments, program name excluded
            environ: Environment mapping (os.environ if None)

        Returns:
            Process exit status
        """
        environ = os.environ if environ is None else environ

        if self._configure_logging:
            setup_logging(
                environ.get(ENV_LOG_LEVEL, "INFO"),
                environ.get(ENV_LOG_FORMAT, LogFormat.TEXT.value),
            )

        logger.info(f"{APPLICATION_NAME} {VERSION} starting | pid={os.getpid()}")

        try:
            status = self._run_stages(list(argv), environ)
        except UsageRequested as usage:
            self._write(self._stdout or sys.stdout, usage.usage)
            self._state.terminate(EXIT_SUCCESS, "Usage requested")
            status = EXIT_SUCCESS
        except StartupAborted as aborted:
            status = aborted.exit_status

        self._report.exit_status = status
        return status

    def _run_stages(self, argv: Sequence[str], environ: Mapping[str, str]) -> int:
        host_identity = self._run_stage(
            StartupStage.RESOLVE_IDENTITY, self._identity_resolver.resolve
        )
        config = self._run_stage(
            StartupStage.PARSE_CONFIGURATION, lambda: self._parse_configuration(argv, environ)
        )
        config = self._run_stage(
            StartupStage.VALIDATE_IDENTITY, lambda: self._validate_identity(config, host_identity)
        )
        self._config = config
        logger.info(
            f"Node configuration | nodeid={config.node_identity} | port={config.listen_port} "
            f"| threads={config.worker_thread_count} | foreground={config.run_in_foreground}"
        )

        self._run_stage(StartupStage.IGNORE_SIGPIPE, self._ignore_sigpipe)
        self._run_stage(StartupStage.DAEMONIZE, lambda: self._enter_process_mode(config))

        if config.crash_reporting_enabled:
            self._run_stage(
                StartupStage.CRASH_REPORTING,
                lambda: self._crash_integrator.setup(config.crash_report_dir),
            )
        else:
            self._skip_stage(StartupStage.CRASH_REPORTING, "crash reporting not requested")

        services = self._services
        self._run_stage(
            StartupStage.INIT_CONFIG_STORE,
            lambda: services.config_store.initialize(
                config.node_identity,
                config.config_store_path,
                config.queue_storage_path,
            ),
        )
        self._run_stage(
            StartupStage.START_WORKERS,
            lambda: services.worker_pool.start(config.worker_thread_count),
        )
        self._run_stage(
            StartupStage.RUN_LISTENER,
            lambda: services.listener.serve(
                config.listen_port,
                config.web_root_path,
                self._on_listener_ready,
            ),
        )
        self._run_stage(StartupStage.STOP_WORKERS, self._stop_workers)

        self._state.terminate(EXIT_SUCCESS, "Listener stopped")
        logger.info(f"{APPLICATION_NAME} exiting")
        return EXIT_SUCCESS

    # --------------------------------------------------------
    # Stage runner
    # --------------------------------------------------------

    def _run_stage(self, stage: StartupStage, fn: Callable[[], T]) -> T:
        logger.debug(f"Stage {stage.order}: {stage.description}")
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()

        try:
            result = fn()
        except UsageRequested:
            raise
        except BrokerException as e:
            self._abort(stage, e, started_at, start)
        except Exception as e:
            error = wrap_exception(
                e,
                BrokerException,
                f"Unexpected error during {stage.stage_id}: {type(e).__name__}: {e}",
                severity=Severity.CRITICAL,
            )
            logger.exception(f"Unexpected error during {stage.stage_id}")
            self._abort(stage, error, started_at, start)

        self._report.add_stage_result(StageResult(
            stage=stage,
            success=True,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            duration_seconds=time.monotonic() - start,
        ))
        return result

    def _skip_stage(self, stage: StartupStage, reason: str) -> None:
        now = datetime.now(timezone.utc)
        self._report.add_stage_result(StageResult(
            stage=stage,
            success=True,
            skipped=True,
            started_at=now,
            completed_at=now,
            duration_seconds=0.0,
            context={"reason": reason},
        ))
        logger.debug(f"Stage {stage.order} skipped: {reason}")

    def _abort(
        self,
        stage: StartupStage,
        error: BrokerException,
        started_at: datetime,
        start: float,
    ) -> None:
        self._report.add_stage_result(StageResult(
            stage=stage,
            success=False,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            duration_seconds=time.monotonic() - start,
            error=error.message,
            error_type=type(error).__name__,
            context=error.to_dict(),
        ))

        logger.error(f"Stage {stage.stage_id} failed: {error.to_log_format()}")

        stderr = self._stderr or sys.stderr
        self._write(stderr, error.message)
        if isinstance(error, ConfigurationError) and error.show_usage:
            self._write(stderr, self._resolver.usage())
        if isinstance(error, ListenerStartupError):
            self._write(stderr, "Listener could not start. Exiting.")

        self._state.terminate(
            error.exit_code,
            f"{stage.stage_id} failed: {error.message}",
            context={"error_type": type(error).__name__},
        )
        raise StartupAborted(error.exit_code) from error

    # --------------------------------------------------------
    # Stages
    # --------------------------------------------------------

    def _parse_configuration(
        self, argv: Sequence[str], environ: Mapping[str, str]
    ) -> StartupConfiguration:
        config = self._resolver.resolve(argv, environ)

        if self._configure_logging:
            try:
                setup_logging(config.log_level, config.log_format.value, config.log_file)
            except OSError as e:
                raise ConfigurationError(
                    f"Cannot open log file {config.log_file}: {e.strerror or e}",
                    option="--log-file",
                    actual_value=config.log_file,
                    cause=e,
                ) from e

        apply_debug_flags(config.debug_flags)
        self._services.module_loader.init_globals(config.module_search_dir)
        return config

    def _validate_identity(
        self, config: StartupConfiguration, host_identity: IPv4Address
    ) -> StartupConfiguration:
        if config.node_identity is not None:
            return config

        if host_identity in FORBIDDEN_NODE_IDENTITIES:
            raise IdentityResolutionError("Could not determine host address, use -n <ip>")
        return config.with_node_identity(host_identity)

    def _ignore_sigpipe(self) -> None:
        if hasattr(signal, "SIGPIPE"):
            signal.signal(signal.SIGPIPE, signal.SIG_IGN)

    def _enter_process_mode(self, config: StartupConfiguration) -> None:
        if config.run_in_foreground:
            self._state.transition_to(DaemonLifecycleState.FOREGROUND, "Foreground requested")
            return

        self._state.transition_to(DaemonLifecycleState.DAEMONIZING, "Detaching")
        self._daemonizer.daemonize()
        self._state.transition_to(
            DaemonLifecycleState.BACKGROUND,
            "Detached from controlling terminal",
            context={"pid": os.getpid()},
        )

    def _on_listener_ready(self, port: int) -> None:
        logger.info(f"Listening on port: {port}")
        self._state.transition_to(
            DaemonLifecycleState.RUNNING,
            f"Listening on port {port}",
            context={"port": port},
        )

    def _stop_workers(self) -> None:
        self._services.worker_pool.stop()
        if self._config is not None and self._config.crash_reporting_enabled:
            self._crash_integrator.reporter.shutdown()

    @staticmethod
    def _write(stream: IO[str], text: str) -> None:
        stream.write(text if text.endswith("\n") else text + "\n")
        stream.flush()


def create_orchestrator(**kwargs: Any) -> StartupOrchestrator:
    """Create an orchestrator wired to the default collaborators."""
    return StartupOrchestrator(**kwargs)


__all__ = [
    "JsonFormatter",
    "setup_logging",
    "StartupAborted",
    "StartupOrchestrator",
    "create_orchestrator",
]
