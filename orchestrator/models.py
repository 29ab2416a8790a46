"""
Orchestrator - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for the startup orchestrator.

- Startup stages with strict ordering
- Per-stage results
- Startup run summary

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================
# STARTUP STAGES
# ============================================================

class StartupStage(Enum):
    """
    Startup stages in strict order.

    Every stage completes, or the process terminates,
    before the next one begins.
    """

    # Identity and configuration (1-3)
    RESOLVE_IDENTITY = (1, "resolve_identity", "Resolve host identity")
    PARSE_CONFIGURATION = (2, "parse_configuration", "Parse command line and init global functions")
    VALIDATE_IDENTITY = (3, "validate_identity", "Ensure a usable node identity")

    # Process setup (4-6)
    IGNORE_SIGPIPE = (4, "ignore_sigpipe", "Ignore broken-pipe signals")
    DAEMONIZE = (5, "daemonize", "Detach from the controlling terminal")
    CRASH_REPORTING = (6, "crash_reporting", "Set up crash reporting")

    # Handoff (7-10)
    INIT_CONFIG_STORE = (7, "init_config_store", "Initialize configuration store")
    START_WORKERS = (8, "start_workers", "Start worker threads")
    RUN_LISTENER = (9, "run_listener", "Serve client connections")
    STOP_WORKERS = (10, "stop_workers", "Stop worker threads")

    def __init__(self, order: int, stage_id: str, description: str):
        self._order = order
        self._stage_id = stage_id
        self._description = description

    @property
    def order(self) -> int:
        """Get execution order."""
        return self._order

    @property
    def stage_id(self) -> str:
        """Get stage identifier."""
        return self._stage_id

    @property
    def description(self) -> str:
        """Get stage description."""
        return self._description

    @classmethod
    def get_ordered_stages(cls) -> List["StartupStage"]:
        """Get all stages in execution order."""
        return sorted(cls, key=lambda s: s.order)


# ============================================================
# RESULTS
# ============================================================

@dataclass
class StageResult:
    """Result of executing a stage."""

    stage: StartupStage
    success: bool
    started_at: datetime
    completed_at: datetime
    duration_seconds: float
    skipped: bool = False
    error: Optional[str] = None
    error_type: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> timedelta:
        """Get duration as timedelta."""
        return timedelta(seconds=self.duration_seconds)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "stage": self.stage.stage_id,
            "success": self.success,
            "skipped": self.skipped,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "error": self.error,
            "error_type": self.error_type,
            "context": self.context,
        }


@dataclass
class StartupReport:
    """Stage results of one orchestrator run."""

    stage_results: List[StageResult] = field(default_factory=list)
    failed_stage: Optional[StartupStage] = None
    error: Optional[str] = None
    exit_status: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.failed_stage is None and self.exit_status in (None, 0)

    @property
    def completed_stages(self) -> List[StartupStage]:
        """Stages that ran to completion, in order."""
        return [r.stage for r in self.stage_results if r.success and not r.skipped]

    def add_stage_result(self, result: StageResult) -> None:
        """Add a stage result."""
        self.stage_results.append(result)
        if not result.success:
            self.failed_stage = result.stage
            self.error = result.error

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "success": self.success,
            "exit_status": self.exit_status,
            "failed_stage": self.failed_stage.stage_id if self.failed_stage else None,
            "error": self.error,
            "stage_results": [r.to_dict() for r in self.stage_results],
        }


__all__ = ["StartupStage", "StageResult", "StartupReport"]
