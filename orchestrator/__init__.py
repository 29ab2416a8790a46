"""
Orchestrator Package - Node Startup Coordination.

============================================================
PACKAGE OVERVIEW
============================================================
This package is the SINGLE ENTRYPOINT that controls startup,
handoff and exit of a broker node.

============================================================
CORE PRINCIPLES
============================================================
1. Stages run strictly in order, one at a time
2. The first failure terminates the process
3. The configuration is immutable once handed off
4. Collaborators are only known by their call contracts

============================================================
STARTUP STAGES (10 in strict order)
============================================================
 1. RESOLVE_IDENTITY     - Resolve host identity
 2. PARSE_CONFIGURATION  - Parse command line, init global functions
 3. VALIDATE_IDENTITY    - Ensure a usable node identity
 4. IGNORE_SIGPIPE       - Ignore broken-pipe signals
 5. DAEMONIZE            - Detach unless -D
 6. CRASH_REPORTING      - Only with -B
 7. INIT_CONFIG_STORE    - Initialize configuration store
 8. START_WORKERS        - Start worker threads
 9. RUN_LISTENER         - Serve until shutdown
10. STOP_WORKERS         - Drain and join workers

============================================================
"""

from .core import StartupOrchestrator, create_orchestrator, setup_logging
from .models import StageResult, StartupReport, StartupStage

__all__ = [
    "StartupOrchestrator",
    "create_orchestrator",
    "setup_logging",
    "StageResult",
    "StartupReport",
    "StartupStage",
]
