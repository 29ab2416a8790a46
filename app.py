#!/usr/bin/env python3
"""
fqd - Broker Node Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
Starts one node of the message-queue broker cluster.

- Same options as the fqd console script
- Daemonizes unless -D is given
- Exits 0 on orderly shutdown, 255 on any startup failure

============================================================
USAGE
============================================================
Foreground:
    python app.py -D -n 10.0.0.5 -p 7000 -t 2

Daemon with crash reports:
    python app.py -B --crash-dir /var/crash/fq --log-file /var/log/fqd.log

Environment-based configuration:
    FQ_DEBUG=route,conn FQD_LOG_LEVEL=DEBUG python app.py -D

============================================================
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.absolute()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from orchestrator.cli import main


if __name__ == "__main__":
    sys.exit(main())
