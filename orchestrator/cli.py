"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line entry point of a broker node.

- Merges a working-directory .env file under the real environment
- Runs the startup orchestrator with the default collaborators
- Returns the process exit status

============================================================
USAGE
============================================================
fqd -D -n 10.0.0.5 -p 7000 -t 2
fqd -B -c /var/lib/fq/fqd.sqlite -q /var/lib/fq/queues
python app.py -h

============================================================
"""

import logging
import os
import sys
from typing import Dict, List, Mapping, Optional

from dotenv import dotenv_values

from .core import create_orchestrator


def load_environment(dotenv_path: str = ".env") -> Dict[str, str]:
    """Environment with .env values underneath os.environ."""
    file_values = {k: v for k, v in dotenv_values(dotenv_path).items() if v is not None}
    return {**file_values, **os.environ}


def main(argv: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])
        environ: Environment (default: .env merged under os.environ)

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]
    if environ is None:
        environ = load_environment()

    orchestrator = create_orchestrator()
    try:
        return orchestrator.run(argv, environ)
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
