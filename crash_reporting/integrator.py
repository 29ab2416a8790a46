"""
Crash Reporting - Integrator.

============================================================
RESPONSIBILITY
============================================================
Wires the crash reporter into a starting broker node.

Sequence:
1. Library configuration
2. Initialization and main-thread attachment
3. Application metadata
4. Fatal-signal handlers

Steps 1-3 are fatal on failure. Step 4 only warns.

============================================================
"""

import logging
from pathlib import Path
from typing import List, Optional

from core.constants import APPLICATION_NAME, VERSION
from core.exceptions import BrokerException, CrashReporterError

from .reporter import FATAL_SIGNALS, CrashReporter, get_reporter, set_reporter


logger = logging.getLogger(__name__)


class CrashReportingIntegrator:
    """Sets up crash reporting for the running process."""

    def __init__(self, reporter: Optional[CrashReporter] = None):
        self._reporter = reporter

    @property
    def reporter(self) -> CrashReporter:
        if self._reporter is None:
            self._reporter = get_reporter()
        return self._reporter

    def setup(self, report_dir: Optional[Path] = None) -> List:
        """
        Enable crash reporting.

        Args:
            report_dir: Directory for report files (system temp dir if None)

        Returns:
            Signals covered by a crash handler

        Raises:
            CrashReporterError: If configuration, initialization,
                attachment or metadata fails
        """
        reporter = self.reporter

        try:
            library_config = reporter.config_init(report_dir)
            reporter.init(library_config)
            reporter.attach()
            reporter.kv("application", APPLICATION_NAME)
            reporter.kv("version", VERSION)
        except CrashReporterError:
            raise
        except (BrokerException, OSError) as e:
            raise CrashReporterError(f"Crash reporter setup failed: {e}", cause=e) from e

        # Worker threads attach through the process-wide reporter
        set_reporter(reporter)

        installed = reporter.install_signal_handlers(FATAL_SIGNALS)
        logger.info(f"Crash reporting enabled | report={reporter.report_path}")
        return installed


__all__ = ["CrashReportingIntegrator"]
