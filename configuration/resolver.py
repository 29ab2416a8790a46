"""
Configuration - Resolver.

============================================================
RESPONSIBILITY
============================================================
Turns argv and the environment into a StartupConfiguration.

- getopt-compatible short options (-D -B -b -t -n -p -c -q -w -v -l -m -h)
- Long options for logging and crash report placement
- FQ_DEBUG supplies debug flags when -v is absent
- -m loads a module immediately, in command-line order,
  relative to the -l directory in effect at that point
- Every malformed value raises ConfigurationError

============================================================
USAGE
============================================================
fqd -D -n 10.0.0.5 -p 7000 -t 2
fqd -l /opt/fq/modules -m routing -m audit
fqd -B --crash-dir /var/crash/fq

============================================================
"""

import argparse
import logging
from ipaddress import AddressValueError, IPv4Address
from pathlib import Path
from typing import List, Mapping, NoReturn, Optional, Sequence

from broker.base import ModuleLoader
from core.constants import (
    APPLICATION_NAME,
    DEFAULT_LISTEN_PORT,
    DEFAULT_MODULE_SEARCH_DIR,
    DEFAULT_WORKER_THREADS,
    ENV_CRASH_DIR,
    ENV_DEBUG_FLAGS,
    ENV_LOG_FILE,
    ENV_LOG_FORMAT,
    ENV_LOG_LEVEL,
)
from core.exceptions import ConfigurationError

from .models import FORBIDDEN_NODE_IDENTITIES, MAX_PORT, LogFormat, StartupConfiguration


logger = logging.getLogger(__name__)


class UsageRequested(Exception):
    """Raised by -h; carries the usage text to print."""

    def __init__(self, usage: str):
        super().__init__("usage requested")
        self.usage = usage


# ============================================================
# USAGE TEXT
# ============================================================

def usage_text(prog: str = APPLICATION_NAME) -> str:
    """Build the usage message."""
    return "\n".join([
        f"{prog}:",
        "\t-h\t\tthis help message",
        "\t-D\t\trun in the foreground",
        "\t-B\t\tenable crash reporting",
        "\t-b\t\tdisable crash reporting (default)",
        f"\t-t <count>\tnumber of worker threads to use (default {DEFAULT_WORKER_THREADS})",
        "\t-n <ip>\t\tnode self identifier (IPv4)",
        f"\t-p <port>\tspecify listening port (default: {DEFAULT_LISTEN_PORT})",
        "\t-c <file>\tlocation of the configdb",
        "\t-q <dir>\twhere persistent queues are stored",
        "\t-w <dir>\twhere files for web services are available",
        f"\t-v <flags>\tprint additional debugging information, by overriding {ENV_DEBUG_FLAGS}",
        f"\t-l <dir>\tuse this dir for relative module loads (default: {DEFAULT_MODULE_SEARCH_DIR})",
        "\t-m <module>\tmodule to load",
        "",
        f"\t--log-level <level>\tlogging level (default: INFO, env {ENV_LOG_LEVEL})",
        f"\t--log-format <fmt>\ttext or json (default: text, env {ENV_LOG_FORMAT})",
        f"\t--log-file <file>\tlog to this file instead of stderr (env {ENV_LOG_FILE})",
        f"\t--crash-dir <dir>\twhere crash reports are written (env {ENV_CRASH_DIR})",
        "",
    ])


# ============================================================
# VALUE PARSERS
# ============================================================

def parse_worker_count(value: str) -> int:
    try:
        count = int(value)
    except ValueError:
        count = 0
    if count <= 0:
        raise ConfigurationError(
            "Bad argument to -t, must be a positive integer.",
            option="-t",
            actual_value=value,
        )
    return count


def parse_port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        port = -1
    if not 0 <= port <= MAX_PORT:
        raise ConfigurationError(
            f"Bad argument to -p, must be a port number between 0 and {MAX_PORT}.",
            option="-p",
            actual_value=value,
        )
    return port


def parse_node_identity(value: str) -> IPv4Address:
    try:
        identity = IPv4Address(value)
    except (AddressValueError, ValueError):
        raise ConfigurationError(
            "Bad argument to -n, must be an IPv4 address.",
            option="-n",
            actual_value=value,
        ) from None
    if identity in FORBIDDEN_NODE_IDENTITIES:
        raise ConfigurationError(
            "nodeid cannot be INADDR_ANY or loopback",
            option="-n",
            actual_value=value,
        )
    return identity


def parse_log_level(value: str) -> str:
    level = value.strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigurationError(
            f"Unknown log level: {value}",
            option="--log-level",
            actual_value=value,
        )
    return level


def parse_log_format(value: str) -> LogFormat:
    try:
        return LogFormat(value.strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"Unknown log format: {value} (expected text or json)",
            option="--log-format",
            actual_value=value,
        ) from None


# ============================================================
# ARGPARSE PLUMBING
# ============================================================

class _OptionParser(argparse.ArgumentParser):
    """ArgumentParser that raises instead of exiting."""

    def error(self, message: str) -> NoReturn:
        raise ConfigurationError(message, show_usage=True)

    def format_help(self) -> str:
        return usage_text(self.prog)


class _UsageAction(argparse.Action):
    def __init__(self, option_strings, dest, **kwargs):
        super().__init__(option_strings, dest, nargs=0, **kwargs)

    def __call__(self, parser, namespace, values, option_string=None):
        raise UsageRequested(parser.format_help())


class _LoadModuleAction(argparse.Action):
    """Loads a module the moment its -m option is parsed."""

    def __init__(self, option_strings, dest, loader: ModuleLoader = None, **kwargs):
        super().__init__(option_strings, dest, **kwargs)
        self.loader = loader

    def __call__(self, parser, namespace, values, option_string=None):
        search_dir = namespace.module_search_dir
        self.loader.load(search_dir, values)
        loaded = list(getattr(namespace, self.dest, None) or [])
        loaded.append(values)
        setattr(namespace, self.dest, loaded)


# ============================================================
# CONFIGURATION RESOLVER
# ============================================================

class ConfigurationResolver:
    """Builds the startup configuration from argv and environment."""

    def __init__(self, module_loader: ModuleLoader, prog: str = APPLICATION_NAME):
        self._module_loader = module_loader
        self._prog = prog

    def usage(self) -> str:
        return usage_text(self._prog)

    def create_parser(self, environ: Mapping[str, str]) -> argparse.ArgumentParser:
        """Create the argument parser."""
        parser = _OptionParser(prog=self._prog, add_help=False, allow_abbrev=False)

        parser.add_argument("-h", action=_UsageAction, dest="help")

        # --------------------------------------------------------
        # Process Options
        # --------------------------------------------------------
        parser.add_argument("-D", dest="foreground", action="store_true")
        parser.add_argument("-B", dest="crash_reporting", action="store_const", const=True)
        parser.add_argument("-b", dest="crash_reporting", action="store_const", const=False)
        parser.add_argument("-t", dest="threads", type=parse_worker_count,
                            default=DEFAULT_WORKER_THREADS, metavar="count")

        # --------------------------------------------------------
        # Node Options
        # --------------------------------------------------------
        parser.add_argument("-n", dest="node_identity", type=parse_node_identity, metavar="ip")
        parser.add_argument("-p", dest="port", type=parse_port,
                            default=DEFAULT_LISTEN_PORT, metavar="port")

        # --------------------------------------------------------
        # Storage Options
        # --------------------------------------------------------
        parser.add_argument("-c", dest="config_store_path", type=Path, metavar="file")
        parser.add_argument("-q", dest="queue_storage_path", type=Path, metavar="dir")
        parser.add_argument("-w", dest="web_root_path", type=Path, metavar="dir")

        # --------------------------------------------------------
        # Module Options
        # --------------------------------------------------------
        parser.add_argument("-l", dest="module_search_dir", type=Path,
                            default=Path(DEFAULT_MODULE_SEARCH_DIR), metavar="dir")
        parser.add_argument("-m", dest="loaded_modules", action=_LoadModuleAction,
                            loader=self._module_loader, metavar="module")

        # --------------------------------------------------------
        # Diagnostics Options
        # --------------------------------------------------------
        parser.add_argument("-v", dest="debug_flags", default=environ.get(ENV_DEBUG_FLAGS),
                            metavar="flags")
        parser.add_argument("--log-level", type=parse_log_level,
                            default=environ.get(ENV_LOG_LEVEL, "INFO"))
        parser.add_argument("--log-format", type=parse_log_format,
                            default=environ.get(ENV_LOG_FORMAT, LogFormat.TEXT.value))
        parser.add_argument("--log-file", type=Path, default=environ.get(ENV_LOG_FILE))
        parser.add_argument("--crash-dir", type=Path, default=environ.get(ENV_CRASH_DIR))

        return parser

    def resolve(
        self,
        argv: Sequence[str],
        environ: Optional[Mapping[str, str]] = None,
    ) -> StartupConfiguration:
        """
        Resolve the startup configuration.

        Args:
            argv: Command-line arguments, program name excluded
            environ: Environment mapping (empty if None)

        Returns:
            Validated configuration without the host-derived identity

        Raises:
            UsageRequested: On -h
            ConfigurationError: On any malformed or invalid input
        """
        environ = environ or {}
        args = self.create_parser(environ).parse_args(list(argv))

        config = StartupConfiguration(
            node_identity=args.node_identity,
            listen_port=args.port,
            run_in_foreground=args.foreground,
            crash_reporting_enabled=bool(args.crash_reporting),
            worker_thread_count=args.threads,
            config_store_path=args.config_store_path,
            queue_storage_path=args.queue_storage_path,
            web_root_path=args.web_root_path,
            module_search_dir=args.module_search_dir,
            loaded_modules=tuple(args.loaded_modules or ()),
            debug_flags=args.debug_flags or None,
            log_level=args.log_level,
            log_format=args.log_format,
            log_file=args.log_file,
            crash_report_dir=args.crash_dir,
        )

        errors = config.validate()
        if errors:
            raise ConfigurationError("; ".join(errors))

        logger.debug(f"Resolved configuration: {config.to_dict()}")
        return config


__all__ = [
    "UsageRequested",
    "ConfigurationResolver",
    "usage_text",
    "parse_worker_count",
    "parse_port",
    "parse_node_identity",
    "parse_log_level",
    "parse_log_format",
]
