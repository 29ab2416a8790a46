"""
Configuration - Debug Flags.

Maps the debug-flags string (-v or FQ_DEBUG) onto subsystem loggers.

Accepted forms:
    "route,io"          names, separated by commas, pipes or spaces
    "FQ_DEBUG_ROUTE"    optional fq_debug_ prefix, any case
    "all"               every flag
    "0x14" / "20"       integer bitmask
"""

import logging
import re
from typing import Dict, Optional, Set, Tuple


logger = logging.getLogger(__name__)


# Bit values for numeric flag strings
DEBUG_FLAG_BITS: Dict[str, int] = {
    "mem": 0x01,
    "msg": 0x02,
    "route": 0x04,
    "io": 0x08,
    "conn": 0x10,
    "config": 0x20,
    "peer": 0x40,
    "http": 0x80,
    "panic": 0x100,
}

DEBUG_FLAG_LOGGERS: Dict[str, Tuple[str, ...]] = {
    "mem": ("broker.worker_pool",),
    "msg": ("broker.worker_pool",),
    "route": ("broker.module_loader",),
    "io": ("broker.listener",),
    "conn": ("broker.listener",),
    "config": ("configuration", "broker.config_store"),
    "peer": ("node_identity",),
    "http": ("broker.listener",),
    "panic": ("crash_reporting",),
}

_SEPARATORS = re.compile(r"[,|\s]+")
_PREFIX = "fq_debug_"


def parse_debug_flags(value: Optional[str]) -> Set[str]:
    """Parse a debug-flags string into flag names. Unknown names warn."""
    if not value or not value.strip():
        return set()

    text = value.strip()
    try:
        mask = int(text, 0)
    except ValueError:
        mask = None
    if mask is not None:
        return {name for name, bit in DEBUG_FLAG_BITS.items() if mask & bit}

    flags: Set[str] = set()
    for token in _SEPARATORS.split(text):
        if not token:
            continue
        name = token.lower()
        if name.startswith(_PREFIX):
            name = name[len(_PREFIX):]
        if name == "all":
            flags.update(DEBUG_FLAG_BITS)
        elif name in DEBUG_FLAG_BITS:
            flags.add(name)
        else:
            logger.warning(f"Ignoring unknown debug flag: {token}")
    return flags


def apply_debug_flags(value: Optional[str]) -> Set[str]:
    """Switch the loggers of every enabled flag to DEBUG."""
    flags = parse_debug_flags(value)
    for flag in sorted(flags):
        for name in DEBUG_FLAG_LOGGERS[flag]:
            logging.getLogger(name).setLevel(logging.DEBUG)
    if flags:
        logger.info(f"Debug flags enabled: {', '.join(sorted(flags))}")
    return flags


__all__ = ["DEBUG_FLAG_BITS", "DEBUG_FLAG_LOGGERS", "parse_debug_flags", "apply_debug_flags"]
