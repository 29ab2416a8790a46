"""
Node Identity - Resolver.

============================================================
RESPONSIBILITY
============================================================
Derives this node's cluster-wide identity from the host.

- Reads the host name
- Resolves it to its first IPv4 address
- 127.0.0.1, unresolvable or non-IPv4 results mean "unknown"
- Uses the same forbidden set as an explicit -n

An unknown identity is not an error here. The orchestrator
decides whether an explicit -n makes up for it.

============================================================
"""

import logging
import socket
from ipaddress import IPv4Address
from typing import Callable, List, Tuple

from configuration.models import FORBIDDEN_NODE_IDENTITIES, UNKNOWN_NODE_IDENTITY


logger = logging.getLogger(__name__)

HostLookup = Callable[[str], Tuple[str, List[str], List[str]]]


class NodeIdentityResolver:
    """Resolves the node identity from host network configuration."""

    def __init__(
        self,
        hostname_fn: Callable[[], str] = socket.gethostname,
        lookup_fn: HostLookup = socket.gethostbyname_ex,
    ):
        self._hostname_fn = hostname_fn
        self._lookup_fn = lookup_fn

    def resolve(self) -> IPv4Address:
        """
        Resolve the host identity.

        Returns:
            First IPv4 address of the host name, or UNKNOWN_NODE_IDENTITY
        """
        try:
            hostname = self._hostname_fn()
        except OSError as e:
            logger.warning(f"Cannot read host name: {e}")
            return UNKNOWN_NODE_IDENTITY

        try:
            _, _, addresses = self._lookup_fn(hostname)
        except (OSError, UnicodeError) as e:
            logger.info(f"Host name {hostname!r} does not resolve: {e}")
            return UNKNOWN_NODE_IDENTITY

        if not addresses:
            logger.info(f"Host name {hostname!r} has no IPv4 records")
            return UNKNOWN_NODE_IDENTITY

        try:
            identity = IPv4Address(addresses[0])
        except ValueError:
            logger.info(f"Host name {hostname!r} resolved to non-IPv4 record {addresses[0]!r}")
            return UNKNOWN_NODE_IDENTITY

        if identity in FORBIDDEN_NODE_IDENTITIES:
            logger.info(f"Host name {hostname!r} resolves to {identity}, treating as unknown")
            return UNKNOWN_NODE_IDENTITY

        logger.debug(f"Host identity resolved: {hostname} -> {identity}")
        return identity


__all__ = ["NodeIdentityResolver", "UNKNOWN_NODE_IDENTITY"]
