"""
Node Identity Package.

Host-derived cluster identity of a broker node.
"""

from .resolver import UNKNOWN_NODE_IDENTITY, NodeIdentityResolver

__all__ = ["NodeIdentityResolver", "UNKNOWN_NODE_IDENTITY"]
