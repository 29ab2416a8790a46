"""
Daemonization Package.

Components:
- process_ops: OS call adapter (open/dup2/fork/setsid/_exit)
- supervisor: Step-by-step double-fork detach
"""

from .process_ops import ProcessOps
from .supervisor import DaemonizationStep, DaemonizationSupervisor

__all__ = ["ProcessOps", "DaemonizationStep", "DaemonizationSupervisor"]
