"""
Rolling restart coordinator for Windows failover clusters.

Drives every node of a failover cluster through drain, restart and resume, one
node at a time, from a clustered scheduled task that re-invokes the
coordinator every minute. The per-node progress is persisted in the task
description, so every invocation is stateless and survives reboots.
"""

__version__ = "0.1.0"

# Package metadata
__title__ = "crr"
__description__ = "Rolling restart coordinator for Windows failover clusters"
__license__ = "Apache License 2.0"

# Export main components for easier imports
from .driver import Coordinator, decide
from .models import (
    ClusterRestartState,
    NodeRestartState,
    NodeState,
    TickDecision,
    TickResult,
)

__all__ = [
    "ClusterRestartState",
    "Coordinator",
    "NodeRestartState",
    "NodeState",
    "TickDecision",
    "TickResult",
    "decide",
    "__version__",
]
