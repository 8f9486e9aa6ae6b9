"""Durable checkpoint persistence and recovery.

Key components:
- DurableCheckpointSaver: LangGraph checkpointer over the key-value store
- CheckpointRecovery: history listing, point-in-time recovery and purge
"""

from voyageflow.core.persistence.checkpointer import (
    CheckpointMetrics,
    DurableCheckpointSaver,
)
from voyageflow.core.persistence.recovery import (
    CheckpointRecovery,
    CheckpointSummary,
    checkpoint_problems,
)

__all__ = [
    "CheckpointMetrics",
    "CheckpointRecovery",
    "CheckpointSummary",
    "DurableCheckpointSaver",
    "checkpoint_problems",
]
