"""Checkpoint history browsing, point-in-time recovery and purge."""

from datetime import datetime
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from langchain_core.runnables import RunnableConfig
from pydantic import (
    BaseModel,
    Field,
)

from voyageflow.core.errors import (
    CheckpointIntegrityError,
    CheckpointNotFoundError,
)
from voyageflow.core.logging import logger
from voyageflow.core.persistence.checkpointer import DurableCheckpointSaver


class CheckpointSummary(BaseModel):
    """One entry of a thread's checkpoint history."""

    checkpoint_id: str
    step: Optional[int] = None
    ts: Optional[str] = None
    source: Optional[str] = None
    parent_checkpoint_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


def checkpoint_problems(raw: Any) -> List[str]:
    """List the structural defects of a raw checkpoint, empty when sound."""
    if not isinstance(raw, dict):
        return ["checkpoint is not a mapping"]

    problems = []
    version = raw.get("v")
    if not isinstance(version, int) or isinstance(version, bool) or version < 1:
        problems.append("missing or invalid schema version 'v'")
    if not isinstance(raw.get("id"), str) or not raw.get("id"):
        problems.append("missing checkpoint 'id'")
    ts = raw.get("ts")
    if not isinstance(ts, str):
        problems.append("missing timestamp 'ts'")
    else:
        try:
            datetime.fromisoformat(ts.replace("Z", "+00:00"))
        except ValueError:
            problems.append("timestamp 'ts' is not ISO-8601")

    values = raw.get("channel_values")
    if not isinstance(values, dict):
        problems.append("'channel_values' must be a mapping")
    elif "messages" in values and not isinstance(values["messages"], list):
        problems.append("'messages' channel must be a list")
    return problems


class CheckpointRecovery:
    """Recovery operations over a durable checkpoint saver."""

    def __init__(self, saver: DurableCheckpointSaver):
        """Initialize with the saver owning the checkpoints."""
        self.saver = saver

    @staticmethod
    def validate_checkpoint(raw: Any) -> bool:
        """Check a checkpoint's structure before trusting it.

        Args:
            raw: The checkpoint mapping.

        Returns:
            bool: True when the checkpoint is sound.

        Raises:
            CheckpointIntegrityError: If any structural check fails.
        """
        problems = checkpoint_problems(raw)
        if problems:
            checkpoint_id = raw.get("id") if isinstance(raw, dict) else None
            raise CheckpointIntegrityError(checkpoint_id, problems)
        return True

    async def list_checkpoints(self, thread_id: str, checkpoint_ns: str = "") -> List[CheckpointSummary]:
        """List a thread's checkpoints ordered by ascending step.

        Raises:
            CheckpointReadError: If the store cannot be read.
        """
        config: RunnableConfig = {"configurable": {"thread_id": thread_id, "checkpoint_ns": checkpoint_ns}}
        summaries = []
        async for item in self.saver.alist(config):
            metadata = dict(item.metadata or {})
            parent = (item.parent_config or {}).get("configurable", {}).get("checkpoint_id")
            summaries.append(
                CheckpointSummary(
                    checkpoint_id=item.config["configurable"]["checkpoint_id"],
                    step=metadata.get("step"),
                    ts=item.checkpoint.get("ts"),
                    source=metadata.get("source"),
                    parent_checkpoint_id=parent,
                    metadata=metadata,
                )
            )

        summaries.sort(key=lambda s: (s.step if s.step is not None else -1, s.ts or "", s.checkpoint_id))
        return summaries

    async def get_latest_checkpoint(self, thread_id: str, checkpoint_ns: str = "") -> Optional[CheckpointSummary]:
        """The highest-step checkpoint of a thread, or None."""
        checkpoints = await self.list_checkpoints(thread_id, checkpoint_ns)
        return checkpoints[-1] if checkpoints else None

    async def recover_from_checkpoint(
        self,
        thread_id: str,
        checkpoint_id: str,
        checkpoint_ns: str = "",
    ) -> RunnableConfig:
        """Build a config that resumes a graph from a specific checkpoint.

        Args:
            thread_id: The conversation thread.
            checkpoint_id: The checkpoint to resume from.
            checkpoint_ns: Checkpoint namespace.

        Returns:
            RunnableConfig: ``configurable`` with thread id, namespace and checkpoint id.

        Raises:
            CheckpointNotFoundError: If the checkpoint does not exist.
            CheckpointIntegrityError: If the checkpoint fails its structural check.
            CheckpointReadError: If the store cannot be read.
        """
        config: RunnableConfig = {
            "configurable": {
                "thread_id": thread_id,
                "checkpoint_ns": checkpoint_ns,
                "checkpoint_id": checkpoint_id,
            }
        }
        item = await self.saver.aget_tuple(config)
        if item is None:
            raise CheckpointNotFoundError(f"Checkpoint '{checkpoint_id}' not found for thread '{thread_id}'")

        self.validate_checkpoint(item.checkpoint)
        logger.info(
            "checkpoint_recovered",
            thread_id=thread_id,
            checkpoint_id=checkpoint_id,
            step=(item.metadata or {}).get("step"),
        )
        return config

    async def delete_thread(self, thread_id: str) -> int:
        """Purge a thread's checkpoints and state references.

        Returns:
            int: Number of checkpoints deleted.
        """
        return await self.saver.purge_thread(thread_id)
