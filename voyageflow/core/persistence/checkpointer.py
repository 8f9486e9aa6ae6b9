"""Durable LangGraph checkpointer over the key-value store.

``DurableCheckpointSaver`` persists graph checkpoints with a TTL. Channel
values are compressed before each write (large fields move to the state
reference store) and decompressed after each read, and every write is
diffed against the thread's previous snapshot so the change volume can be
tracked. Records are stamped with the state schema version; records from an older
schema are upgraded on read.

Writes are best-effort: a failed write is retried three times with a
linear backoff, after which the checkpoint is kept in an in-process store
and the saver reports itself degraded. The graph run continues either way.
"""

import asyncio
import base64
import json
import time
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
)

from langchain_core.runnables import RunnableConfig
from langgraph.checkpoint.base import (
    WRITES_IDX_MAP,
    BaseCheckpointSaver,
    ChannelVersions,
    Checkpoint,
    CheckpointMetadata,
    CheckpointTuple,
)
from pydantic import BaseModel

from voyageflow.core.config import settings
from voyageflow.core.errors import (
    CheckpointIntegrityError,
    CheckpointReadError,
)
from voyageflow.core.logging import logger
from voyageflow.core.observability.sink import (
    EventSink,
    event_sink,
)
from voyageflow.core.state.compressor import StateCompressor
from voyageflow.core.state.delta import (
    compute_delta,
    get_change_summary,
)
from voyageflow.core.state.kv import (
    BaseKVStore,
    InMemoryKVStore,
)
from voyageflow.core.state.migrations import (
    CURRENT_STATE_VERSION,
    detect_state_version,
    migrate_state,
    needs_migration,
)
from voyageflow.core.state.reference_store import StateReferenceStore

CHECKPOINT_KEY_PREFIX = "checkpoint:"
WRITES_KEY_PREFIX = "writes:"
WRITE_ATTEMPTS = 3
WRITE_BACKOFF_MS = 100
SLOW_STORE_LATENCY_MS = 1000.0


def checkpoint_key(thread_id: str, checkpoint_ns: str, checkpoint_id: str) -> str:
    """Store key of one checkpoint."""
    return f"{CHECKPOINT_KEY_PREFIX}{thread_id}:{checkpoint_ns}:{checkpoint_id}"


def writes_key(thread_id: str, checkpoint_ns: str, checkpoint_id: str) -> str:
    """Store key of the pending writes attached to one checkpoint."""
    return f"{WRITES_KEY_PREFIX}{thread_id}:{checkpoint_ns}:{checkpoint_id}"


class CheckpointMetrics(BaseModel):
    """Running counters of checkpoint traffic."""

    writes: int = 0
    write_retries: int = 0
    fallback_writes: int = 0
    reads: int = 0
    read_failures: int = 0
    bytes_saved: int = 0
    last_delta_changes: Optional[int] = None
    last_delta_savings_percent: Optional[float] = None
    last_write_latency_ms: Optional[float] = None
    last_checkpoint_at: Optional[datetime] = None


class DurableCheckpointSaver(BaseCheckpointSaver):
    """Checkpoint saver backed by a TTL key-value store.

    Only the async interface is implemented; graphs using this saver must be
    driven with ``ainvoke``/``astream``.
    """

    def __init__(
        self,
        store: BaseKVStore,
        compressor: Optional[StateCompressor] = None,
        ttl_minutes: Optional[int] = None,
        sink: Optional[EventSink] = None,
        *,
        serde: Any = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the saver.

        Args:
            store: Durable key-value store.
            compressor: State compressor, built over ``store`` by default.
            ttl_minutes: Checkpoint lifetime, refreshed on every read.
            sink: Observability sink.
            serde: LangGraph serializer, the default JSON-plus one if omitted.
            sleep: Backoff sleep, injectable for tests.
        """
        super().__init__(serde=serde)
        self.store = store
        self.compressor = compressor or StateCompressor(StateReferenceStore(store))
        self.ttl_seconds = (ttl_minutes or settings.CHECKPOINT_TTL_MINUTES) * 60
        self.sink = sink or event_sink
        self.degraded = False
        self._fallback = InMemoryKVStore()
        self._sleep = sleep
        self._previous: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._metrics = CheckpointMetrics()

    # ─── Encoding ─────────────────────────────────────────────────

    def _encode(self, obj: Any) -> Dict[str, str]:
        type_, data = self.serde.dumps_typed(obj)
        return {"type": type_, "data": base64.b64encode(data).decode("ascii")}

    def _decode(self, encoded: Dict[str, str]) -> Any:
        return self.serde.loads_typed((encoded["type"], base64.b64decode(encoded["data"])))

    # ─── Store access ─────────────────────────────────────────────

    async def _write(self, key: str, payload: str, thread_id: str, operation: str) -> bool:
        """Write with retries, falling back to the in-process store.

        Returns:
            bool: True if the durable store accepted the write.
        """
        start = time.perf_counter()
        last_error: Optional[Exception] = None
        for attempt in range(1, WRITE_ATTEMPTS + 1):
            try:
                await self.store.set(key, payload, self.ttl_seconds)
                latency_ms = (time.perf_counter() - start) * 1000
                self._metrics.last_write_latency_ms = round(latency_ms, 2)
                if self.degraded:
                    logger.info("checkpoint_store_recovered", thread_id=thread_id)
                self.degraded = False
                self.sink.checkpoint_operation(operation, thread_id, int(latency_ms), "success")
                return True
            except Exception as e:
                last_error = e
                if attempt < WRITE_ATTEMPTS:
                    self._metrics.write_retries += 1
                    logger.warning("checkpoint_write_retry", thread_id=thread_id, attempt=attempt, error=str(e))
                    await self._sleep(WRITE_BACKOFF_MS * attempt / 1000)

        await self._fallback.set(key, payload, self.ttl_seconds)
        self.degraded = True
        self._metrics.fallback_writes += 1
        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.error(
            "checkpoint_write_failed",
            thread_id=thread_id,
            operation=operation,
            attempts=WRITE_ATTEMPTS,
            error=str(last_error),
        )
        self.sink.checkpoint_operation(operation, thread_id, latency_ms, "degraded", error=str(last_error))
        return False

    async def _read(self, key: str) -> Optional[str]:
        """Read a key from the durable store, then the in-process fallback.

        Raises:
            CheckpointReadError: If the durable store fails and the fallback has nothing.
        """
        self._metrics.reads += 1
        try:
            raw = await self.store.get(key)
            if raw is not None:
                await self.store.expire(key, self.ttl_seconds)
                return raw
        except Exception as e:
            self._metrics.read_failures += 1
            raw = await self._fallback.get(key)
            if raw is None:
                logger.error("checkpoint_read_failed", key=key, error=str(e))
                raise CheckpointReadError(f"Checkpoint store unavailable: {e}") from e
            return raw
        return await self._fallback.get(key)

    async def _keys(self, pattern: str) -> List[str]:
        found = set(await self._fallback.keys(pattern))
        try:
            found.update(await self.store.keys(pattern))
        except Exception as e:
            self._metrics.read_failures += 1
            if not found:
                logger.error("checkpoint_list_failed", pattern=pattern, error=str(e))
                raise CheckpointReadError(f"Checkpoint store unavailable: {e}") from e
        return sorted(found)

    async def _records(self, thread_id: Optional[str], checkpoint_ns: Optional[str]) -> List[Dict[str, Any]]:
        pattern = f"{CHECKPOINT_KEY_PREFIX}{thread_id}:*" if thread_id is not None else f"{CHECKPOINT_KEY_PREFIX}*"
        records = []
        for key in await self._keys(pattern):
            raw = await self._read(key)
            if raw is None:
                continue
            record = json.loads(raw)
            if thread_id is not None and record.get("thread_id") != thread_id:
                continue
            if checkpoint_ns is not None and record.get("checkpoint_ns") != checkpoint_ns:
                continue
            records.append(record)
        return records

    # ─── Record conversion ────────────────────────────────────────

    async def _to_tuple(self, record: Dict[str, Any]) -> CheckpointTuple:
        thread_id = record["thread_id"]
        checkpoint_ns = record.get("checkpoint_ns", "")
        checkpoint_id = record["checkpoint_id"]
        try:
            checkpoint = self._decode(record["checkpoint"])
            metadata = self._decode(record["metadata"])
        except Exception as e:
            raise CheckpointIntegrityError(checkpoint_id, [f"undecodable payload: {e}"]) from e

        values = checkpoint.get("channel_values")
        if isinstance(values, dict):
            values = await self.compressor.decompress(values)
            checkpoint["channel_values"] = self._upgrade(checkpoint_id, values, record.get("state_version"))

        parent_id = record.get("parent_checkpoint_id")
        return CheckpointTuple(
            config={
                "configurable": {
                    "thread_id": thread_id,
                    "checkpoint_ns": checkpoint_ns,
                    "checkpoint_id": checkpoint_id,
                }
            },
            checkpoint=checkpoint,
            metadata=metadata,
            parent_config=(
                {
                    "configurable": {
                        "thread_id": thread_id,
                        "checkpoint_ns": checkpoint_ns,
                        "checkpoint_id": parent_id,
                    }
                }
                if parent_id
                else None
            ),
            pending_writes=await self._load_writes(thread_id, checkpoint_ns, checkpoint_id),
        )

    def _upgrade(self, checkpoint_id: str, values: Dict[str, Any], declared: Optional[str]) -> Dict[str, Any]:
        """Bring channel values written by an older schema up to date.

        Raises:
            CheckpointIntegrityError: If the schema version is unknown or newer than this build.
        """
        version = detect_state_version(values, declared)
        if not needs_migration(version):
            return values
        try:
            result = migrate_state(values, version)
        except ValueError as e:
            raise CheckpointIntegrityError(checkpoint_id, [str(e)]) from e
        logger.info(
            "checkpoint_state_migrated",
            checkpoint_id=checkpoint_id,
            from_version=result.from_version,
            to_version=result.to_version,
            changes=len(result.changes),
        )
        return result.state

    async def _load_writes(self, thread_id: str, checkpoint_ns: str, checkpoint_id: str) -> List[Tuple[str, str, Any]]:
        raw = await self._read(writes_key(thread_id, checkpoint_ns, checkpoint_id))
        if raw is None:
            return []
        entries = sorted(json.loads(raw), key=lambda w: (w["task_id"], w["idx"]))
        return [(w["task_id"], w["channel"], self._decode(w["value"])) for w in entries]

    # ─── BaseCheckpointSaver interface ────────────────────────────

    async def aget_tuple(self, config: RunnableConfig) -> Optional[CheckpointTuple]:
        """Fetch a checkpoint tuple, the latest of the thread if no id is given."""
        configurable = config["configurable"]
        thread_id = configurable["thread_id"]
        checkpoint_ns = configurable.get("checkpoint_ns", "")
        checkpoint_id = configurable.get("checkpoint_id")

        if checkpoint_id:
            raw = await self._read(checkpoint_key(thread_id, checkpoint_ns, checkpoint_id))
            if raw is None:
                return None
            record = json.loads(raw)
        else:
            records = await self._records(thread_id, checkpoint_ns)
            if not records:
                return None
            record = max(records, key=lambda r: r["checkpoint_id"])

        return await self._to_tuple(record)

    async def alist(
        self,
        config: Optional[RunnableConfig],
        *,
        filter: Optional[Dict[str, Any]] = None,
        before: Optional[RunnableConfig] = None,
        limit: Optional[int] = None,
    ) -> AsyncIterator[CheckpointTuple]:
        """List checkpoints newest first.

        Args:
            config: Restricts the listing to a thread (and namespace).
            filter: Metadata key/value pairs every result must match.
            before: Only checkpoints older than this one.
            limit: Maximum number of results.
        """
        configurable = (config or {}).get("configurable", {})
        thread_id = configurable.get("thread_id")
        checkpoint_ns = configurable.get("checkpoint_ns")
        before_id = (before or {}).get("configurable", {}).get("checkpoint_id")

        records = sorted(await self._records(thread_id, checkpoint_ns), key=lambda r: r["checkpoint_id"], reverse=True)
        emitted = 0
        for record in records:
            if before_id is not None and record["checkpoint_id"] >= before_id:
                continue
            item = await self._to_tuple(record)
            if filter and any(item.metadata.get(k) != v for k, v in filter.items()):
                continue
            yield item
            emitted += 1
            if limit is not None and emitted >= limit:
                return

    async def aput(
        self,
        config: RunnableConfig,
        checkpoint: Checkpoint,
        metadata: CheckpointMetadata,
        new_versions: ChannelVersions,
    ) -> RunnableConfig:
        """Compress and persist a checkpoint.

        Returns:
            RunnableConfig: Config addressing the stored checkpoint.
        """
        configurable = config["configurable"]
        thread_id = configurable["thread_id"]
        checkpoint_ns = configurable.get("checkpoint_ns", "")
        parent_id = configurable.get("checkpoint_id")

        values = dict(checkpoint.get("channel_values") or {})
        try:
            compressed, stats = await self.compressor.compress(values, thread_id=thread_id)
            self._metrics.bytes_saved += max(0, stats.saved_bytes)
        except Exception as e:
            logger.warning("checkpoint_compression_failed", thread_id=thread_id, error=str(e))
            compressed = values

        record: Dict[str, Any] = {
            "thread_id": thread_id,
            "checkpoint_ns": checkpoint_ns,
            "checkpoint_id": checkpoint["id"],
            "parent_checkpoint_id": parent_id,
            "ts": checkpoint["ts"],
            "step": metadata.get("step"),
            "state_version": CURRENT_STATE_VERSION,
            "checkpoint": self._encode({**checkpoint, "channel_values": compressed}),
            "metadata": self._encode(dict(metadata)),
        }

        previous = self._previous.get((thread_id, checkpoint_ns))
        if previous is not None:
            delta = compute_delta(previous, compressed)
            record["changes"] = get_change_summary(delta)
            self._metrics.last_delta_changes = delta.change_count
            self._metrics.last_delta_savings_percent = delta.savings_percent

        await self._write(
            checkpoint_key(thread_id, checkpoint_ns, checkpoint["id"]),
            json.dumps(record),
            thread_id,
            "put",
        )
        self._previous[(thread_id, checkpoint_ns)] = compressed
        self._metrics.writes += 1
        self._metrics.last_checkpoint_at = datetime.now(timezone.utc)

        return {
            "configurable": {
                "thread_id": thread_id,
                "checkpoint_ns": checkpoint_ns,
                "checkpoint_id": checkpoint["id"],
            }
        }

    async def aput_writes(
        self,
        config: RunnableConfig,
        writes: Sequence[Tuple[str, Any]],
        task_id: str,
        task_path: str = "",
    ) -> None:
        """Persist intermediate writes linked to a checkpoint."""
        configurable = config["configurable"]
        thread_id = configurable["thread_id"]
        checkpoint_ns = configurable.get("checkpoint_ns", "")
        key = writes_key(thread_id, checkpoint_ns, configurable["checkpoint_id"])

        raw = await self._read(key)
        entries = {(w["task_id"], w["idx"]): w for w in (json.loads(raw) if raw else [])}
        for idx, (channel, value) in enumerate(writes):
            write_idx = WRITES_IDX_MAP.get(channel, idx)
            if write_idx >= 0 and (task_id, write_idx) in entries:
                continue
            entries[(task_id, write_idx)] = {
                "task_id": task_id,
                "task_path": task_path,
                "channel": channel,
                "idx": write_idx,
                "value": self._encode(value),
            }
        await self._write(key, json.dumps(list(entries.values())), thread_id, "put_writes")

    async def adelete_thread(self, thread_id: str) -> None:
        """Delete every checkpoint, write and reference of a thread."""
        await self.purge_thread(thread_id)

    # ─── Maintenance & health ─────────────────────────────────────

    async def purge_thread(self, thread_id: str) -> int:
        """Delete a thread's checkpoints, writes and state references.

        Returns:
            int: Number of checkpoint records deleted.
        """
        # The key glob also matches ids with this thread id as a prefix; only
        # records whose stored thread_id is an exact match are deleted.
        records = await self._records(thread_id, None)
        keys = []
        for record in records:
            ids = (thread_id, record.get("checkpoint_ns", ""), record["checkpoint_id"])
            keys += [checkpoint_key(*ids), writes_key(*ids)]
        checkpoints = len(records)
        if keys:
            await self.store.delete(*keys)
            await self._fallback.delete(*keys)
        references = await self.compressor.reference_store.cleanup(thread_id)
        for key in [k for k in self._previous if k[0] == thread_id]:
            del self._previous[key]

        logger.info("checkpoint_thread_deleted", thread_id=thread_id, checkpoints=checkpoints, references=references)
        self.sink.checkpoint_operation("delete_thread", thread_id, 0, "success", checkpoints=checkpoints)
        return checkpoints

    def metrics(self) -> Dict[str, Any]:
        """Snapshot of the running counters."""
        return {**self._metrics.model_dump(mode="json"), "degraded": self.degraded}

    async def health(self) -> Dict[str, Any]:
        """Store reachability, latency and freshness.

        Returns:
            Dict[str, Any]: ``status`` is healthy, degraded or down.
        """
        start = time.perf_counter()
        try:
            reachable = await self.store.ping()
        except Exception as e:
            logger.warning("checkpoint_store_ping_failed", error=str(e))
            reachable = False
        latency_ms = round((time.perf_counter() - start) * 1000, 2)

        if not reachable:
            status = "down"
        elif self.degraded or latency_ms > SLOW_STORE_LATENCY_MS:
            status = "degraded"
        else:
            status = "healthy"

        last = self._metrics.last_checkpoint_at
        return {
            "status": status,
            "latency_ms": latency_ms,
            "last_checkpoint_at": last.isoformat() if last else None,
            "fallback_writes": self._metrics.fallback_writes,
        }
