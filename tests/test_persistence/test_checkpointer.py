"""Tests for the durable checkpoint saver."""

import base64
import json

import pytest
from langgraph.checkpoint.base import empty_checkpoint

from voyageflow.core.errors import (
    CheckpointIntegrityError,
    CheckpointReadError,
)
from voyageflow.core.persistence.checkpointer import (
    DurableCheckpointSaver,
    checkpoint_key,
)
from voyageflow.core.state.compressor import StateCompressor
from voyageflow.core.state.kv import InMemoryKVStore
from voyageflow.core.state.reference_store import (
    REFERENCE_KEY_PREFIX,
    StateReferenceStore,
)

THREAD = "voyage-thread-1"


def make_checkpoint(step, **values):
    """Build a checkpoint whose id sorts by step."""
    return {**empty_checkpoint(), "id": f"1ef00000-0000-6000-8000-{step:012d}", "channel_values": values}


def thread_config(checkpoint_id=None):
    """Config addressing the test thread."""
    configurable = {"thread_id": THREAD, "checkpoint_ns": ""}
    if checkpoint_id:
        configurable["checkpoint_id"] = checkpoint_id
    return {"configurable": configurable}


async def _no_sleep(_seconds):
    return None


class UnwritableKVStore(InMemoryKVStore):
    """A store that answers reads and pings but rejects every write."""

    def __init__(self):
        super().__init__()
        self.set_attempts = 0

    async def set(self, key, value, ttl_seconds=None):
        self.set_attempts += 1
        raise ConnectionError("redis connection refused")


class UnreachableKVStore(InMemoryKVStore):
    """A store that fails every operation."""

    async def get(self, key):
        raise ConnectionError("redis connection refused")

    async def keys(self, pattern):
        raise ConnectionError("redis connection refused")

    async def ping(self):
        raise ConnectionError("redis connection refused")


class TestDurableCheckpointSaver:
    """Tests for writing and reading checkpoints."""

    @pytest.fixture(autouse=True)
    def _saver(self, kv_store, sink):
        """Create a saver externalizing fields above 200 bytes."""
        self.store = kv_store
        self.compressor = StateCompressor(StateReferenceStore(kv_store), threshold_bytes=200)
        self.saver = DurableCheckpointSaver(kv_store, self.compressor, ttl_minutes=60, sink=sink, sleep=_no_sleep)

    async def _put(self, step, parent_id=None, **values):
        checkpoint = make_checkpoint(step, **values)
        return await self.saver.aput(
            thread_config(parent_id),
            checkpoint,
            {"source": "loop", "step": step},
            {},
        )

    @pytest.mark.asyncio
    async def test_put_and_get(self):
        """Test that a stored checkpoint reads back with its metadata."""
        config = await self._put(1, origin_port="Singapore")

        item = await self.saver.aget_tuple(config)

        assert item.checkpoint["channel_values"] == {"origin_port": "Singapore"}
        assert item.metadata["step"] == 1
        assert item.parent_config is None
        ttl = await self.store.ttl(checkpoint_key(THREAD, "", config["configurable"]["checkpoint_id"]))
        assert 3590 < ttl <= 3600

    @pytest.mark.asyncio
    async def test_large_values_are_externalized(self):
        """Test that large channel values leave the record and come back on read."""
        route_data = {"waypoints": [{"lat": i, "lon": -i} for i in range(50)]}
        config = await self._put(1, route_data=route_data, origin_port="Singapore")

        assert len(await self.store.keys(REFERENCE_KEY_PREFIX + "*")) == 1
        assert self.saver.metrics()["bytes_saved"] > 0

        item = await self.saver.aget_tuple(config)
        assert item.checkpoint["channel_values"]["route_data"] == route_data

    @pytest.mark.asyncio
    async def test_latest_without_id(self):
        """Test that the newest checkpoint is returned when no id is given."""
        first = await self._put(1, step_value=1)
        await self._put(2, parent_id=first["configurable"]["checkpoint_id"], step_value=2)

        item = await self.saver.aget_tuple(thread_config())

        assert item.checkpoint["channel_values"] == {"step_value": 2}
        assert item.parent_config["configurable"]["checkpoint_id"] == first["configurable"]["checkpoint_id"]

    @pytest.mark.asyncio
    async def test_unknown_checkpoint(self):
        """Test that missing checkpoints and threads read as None."""
        assert await self.saver.aget_tuple(thread_config("missing")) is None
        assert await self.saver.aget_tuple({"configurable": {"thread_id": "nobody"}}) is None

    @pytest.mark.asyncio
    async def test_list_newest_first_with_limit_and_before(self):
        """Test listing order, limits, before and metadata filters."""
        configs = [await self._put(step) for step in range(1, 6)]
        ids = [c["configurable"]["checkpoint_id"] for c in configs]

        listed = [item.config["configurable"]["checkpoint_id"] async for item in self.saver.alist(thread_config())]
        assert listed == list(reversed(ids))

        limited = [item async for item in self.saver.alist(thread_config(), limit=2)]
        assert [i.metadata["step"] for i in limited] == [5, 4]

        older = [item async for item in self.saver.alist(thread_config(), before=configs[2])]
        assert [i.metadata["step"] for i in older] == [2, 1]

        filtered = [item async for item in self.saver.alist(thread_config(), filter={"step": 3})]
        assert [i.config["configurable"]["checkpoint_id"] for i in filtered] == [ids[2]]

    @pytest.mark.asyncio
    async def test_pending_writes(self):
        """Test that intermediate writes attach to their checkpoint once."""
        config = await self._put(1)
        writes = [("route_data", {"distance_nm": 8300.0}), ("agent_status", {"route_agent": "success"})]

        await self.saver.aput_writes(config, writes, task_id="task-1")
        await self.saver.aput_writes(config, writes, task_id="task-1")

        item = await self.saver.aget_tuple(config)
        assert item.pending_writes == [
            ("task-1", "route_data", {"distance_nm": 8300.0}),
            ("task-1", "agent_status", {"route_agent": "success"}),
        ]

    @pytest.mark.asyncio
    async def test_delta_tracked_between_snapshots(self):
        """Test that consecutive writes are diffed."""
        first = await self._put(1, origin_port="Singapore")
        second = await self._put(2, parent_id=first["configurable"]["checkpoint_id"], origin_port="Singapore", fuel=420)

        raw = json.loads(await self.store.get(checkpoint_key(THREAD, "", second["configurable"]["checkpoint_id"])))

        assert raw["changes"] == {"added": ["fuel"], "modified": [], "removed": []}
        assert self.saver.metrics()["last_delta_changes"] == 1
        assert self.saver.metrics()["writes"] == 2

    @pytest.mark.asyncio
    async def test_undecodable_record(self):
        """Test that a corrupt record is an integrity error."""
        garbage = {"type": "json", "data": base64.b64encode(b"{not json").decode("ascii")}
        await self.store.set(
            checkpoint_key(THREAD, "", "corrupt"),
            json.dumps(
                {
                    "thread_id": THREAD,
                    "checkpoint_ns": "",
                    "checkpoint_id": "corrupt",
                    "checkpoint": garbage,
                    "metadata": garbage,
                }
            ),
        )

        with pytest.raises(CheckpointIntegrityError) as exc_info:
            await self.saver.aget_tuple(thread_config("corrupt"))
        assert exc_info.value.checkpoint_id == "corrupt"

    @pytest.mark.asyncio
    async def test_purge_thread(self):
        """Test that purging removes checkpoints, writes and references."""
        config = await self._put(1, route_data={"waypoints": list(range(200))})
        await self.saver.aput_writes(config, [("query", "q")], task_id="task-1")
        await self._put(2)

        assert await self.saver.purge_thread(THREAD) == 2
        assert await self.store.keys("*") == []
        assert await self.saver.aget_tuple(thread_config()) is None

    @pytest.mark.asyncio
    async def test_purge_leaves_similarly_named_threads(self):
        """Test that purging a thread spares threads whose ids extend or glob-match it."""
        await self._put(1, origin_port="Singapore")
        for other in (f"{THREAD}:sub", "voyage-*"):
            config = {"configurable": {"thread_id": other, "checkpoint_ns": ""}}
            stored = await self.saver.aput(config, make_checkpoint(1, origin_port="Rotterdam"), {"step": 1}, {})
            await self.saver.aput_writes(stored, [("query", "q")], task_id="task-1")

        assert await self.saver.purge_thread(THREAD) == 1
        assert await self.saver.purge_thread("voyage-*") == 1

        item = await self.saver.aget_tuple({"configurable": {"thread_id": f"{THREAD}:sub", "checkpoint_ns": ""}})
        assert item.checkpoint["channel_values"] == {"origin_port": "Rotterdam"}
        assert item.pending_writes == [("task-1", "query", "q")]
        assert await self.saver.aget_tuple(thread_config()) is None

    @pytest.mark.asyncio
    async def test_health_when_healthy(self):
        """Test the health report of a working store."""
        await self._put(1)
        health = await self.saver.health()

        assert health["status"] == "healthy"
        assert health["last_checkpoint_at"] is not None


class TestDegradedPersistence:
    """Tests for write fallback and read failures."""

    @pytest.mark.asyncio
    async def test_failed_writes_fall_back_in_memory(self, sink):
        """Test that rejected writes are retried, kept in memory and reported."""
        store = UnwritableKVStore()
        saver = DurableCheckpointSaver(store, sink=sink, sleep=_no_sleep)

        config = await saver.aput(thread_config(), make_checkpoint(1, origin_port="Singapore"), {"step": 1}, {})

        assert store.set_attempts == 3
        assert saver.degraded is True
        assert saver.metrics()["fallback_writes"] == 1
        assert saver.metrics()["write_retries"] == 2
        assert (await saver.health())["status"] == "degraded"

        item = await saver.aget_tuple(config)
        assert item.checkpoint["channel_values"] == {"origin_port": "Singapore"}

    @pytest.mark.asyncio
    async def test_unreachable_store(self, sink):
        """Test that reads fail loudly and health reports the store down."""
        saver = DurableCheckpointSaver(UnreachableKVStore(), sink=sink, sleep=_no_sleep)

        with pytest.raises(CheckpointReadError):
            await saver.aget_tuple(thread_config("any"))
        with pytest.raises(CheckpointReadError):
            await saver.aget_tuple(thread_config())
        assert (await saver.health())["status"] == "down"
