"""Unit tests for state compression."""

from datetime import (
    datetime,
    timezone,
)

import pytest

from voyageflow.core.state.compressor import (
    REFERENCES_KEY,
    StateCompressor,
)
from voyageflow.core.state.reference_store import (
    StateReferenceStore,
    is_reference,
)


def _route_data():
    return {
        "distance_nm": 8300.0,
        "waypoints": [{"lat": 1.29 + i, "lon": 103.85 - i} for i in range(200)],
    }


class TestStateCompressor:
    """Tests for externalizing and restoring large fields."""

    @pytest.fixture(autouse=True)
    def _compressor(self, kv_store):
        """Create a compressor with a 1000-byte default threshold."""
        self.references = StateReferenceStore(kv_store)
        self.compressor = StateCompressor(self.references, threshold_bytes=1000)
        self.state = {
            "query": "bunker from Singapore to Rotterdam",
            "origin_port": "Singapore",
            "route_data": _route_data(),
            "agent_status": {"route_agent": "success"},
            "fuel_required_mt": 420.5,
        }

    @pytest.mark.asyncio
    async def test_large_field_externalized(self):
        """Test that only fields above the threshold become references."""
        compressed, stats = await self.compressor.compress(self.state, thread_id="t-1")

        assert is_reference(compressed["route_data"])
        assert compressed["origin_port"] == "Singapore"
        assert compressed[REFERENCES_KEY] == ["route_data"]
        assert stats.references_created == 1
        assert stats.saved_bytes > 0
        assert await self.compressor.decompress(compressed) == self.state

    @pytest.mark.asyncio
    async def test_round_trip_at_any_threshold(self):
        """Test that decompression restores the state whatever the threshold."""
        for threshold in (0, 10, 10**9):
            compressed, _ = await self.compressor.compress(self.state, threshold=threshold)
            assert await self.compressor.decompress(compressed) == self.state

    @pytest.mark.asyncio
    async def test_nothing_to_externalize(self):
        """Test that a small state is returned without a reference index."""
        compressed, stats = await self.compressor.compress({"origin_port": "Singapore"})

        assert compressed == {"origin_port": "Singapore"}
        assert stats.references_created == 0

    @pytest.mark.asyncio
    async def test_compression_is_idempotent(self):
        """Test that compressing a compressed payload changes nothing."""
        once, _ = await self.compressor.compress(self.state, threshold=0)
        twice, _ = await self.compressor.compress(once, threshold=0)
        assert twice == once

    @pytest.mark.asyncio
    async def test_inline_fields_never_leave(self):
        """Test that identifiers and private fields stay in the payload."""
        state = {"query": "x" * 5000, "_scratch": "y" * 5000, "agent_status": {}}
        compressed, _ = await self.compressor.compress(state, threshold=0)
        assert compressed == state

    @pytest.mark.asyncio
    async def test_non_json_values_stay_inline(self):
        """Test that values JSON cannot reproduce are not externalized."""
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        state = {"legs": (1, 2), "tags": {"a", "b"}, "created": created}
        compressed, _ = await self.compressor.compress(state, threshold=0)

        assert compressed == state
        assert await self.compressor.decompress(compressed) == state

    @pytest.mark.asyncio
    async def test_reference_like_strings_are_plain_data(self):
        """Test that a user string starting with ref: is not resolved."""
        state = {"note": "ref:not-a-reference", "route_data": _route_data()}
        compressed, _ = await self.compressor.compress(state, threshold=100)

        assert compressed["note"] == "ref:not-a-reference"
        assert (await self.compressor.decompress(compressed))["note"] == "ref:not-a-reference"

    @pytest.mark.asyncio
    async def test_missing_reference_dropped(self):
        """Test that an expired reference removes its field on restore."""
        compressed, _ = await self.compressor.compress(self.state)
        await self.references.delete(compressed["route_data"])

        restored = await self.compressor.decompress(compressed)

        assert "route_data" not in restored
        assert restored["origin_port"] == "Singapore"

    @pytest.mark.asyncio
    async def test_plain_state_decompresses_to_copy(self):
        """Test that an uncompressed payload passes through."""
        restored = await self.compressor.decompress({"origin_port": "Singapore"})
        assert restored == {"origin_port": "Singapore"}

    @pytest.mark.asyncio
    async def test_cleanup_of_one_thread_keeps_shared_fields(self):
        """Test that a thread sharing a large field with another keeps it after the other is cleaned up."""
        await self.compressor.compress(self.state, thread_id="thread-a")
        compressed_b, _ = await self.compressor.compress(self.state, thread_id="thread-b")

        await self.references.cleanup("thread-a")

        assert await self.compressor.decompress(compressed_b) == self.state
