"""Unit tests for snapshot deltas."""

import pytest

from voyageflow.core.state.compressor import (
    REFERENCES_KEY,
    StateCompressor,
)
from voyageflow.core.state.delta import (
    ChangeType,
    apply_delta,
    compute_delta,
    get_change_summary,
    is_empty,
    merge_deltas,
    should_use_delta,
)
from voyageflow.core.state.reference_store import StateReferenceStore


class TestComputeDelta:
    """Tests for field-level diffs."""

    def setup_method(self):
        """Create a base and a modified snapshot."""
        self.base = {"origin_port": "Singapore", "destination_port": "Rotterdam", "fuel_required_mt": 400}
        self.modified = {"origin_port": "Singapore", "fuel_required_mt": 420, "route_data": "ref:route_data_ab"}

    def test_changes_by_type(self):
        """Test additions, modifications and removals."""
        delta = compute_delta(self.base, self.modified)

        assert delta.change_count == 3
        assert delta.changes["route_data"].type == ChangeType.ADDED
        assert delta.changes["fuel_required_mt"].value == 420
        assert get_change_summary(delta) == {
            "added": ["route_data"],
            "modified": ["fuel_required_mt"],
            "removed": ["destination_port"],
        }

    def test_apply_restores_modified(self):
        """Test that applying the delta to its base yields the modified snapshot."""
        delta = compute_delta(self.base, self.modified)
        assert apply_delta(self.base, delta) == self.modified
        assert "route_data" not in self.base

    def test_private_keys_ignored_except_reference_index(self):
        """Test that bookkeeping keys do not count as changes."""
        delta = compute_delta({"_ts": 1}, {"_ts": 2, REFERENCES_KEY: ["route_data"]})
        assert list(delta.changes) == [REFERENCES_KEY]

    def test_identical_snapshots(self):
        """Test that equal snapshots produce an empty delta."""
        delta = compute_delta(self.base, dict(self.base))
        assert is_empty(delta)
        assert delta.delta_size == 0

    @pytest.mark.asyncio
    async def test_unchanged_large_field_compares_by_reference(self, kv_store):
        """Test that recompressing an unchanged state yields no changes."""
        compressor = StateCompressor(StateReferenceStore(kv_store), threshold_bytes=10)
        state = {"route_data": {"waypoints": list(range(100))}, "origin_port": "Singapore"}

        first, _ = await compressor.compress(state)
        second, _ = await compressor.compress(dict(state))

        assert compute_delta(first, second).change_count == 0

    def test_delta_worth_persisting(self):
        """Test the savings threshold for persisting deltas."""
        base = {"route_data": "x" * 2000, "step": 1}
        small_change = compute_delta(base, {**base, "step": 2})
        full_rewrite = compute_delta({"a": 1}, {"b": 2})

        assert small_change.savings_percent > 90
        assert should_use_delta(small_change) is True
        assert should_use_delta(full_rewrite) is False


class TestMergeDeltas:
    """Tests for folding delta sequences."""

    def test_add_then_remove_cancels(self):
        """Test that a field added and later removed disappears."""
        merged = merge_deltas([compute_delta({}, {"a": 1}), compute_delta({"a": 1}, {})])
        assert is_empty(merged)

    def test_add_then_modify_stays_added(self):
        """Test that a modified addition is still an addition with the latest value."""
        merged = merge_deltas([compute_delta({}, {"a": 1}), compute_delta({"a": 1}, {"a": 2})])

        assert merged.changes["a"].type == ChangeType.ADDED
        assert merged.changes["a"].value == 2

    def test_merged_delta_applies_like_sequence(self):
        """Test that applying the merge equals applying each delta in turn."""
        s0 = {"a": 1, "b": 2}
        s1 = {"a": 1, "b": 3, "c": 4}
        s2 = {"b": 3, "c": 5}
        d1 = compute_delta(s0, s1)
        d2 = compute_delta(s1, s2)

        assert apply_delta(s0, merge_deltas([d1, d2])) == apply_delta(apply_delta(s0, d1), d2) == s2
