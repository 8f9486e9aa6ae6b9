"""State layer: key-value storage, externalized references, compression and deltas.

Key components:
- BaseKVStore / InMemoryKVStore / RedisKVStore: TTL-aware key-value backends
- StateReferenceStore: content-addressed storage for large state values
- StateCompressor: swaps large fields for references and back
- compute_delta / apply_delta: field-level changes between checkpoints
- migrate_state: upgrades snapshots written by older state schema versions
"""

from voyageflow.core.state.compressor import (
    INLINE_FIELDS,
    REFERENCES_KEY,
    CompressionStats,
    StateCompressor,
    estimate_size,
)
from voyageflow.core.state.delta import (
    ChangeType,
    FieldChange,
    StateDelta,
    apply_delta,
    compute_delta,
    get_change_summary,
    is_empty,
    merge_deltas,
    should_use_delta,
)
from voyageflow.core.state.kv import (
    BaseKVStore,
    InMemoryKVStore,
    RedisKVStore,
    create_kv_store,
)
from voyageflow.core.state.migrations import (
    CURRENT_STATE_VERSION,
    MigrationResult,
    detect_state_version,
    migrate_state,
    needs_migration,
)
from voyageflow.core.state.reference_store import (
    StateReferenceStore,
    is_reference,
    make_reference_id,
)

__all__ = [
    "CURRENT_STATE_VERSION",
    "INLINE_FIELDS",
    "REFERENCES_KEY",
    "BaseKVStore",
    "ChangeType",
    "CompressionStats",
    "FieldChange",
    "InMemoryKVStore",
    "MigrationResult",
    "RedisKVStore",
    "StateCompressor",
    "StateDelta",
    "StateReferenceStore",
    "apply_delta",
    "compute_delta",
    "create_kv_store",
    "detect_state_version",
    "estimate_size",
    "get_change_summary",
    "is_empty",
    "is_reference",
    "make_reference_id",
    "merge_deltas",
    "migrate_state",
    "needs_migration",
    "should_use_delta",
]
