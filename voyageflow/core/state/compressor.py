"""State compression by externalizing large fields.

Fields whose serialized size exceeds the threshold are written to the
reference store and replaced in place by a ``ref:<id>`` string. The names
of externalized fields are recorded under ``__references__`` so
decompression only resolves what compression produced. Identifiers and
other always-needed fields stay inline, as do values that JSON cannot
represent exactly.
"""

import json
from typing import (
    Any,
    Dict,
    Optional,
    Tuple,
)

from pydantic import (
    BaseModel,
    Field,
)

from voyageflow.core.config import settings
from voyageflow.core.logging import logger
from voyageflow.core.state.reference_store import (
    StateReferenceStore,
    serialize_value,
)

REFERENCES_KEY = "__references__"

INLINE_FIELDS = frozenset(
    {
        "correlation_id",
        "thread_id",
        "conversation_id",
        "plan_id",
        "query",
        "query_type",
        "messages",
        "agent_status",
        "needs_clarification",
        "degraded_mode",
    }
)


class CompressionStats(BaseModel):
    """Size accounting for one compression."""

    original_size: int = 0
    compressed_size: int = 0
    saved_bytes: int = 0
    references_created: int = 0
    fields_referenced: list[str] = Field(default_factory=list)


def _exact_json(value: Any) -> Optional[str]:
    """Serialize a value only if JSON reproduces it exactly."""
    try:
        serialized = serialize_value(value)
    except (TypeError, ValueError):
        return None
    if json.loads(serialized) != value:
        return None
    return serialized


def estimate_size(state: Dict[str, Any]) -> int:
    """Approximate the serialized size of a state mapping in bytes."""
    return len(json.dumps(state, default=str, ensure_ascii=False).encode("utf-8"))


class StateCompressor:
    """Compresses and decompresses state payloads through a reference store."""

    def __init__(
        self,
        reference_store: StateReferenceStore,
        threshold_bytes: Optional[int] = None,
        inline_fields: frozenset = INLINE_FIELDS,
    ):
        """Initialize the compressor.

        Args:
            reference_store: Store receiving externalized fields.
            threshold_bytes: Default size above which a field is externalized.
            inline_fields: Fields that never leave the payload.
        """
        self.reference_store = reference_store
        self.threshold_bytes = settings.COMPRESSION_THRESHOLD_BYTES if threshold_bytes is None else threshold_bytes
        self.inline_fields = inline_fields

    async def compress(
        self,
        state: Dict[str, Any],
        threshold: Optional[int] = None,
        thread_id: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], CompressionStats]:
        """Externalize fields larger than the threshold.

        Args:
            state: The state mapping. Not mutated.
            threshold: Size in bytes; defaults to the compressor's threshold.
            thread_id: Thread owning created references.

        Returns:
            Tuple[Dict[str, Any], CompressionStats]: Compressed state and stats.
        """
        if self.is_compressed(state):
            return dict(state), self.get_compression_stats(state, state)

        limit = self.threshold_bytes if threshold is None else threshold
        compressed: Dict[str, Any] = {}
        referenced: list[str] = []

        for field, value in state.items():
            if field in self.inline_fields or field.startswith("_"):
                compressed[field] = value
                continue

            serialized = _exact_json(value)
            if serialized is None or len(serialized.encode("utf-8")) <= limit:
                compressed[field] = value
                continue

            compressed[field] = await self.reference_store.store_value(field, value, thread_id=thread_id)
            referenced.append(field)

        if referenced:
            compressed[REFERENCES_KEY] = sorted(referenced)

        stats = self.get_compression_stats(state, compressed)
        if referenced:
            logger.debug(
                "state_compressed",
                thread_id=thread_id,
                fields_referenced=stats.fields_referenced,
                saved_bytes=stats.saved_bytes,
            )
        return compressed, stats

    async def decompress(self, compressed: Dict[str, Any]) -> Dict[str, Any]:
        """Resolve references back into their values.

        Fields whose reference is missing or expired are dropped from the
        result rather than replaced by a default.

        Args:
            compressed: A compressed (or plain) state mapping.

        Returns:
            Dict[str, Any]: The restored state.
        """
        if not self.is_compressed(compressed):
            return dict(compressed)

        referenced = set(compressed.get(REFERENCES_KEY) or [])
        state: Dict[str, Any] = {}
        missing = []
        for field, value in compressed.items():
            if field == REFERENCES_KEY:
                continue
            if field not in referenced:
                state[field] = value
                continue

            found, restored = await self.reference_store.retrieve(value)
            if found:
                state[field] = restored
            else:
                missing.append(field)

        if missing:
            logger.warning("state_references_unresolved", fields=missing)
        return state

    @staticmethod
    def is_compressed(state: Dict[str, Any]) -> bool:
        """Check whether a payload carries externalized fields."""
        return REFERENCES_KEY in state

    @staticmethod
    def get_compression_stats(original: Dict[str, Any], compressed: Dict[str, Any]) -> CompressionStats:
        """Compare sizes of an original and compressed payload."""
        original_size = estimate_size(original)
        compressed_size = estimate_size(compressed)
        fields = list(compressed.get(REFERENCES_KEY) or [])
        return CompressionStats(
            original_size=original_size,
            compressed_size=compressed_size,
            saved_bytes=original_size - compressed_size,
            references_created=len(fields),
            fields_referenced=fields,
        )
