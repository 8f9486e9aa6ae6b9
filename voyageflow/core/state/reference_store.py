"""Content-addressed storage for large state fields.

Large values are written once under ``state_ref:<field>_<hash16>`` and the
checkpoint payload carries only the reference string ``ref:<id>``. Equal
content yields the same id, so re-storing extends the TTL instead of
writing a duplicate. Each entry lists the threads holding it; a thread
cleanup only deletes entries no other thread still holds.
"""

import hashlib
import json
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from voyageflow.core.config import settings
from voyageflow.core.logging import logger
from voyageflow.core.state.kv import BaseKVStore

REFERENCE_KEY_PREFIX = "state_ref:"
REFERENCE_VALUE_PREFIX = "ref:"


def serialize_value(value: Any) -> str:
    """Serialize a value with stable key ordering.

    Raises:
        TypeError: If the value is not JSON-serializable.
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def make_reference_id(field: str, value: Any) -> str:
    """Build the content-addressed id for a field value."""
    digest = hashlib.sha256(serialize_value(value).encode("utf-8")).hexdigest()[:16]
    return f"{field}_{digest}"


def is_reference(value: Any) -> bool:
    """Check whether a value is a reference string."""
    return isinstance(value, str) and value.startswith(REFERENCE_VALUE_PREFIX)


def _owners(entry: Dict[str, Any]) -> List[str]:
    owners = entry.get("owners")
    if owners is None:
        owners = [entry["thread_id"]] if entry.get("thread_id") is not None else []
    return list(owners)


class StateReferenceStore:
    """Stores large state fields out of line with a TTL."""

    def __init__(self, store: BaseKVStore, ttl_seconds: Optional[int] = None):
        """Initialize the reference store.

        Args:
            store: Backing key-value store.
            ttl_seconds: Reference lifetime, defaults to the configured days.
        """
        self.store = store
        self.ttl_seconds = ttl_seconds or settings.STATE_REFERENCE_TTL_DAYS * 24 * 3600

    async def store_value(self, field: str, value: Any, thread_id: Optional[str] = None) -> str:
        """Store a value and return its reference string.

        Args:
            field: State field the value belongs to.
            value: JSON-serializable value.
            thread_id: Conversation thread owning the reference.

        Returns:
            str: The reference string ``ref:<id>``.
        """
        ref_id = make_reference_id(field, value)
        key = REFERENCE_KEY_PREFIX + ref_id

        raw = await self.store.get(key)
        if raw is not None:
            entry = json.loads(raw)
            owners = _owners(entry)
            if thread_id is not None and thread_id not in owners:
                entry["owners"] = owners + [thread_id]
                await self.store.set(key, serialize_value(entry), self.ttl_seconds)
            else:
                await self.store.expire(key, self.ttl_seconds)
            logger.debug("state_reference_reused", ref_id=ref_id, field=field)
            return REFERENCE_VALUE_PREFIX + ref_id

        serialized = serialize_value(value)
        entry = {
            "id": ref_id,
            "field": field,
            "thread_id": thread_id,
            "owners": [thread_id] if thread_id is not None else [],
            "data": value,
            "size_bytes": len(serialized.encode("utf-8")),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        await self.store.set(key, serialize_value(entry), self.ttl_seconds)
        logger.debug("state_reference_stored", ref_id=ref_id, field=field, size_bytes=entry["size_bytes"])
        return REFERENCE_VALUE_PREFIX + ref_id

    async def _load_entry(self, reference: str) -> Optional[Dict[str, Any]]:
        ref_id = reference[len(REFERENCE_VALUE_PREFIX) :] if is_reference(reference) else reference
        key = REFERENCE_KEY_PREFIX + ref_id
        raw = await self.store.get(key)
        if raw is None:
            return None
        await self.store.expire(key, self.ttl_seconds)
        return json.loads(raw)

    async def retrieve(self, reference: str) -> tuple[bool, Any]:
        """Fetch a referenced value.

        Args:
            reference: A ``ref:<id>`` string or a bare id.

        Returns:
            tuple[bool, Any]: (found, value). A stored ``None`` is distinguishable
            from a missing reference.
        """
        entry = await self._load_entry(reference)
        if entry is None:
            logger.warning("state_reference_missing", reference=reference)
            return False, None
        return True, entry["data"]

    async def batch_retrieve(self, references: List[str]) -> Dict[str, Any]:
        """Fetch several references, omitting the missing ones."""
        results: Dict[str, Any] = {}
        for reference in references:
            found, value = await self.retrieve(reference)
            if found:
                results[reference] = value
        return results

    async def get_metadata(self, reference: str) -> Optional[Dict[str, Any]]:
        """Get a reference's metadata without its payload."""
        entry = await self._load_entry(reference)
        if entry is None:
            return None
        entry.pop("data", None)
        return entry

    async def delete(self, reference: str) -> bool:
        """Delete a reference."""
        ref_id = reference[len(REFERENCE_VALUE_PREFIX) :] if is_reference(reference) else reference
        return await self.store.delete(REFERENCE_KEY_PREFIX + ref_id) > 0

    async def _thread_entries(self, thread_id: str) -> List[Dict[str, Any]]:
        entries = []
        for key in await self.store.keys(REFERENCE_KEY_PREFIX + "*"):
            raw = await self.store.get(key)
            if raw is None:
                continue
            entry = json.loads(raw)
            if thread_id in _owners(entry):
                entries.append(entry)
        return entries

    async def get_thread_references(self, thread_id: str) -> List[str]:
        """List the ids of references held by a thread."""
        return [entry["id"] for entry in await self._thread_entries(thread_id)]

    async def cleanup(self, thread_id: str) -> int:
        """Release a thread's references, deleting those no other thread holds.

        Returns:
            int: Number of references deleted.
        """
        orphaned = []
        released = 0
        for entry in await self._thread_entries(thread_id):
            owners = [owner for owner in _owners(entry) if owner != thread_id]
            if owners:
                entry["owners"] = owners
                await self.store.set(REFERENCE_KEY_PREFIX + entry["id"], serialize_value(entry), self.ttl_seconds)
                released += 1
            else:
                orphaned.append(REFERENCE_KEY_PREFIX + entry["id"])

        deleted = await self.store.delete(*orphaned) if orphaned else 0
        if deleted or released:
            logger.info("state_references_cleaned", thread_id=thread_id, deleted=deleted, released=released)
        return deleted
