"""Structural deltas between compressed state snapshots.

Deltas are computed over the compressed representation, so an unchanged
externalized field compares equal by its reference string without
fetching its content.
"""

import json
from enum import Enum
from typing import (
    Any,
    Dict,
    Iterable,
    List,
)

from pydantic import (
    BaseModel,
    Field,
)

from voyageflow.core.state.compressor import REFERENCES_KEY

DELTA_SAVINGS_THRESHOLD_PERCENT = 30.0


class ChangeType(str, Enum):
    """Kind of change to a single field."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


class FieldChange(BaseModel):
    """One field's change between two snapshots."""

    type: ChangeType
    value: Any = None


class StateDelta(BaseModel):
    """Changes needed to turn a base snapshot into a modified one."""

    changes: Dict[str, FieldChange] = Field(default_factory=dict)
    change_count: int = 0
    delta_size: int = 0
    full_state_size: int = 0
    savings_percent: float = 0.0


def _size(value: Any) -> int:
    return len(json.dumps(value, default=str, ensure_ascii=False).encode("utf-8"))


def _tracked(key: str) -> bool:
    return key == REFERENCES_KEY or not key.startswith("_")


def compute_delta(base: Dict[str, Any], modified: Dict[str, Any]) -> StateDelta:
    """Diff two snapshots field by field.

    Keys starting with an underscore are bookkeeping and ignored, except the
    reference index, which has to travel with the fields it describes.

    Args:
        base: Previous compressed snapshot.
        modified: Current compressed snapshot.

    Returns:
        StateDelta: The changes and size accounting.
    """
    changes: Dict[str, FieldChange] = {}

    for key, value in modified.items():
        if not _tracked(key):
            continue
        if key not in base:
            changes[key] = FieldChange(type=ChangeType.ADDED, value=value)
        elif base[key] != value:
            changes[key] = FieldChange(type=ChangeType.MODIFIED, value=value)

    for key in base:
        if _tracked(key) and key not in modified:
            changes[key] = FieldChange(type=ChangeType.REMOVED)

    delta_size = _size({k: c.model_dump(mode="json") for k, c in changes.items()}) if changes else 0
    full_state_size = _size(modified)
    savings = 0.0
    if full_state_size > 0:
        savings = round((1 - delta_size / full_state_size) * 100, 1)

    return StateDelta(
        changes=changes,
        change_count=len(changes),
        delta_size=delta_size,
        full_state_size=full_state_size,
        savings_percent=savings,
    )


def apply_delta(base: Dict[str, Any], delta: StateDelta) -> Dict[str, Any]:
    """Apply a delta to a base snapshot, returning a new mapping."""
    result = dict(base)
    for key, change in delta.changes.items():
        if change.type == ChangeType.REMOVED:
            result.pop(key, None)
        else:
            result[key] = change.value
    return result


def should_use_delta(delta: StateDelta) -> bool:
    """Whether persisting the delta beats persisting the full snapshot."""
    return delta.savings_percent > DELTA_SAVINGS_THRESHOLD_PERCENT


def is_empty(delta: StateDelta) -> bool:
    """Whether the delta changes nothing."""
    return delta.change_count == 0


def get_change_summary(delta: StateDelta) -> Dict[str, List[str]]:
    """Group changed field names by change type."""
    summary: Dict[str, List[str]] = {t.value: [] for t in ChangeType}
    for key, change in delta.changes.items():
        summary[change.type.value].append(key)
    return summary


def merge_deltas(deltas: Iterable[StateDelta]) -> StateDelta:
    """Fold consecutive deltas into one; later changes win.

    An addition followed by a removal cancels out.
    """
    merged: Dict[str, FieldChange] = {}
    for delta in deltas:
        for key, change in delta.changes.items():
            previous = merged.get(key)
            if change.type == ChangeType.REMOVED and previous is not None and previous.type == ChangeType.ADDED:
                del merged[key]
            elif change.type == ChangeType.MODIFIED and previous is not None and previous.type == ChangeType.ADDED:
                merged[key] = FieldChange(type=ChangeType.ADDED, value=change.value)
            else:
                merged[key] = change

    delta_size = _size({k: c.model_dump(mode="json") for k, c in merged.items()}) if merged else 0
    return StateDelta(changes=merged, change_count=len(merged), delta_size=delta_size)
