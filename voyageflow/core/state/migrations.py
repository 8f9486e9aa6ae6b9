"""State schema versions and forward migrations.

Checkpoints written by this version carry ``state_version``; older records
carry none and their version is inferred from the fields present. Each
migration step upgrades one version to the next, so a snapshot of any
known version is brought up to ``CURRENT_STATE_VERSION`` by applying the
steps in order. Downgrades are refused.

Version history:
- 1.0.0: ports under ``origin``/``destination``, vessel names as one string
- 2.0.0: ``origin_port``/``destination_port`` and per-agent ``agent_status``
- 3.0.0: degraded-mode disclosure (``degraded_mode``, ``missing_data``)
"""

from typing import (
    Any,
    Callable,
    Dict,
    List,
    Literal,
    Optional,
    Tuple,
)

from pydantic import (
    BaseModel,
    Field,
)

from voyageflow.core.logging import logger

STATE_VERSIONS = ("1.0.0", "2.0.0", "3.0.0")
CURRENT_STATE_VERSION = STATE_VERSIONS[-1]


class MigrationChange(BaseModel):
    """One field-level edit made by a migration step."""

    type: Literal["added", "removed", "renamed", "transformed"]
    field: str
    details: str


class MigrationResult(BaseModel):
    """Outcome of upgrading a state snapshot."""

    from_version: str
    to_version: str
    state: Dict[str, Any]
    changes: List[MigrationChange] = Field(default_factory=list)

    @property
    def migrated(self) -> bool:
        """Whether any step ran."""
        return self.from_version != self.to_version


def _rename(state: Dict[str, Any], old: str, new: str, changes: List[MigrationChange]) -> None:
    if old not in state:
        return
    value = state.pop(old)
    if new not in state:
        state[new] = value
        changes.append(MigrationChange(type="renamed", field=new, details=f"Renamed from {old}"))
    else:
        changes.append(MigrationChange(type="removed", field=old, details=f"Superseded by {new}"))


def _add_default(state: Dict[str, Any], field: str, default: Any, changes: List[MigrationChange]) -> None:
    if field not in state:
        state[field] = default
        changes.append(MigrationChange(type="added", field=field, details=f"Added with default {default!r}"))


def _v1_to_v2(state: Dict[str, Any]) -> List[MigrationChange]:
    changes: List[MigrationChange] = []
    _rename(state, "origin", "origin_port", changes)
    _rename(state, "destination", "destination_port", changes)

    vessels = state.get("vessel_names")
    if isinstance(vessels, str):
        state["vessel_names"] = [name.strip() for name in vessels.split(",") if name.strip()]
        changes.append(MigrationChange(type="transformed", field="vessel_names", details="Split into a list"))

    _add_default(state, "agent_status", {}, changes)
    return changes


def _v2_to_v3(state: Dict[str, Any]) -> List[MigrationChange]:
    changes: List[MigrationChange] = []
    _add_default(state, "degraded_mode", False, changes)
    _add_default(state, "missing_data", [], changes)
    return changes


MIGRATIONS: Dict[Tuple[str, str], Callable[[Dict[str, Any]], List[MigrationChange]]] = {
    ("1.0.0", "2.0.0"): _v1_to_v2,
    ("2.0.0", "3.0.0"): _v2_to_v3,
}


def detect_state_version(state: Dict[str, Any], declared: Optional[str] = None) -> str:
    """Work out the schema version of a state snapshot.

    Args:
        state: Channel values of a checkpoint.
        declared: Version recorded alongside the snapshot, if any.

    Returns:
        str: The declared version when given, otherwise the newest version
        whose marker fields are present.
    """
    if declared:
        return declared
    if "degraded_mode" in state or "missing_data" in state:
        return "3.0.0"
    if "origin_port" in state or "destination_port" in state or "agent_status" in state:
        return "2.0.0"
    return "1.0.0"


def needs_migration(version: str) -> bool:
    """Check whether a snapshot of this version must be upgraded."""
    return version != CURRENT_STATE_VERSION


def migrate_state(state: Dict[str, Any], from_version: str, to_version: str = CURRENT_STATE_VERSION) -> MigrationResult:
    """Upgrade a state snapshot step by step.

    Args:
        state: Channel values to upgrade; not modified.
        from_version: The snapshot's version.
        to_version: Target version.

    Returns:
        MigrationResult: The upgraded copy and the changes made.

    Raises:
        ValueError: If either version is unknown or the target is older.
    """
    for version in (from_version, to_version):
        if version not in STATE_VERSIONS:
            raise ValueError(f"unknown state schema version '{version}'")

    start, end = STATE_VERSIONS.index(from_version), STATE_VERSIONS.index(to_version)
    if start > end:
        raise ValueError(f"cannot downgrade state from {from_version} to {to_version}")

    migrated = dict(state)
    changes: List[MigrationChange] = []
    for step_from, step_to in zip(STATE_VERSIONS[start:end], STATE_VERSIONS[start + 1 : end + 1]):
        changes.extend(MIGRATIONS[(step_from, step_to)](migrated))

    if start < end:
        logger.debug(
            "state_migrated",
            from_version=from_version,
            to_version=to_version,
            changes=[f"{c.type}:{c.field}" for c in changes],
        )
    return MigrationResult(from_version=from_version, to_version=to_version, state=migrated, changes=changes)
