"""Change events — the canonical form of one upstream document change.

Learn: Every upstream stream yields RawChange records. normalize() turns
one RawChange into one ChangeEvent using nothing but that record: the
parent ids are read out of the record's own snapshot. No state is kept
between calls, so no event can pick up a field computed for another
event or another stream.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional


class EntityType(str, Enum):
    PROJECT = "project"
    TASK = "task"
    USER = "user"
    COMMENT = "comment"
    NOTIFICATION = "notification"


class Action(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"


# ParentIds field → snapshot key that carries it.
PARENT_KEYS = {
    "project_id": "projectId",
    "task_id": "taskId",
    "user_id": "userId",
}


@dataclass(frozen=True)
class ParentIds:
    """Ancestor ids as found in the entity's own snapshot (None if absent)."""

    project_id: Optional[str] = None
    task_id: Optional[str] = None
    user_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ParentIds":
        return cls(**{name: _id_or_none(payload.get(key)) for name, key in PARENT_KEYS.items()})


@dataclass(frozen=True)
class RawChange:
    """One change as reported by an upstream stream."""

    entity_id: str
    action: Action
    snapshot: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChangeEvent:
    """Normalized record of one create/modify/remove on a tracked entity."""

    entity_type: EntityType
    action: Action
    entity_id: str
    parent_ids: ParentIds = field(default_factory=ParentIds)
    payload: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.entity_id:
            raise ValueError("ChangeEvent.entity_id must be a non-empty string")
        # Freeze the payload so handlers cannot leak edits into each other.
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))


def normalize(entity_type: EntityType, raw: RawChange) -> ChangeEvent:
    """Build a ChangeEvent from a single raw change."""
    payload = dict(raw.snapshot or {})
    return ChangeEvent(
        entity_type=entity_type,
        action=Action(raw.action),
        entity_id=str(raw.entity_id),
        parent_ids=ParentIds.from_payload(payload),
        payload=payload,
    )


def _id_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value
    # Firestore document references carry the id on the object.
    ref_id = getattr(value, "id", None)
    if isinstance(ref_id, str) and ref_id:
        return ref_id
    return str(value)
