"""Routing table — which rooms see a given ChangeEvent.

Learn: Routing is a pure function of the event. It never looks at the
registry, the clock or any other event, so the same event always yields
the same target list. Rooms whose id would come from a missing parent id
are dropped; the global room "*" is always first.

    project       → *, project:{id}
    task          → *, project:{projectId}, task:{id}
    user          → *, user:{id}
    comment       → *, task:{taskId}, comments:{taskId}
    notification  → *, user:{userId}
"""

import re
from enum import Enum
from typing import Callable, Optional

from firerelay.events import ChangeEvent, EntityType

GLOBAL_ROOM = "*"

# Room prefixes a client may join, besides "*".
ROOM_SCOPES = ("project", "task", "user", "comments")

_ROOM_RE = re.compile(rf"(?:{'|'.join(ROOM_SCOPES)}):(.+)")


def project_room(project_id: str) -> str:
    return f"project:{project_id}"


def task_room(task_id: str) -> str:
    return f"task:{task_id}"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def comments_room(task_id: str) -> str:
    return f"comments:{task_id}"


def is_valid_room(room: str) -> bool:
    """True for "*" and for "{scope}:{id}" with a known scope and a non-blank id.

    Document ids may contain spaces, so any id the router can emit is
    accepted; only blank ids and line breaks are not.
    """
    if room == GLOBAL_ROOM:
        return True
    match = _ROOM_RE.fullmatch(room)
    return match is not None and bool(match.group(1).strip())


class RoutingMode(str, Enum):
    ROOM_SCOPED = "room_scoped"
    BROADCAST_ONLY = "broadcast_only"


def _maybe(room_for: Callable[[str], str], entity_id: Optional[str]) -> list[str]:
    return [room_for(entity_id)] if entity_id else []


def _project_rooms(event: ChangeEvent) -> list[str]:
    return [project_room(event.entity_id)]


def _task_rooms(event: ChangeEvent) -> list[str]:
    return _maybe(project_room, event.parent_ids.project_id) + [task_room(event.entity_id)]


def _user_rooms(event: ChangeEvent) -> list[str]:
    return [user_room(event.entity_id)]


def _comment_rooms(event: ChangeEvent) -> list[str]:
    task_id = event.parent_ids.task_id
    return _maybe(task_room, task_id) + _maybe(comments_room, task_id)


def _notification_rooms(event: ChangeEvent) -> list[str]:
    return _maybe(user_room, event.parent_ids.user_id)


_RULES: dict[EntityType, Callable[[ChangeEvent], list[str]]] = {
    EntityType.PROJECT: _project_rooms,
    EntityType.TASK: _task_rooms,
    EntityType.USER: _user_rooms,
    EntityType.COMMENT: _comment_rooms,
    EntityType.NOTIFICATION: _notification_rooms,
}


class RoutingTable:
    """Maps a ChangeEvent to its ordered list of target rooms."""

    def __init__(self, mode: RoutingMode | str = RoutingMode.ROOM_SCOPED):
        self.mode = RoutingMode(mode)

    def targets(self, event: ChangeEvent) -> list[str]:
        if self.mode is RoutingMode.BROADCAST_ONLY:
            return [GLOBAL_ROOM]

        targets = [GLOBAL_ROOM]
        for room in _RULES[event.entity_type](event):
            if room not in targets:
                targets.append(room)
        return targets
