"""Outbound message shapes and JSON encoding.

Two families go to clients:

- Global-channel message (room "*"): carries an explicit ``type``.
      {"type": "task_update", "action": "modified",
       "projectId": "P1", "taskId": "T2", "data": {"id": "T2", ...}}

- Room-scoped message (any other room): the event name implies the entity
  type, so the payload has no ``type``. It travels in an event frame:
      {"event": "task_updated", "room": "task:T2",
       "payload": {"action": "modified", "projectId": "P1", "taskId": "T2",
                   "data": {"id": "T2", ...}}}

Learn: Id fields are built from the event only — the entity's own id from
entity_id, ancestors from parent_ids. A missing ancestor is left out of the
message rather than sent as null.
"""

import base64
import json
from datetime import date, datetime
from typing import Any

from firerelay.events import ChangeEvent, EntityType

GLOBAL_TYPES = {
    EntityType.PROJECT: "project_update",
    EntityType.TASK: "task_update",
    EntityType.USER: "user_update",
    EntityType.COMMENT: "comment_update",
    EntityType.NOTIFICATION: "notification_update",
}

ROOM_EVENTS = {
    EntityType.PROJECT: "project_updated",
    EntityType.TASK: "task_updated",
    EntityType.USER: "user_updated",
    EntityType.COMMENT: "comment_updated",
    EntityType.NOTIFICATION: "notification",
}


def id_fields(event: ChangeEvent) -> dict[str, str]:
    """The id fields relevant to the event's entity type."""
    parents = event.parent_ids
    if event.entity_type is EntityType.PROJECT:
        fields = {"projectId": event.entity_id}
    elif event.entity_type is EntityType.TASK:
        fields = {"projectId": parents.project_id, "taskId": event.entity_id}
    elif event.entity_type is EntityType.USER:
        fields = {"userId": event.entity_id}
    elif event.entity_type is EntityType.COMMENT:
        fields = {
            "projectId": parents.project_id,
            "taskId": parents.task_id,
            "commentId": event.entity_id,
        }
    else:
        fields = {"userId": parents.user_id, "notificationId": event.entity_id}
    return {k: v for k, v in fields.items() if v is not None}


def event_data(event: ChangeEvent) -> dict[str, Any]:
    """``{"id": entity_id, **payload}`` — payload keys win, like a spread."""
    return {"id": event.entity_id, **event.payload}


def room_payload(event: ChangeEvent) -> dict[str, Any]:
    """Room-scoped message body (no ``type``)."""
    return {"action": event.action.value, **id_fields(event), "data": event_data(event)}


def global_message(event: ChangeEvent) -> dict[str, Any]:
    """Global-channel message with its ``type`` discriminator."""
    return {"type": GLOBAL_TYPES[event.entity_type], **room_payload(event)}


def room_frame(event: ChangeEvent, room: str) -> dict[str, Any]:
    """Room-scoped message wrapped with its event name and room."""
    return {"event": ROOM_EVENTS[event.entity_type], "room": room, "payload": room_payload(event)}


def event_frame(event: str, payload: Any = None, **extra: Any) -> dict[str, Any]:
    """Generic server → client event frame (acks, relays, pong)."""
    frame: dict[str, Any] = {"event": event, **extra}
    if payload is not None:
        frame["payload"] = payload
    return frame


def _encode_value(value: Any) -> Any:
    """json.dumps fallback for Firestore value types."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    # GeoPoint
    if hasattr(value, "latitude") and hasattr(value, "longitude"):
        return {"latitude": value.latitude, "longitude": value.longitude}
    # DocumentReference
    path = getattr(value, "path", None)
    if isinstance(path, str):
        return path
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _encode_lossy(value: Any) -> Any:
    try:
        return _encode_value(value)
    except TypeError:
        return str(value)


def dumps(message: Any, strict: bool = True) -> str:
    """Serialize an outbound message to UTF-8 JSON text.

    With strict=False, values no encoder knows are sent as str(value)
    instead of raising TypeError.
    """
    default = _encode_value if strict else _encode_lossy
    return json.dumps(message, default=default, ensure_ascii=False)
