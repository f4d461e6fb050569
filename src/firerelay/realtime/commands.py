"""Client → server command frames.

Every inbound frame is a JSON object ``{"event": <name>, "data": <arg>}``:

    {"event": "join_room", "data": "task:T2"}
    {"event": "leave_room", "data": "task:T2"}
    {"event": "send_room_message", "data": {"room": "task:T2", "message": "hi"}}
    {"event": "custom_event", "data": <anything>}
    {"event": "ping"}

parse_command() validates a raw text frame into one of the models below or
raises ProtocolError.
"""

import json
from typing import Annotated, Any, Literal, Union

from pydantic import AfterValidator, BaseModel, Field, TypeAdapter, ValidationError

from firerelay.errors import ProtocolError
from firerelay.routing import is_valid_room


def _check_room(room: str) -> str:
    if not is_valid_room(room):
        raise ValueError(f"invalid room name: {room!r}")
    return room


RoomName = Annotated[str, AfterValidator(_check_room)]


class JoinRoom(BaseModel):
    event: Literal["join_room"]
    data: RoomName


class LeaveRoom(BaseModel):
    event: Literal["leave_room"]
    data: RoomName


class RoomMessage(BaseModel):
    room: RoomName
    message: Any = None


class SendRoomMessage(BaseModel):
    event: Literal["send_room_message"]
    data: RoomMessage


class CustomEvent(BaseModel):
    event: Literal["custom_event"]
    data: Any = None


class Ping(BaseModel):
    event: Literal["ping"]


ClientCommand = Annotated[
    Union[JoinRoom, LeaveRoom, SendRoomMessage, CustomEvent, Ping],
    Field(discriminator="event"),
]

_command_adapter = TypeAdapter(ClientCommand)


def parse_command(text: str) -> ClientCommand:
    """Parse one inbound text frame into a command model."""
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"frame is not valid JSON: {e.msg}") from e

    if not isinstance(raw, dict):
        raise ProtocolError("frame must be a JSON object")

    try:
        return _command_adapter.validate_python(raw)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ProtocolError(f"invalid command {raw.get('event')!r}: {errors}") from e
