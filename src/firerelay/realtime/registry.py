"""Subscription registry — connections ↔ rooms.

Learn: Two indexes are kept in step so every operation is O(1):

    _members:  room    → {connection ids}
    conn.rooms (per connection, looked up via _connections): {room names}

A room exists only while it has members; the last leave deletes it and the
next join recreates it. None of the methods await, so on a single event
loop each call is one indivisible step: a broadcast that is iterating a
members() snapshot can never observe a half-removed connection.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol

import structlog

logger = structlog.get_logger()


class Transport(Protocol):
    """What the registry needs from a client transport (a Starlette WebSocket fits)."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(eq=False)
class Connection:
    """One live client connection. Identity is the object itself."""

    id: str
    transport: Transport
    rooms: set[str] = field(default_factory=set)
    state: ConnectionState = ConnectionState.CONNECTING

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN


class SubscriptionRegistry:
    """Bidirectional index of connections and the rooms they joined."""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._members: dict[str, set[str]] = {}

    # ─── Connections ─────────────────────────────────────

    def add_connection(self, connection: Connection) -> None:
        if connection.id in self._connections:
            raise ValueError(f"Connection id already registered: {connection.id}")
        self._connections[connection.id] = connection

    def get(self, conn_id: str) -> Optional[Connection]:
        return self._connections.get(conn_id)

    def remove_connection(self, conn_id: str) -> Optional[Connection]:
        """Drop a connection from every room it belongs to, in one step.

        Returns the removed Connection, or None if it was not registered.
        """
        connection = self._connections.pop(conn_id, None)
        if connection is None:
            return None

        for room in connection.rooms:
            members = self._members.get(room)
            if members is None:
                continue
            members.discard(conn_id)
            if not members:
                del self._members[room]
        connection.rooms.clear()
        connection.state = ConnectionState.CLOSED

        logger.debug("registry.connection_removed", connection_id=conn_id)
        return connection

    # ─── Rooms ───────────────────────────────────────────

    def join(self, conn_id: str, room: str) -> bool:
        """Add a connection to a room. Returns False if the connection is unknown."""
        connection = self._connections.get(conn_id)
        if connection is None:
            return False
        connection.rooms.add(room)
        self._members.setdefault(room, set()).add(conn_id)
        return True

    def leave(self, conn_id: str, room: str) -> bool:
        """Remove a connection from a room. Returns False if the connection is unknown."""
        connection = self._connections.get(conn_id)
        if connection is None:
            return False
        connection.rooms.discard(room)
        members = self._members.get(room)
        if members is not None:
            members.discard(conn_id)
            if not members:
                del self._members[room]
        return True

    def members(self, room: str) -> list[Connection]:
        """Snapshot of the connections currently in a room."""
        return [self._connections[cid] for cid in self._members.get(room, ())]

    def member_ids(self, room: str) -> frozenset[str]:
        return frozenset(self._members.get(room, ()))

    def rooms_of(self, conn_id: str) -> frozenset[str]:
        connection = self._connections.get(conn_id)
        return frozenset(connection.rooms) if connection else frozenset()

    def has_room(self, room: str) -> bool:
        return room in self._members

    # ─── Stats ───────────────────────────────────────────

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def room_count(self) -> int:
        return len(self._members)

    def stats(self) -> dict:
        """Registry statistics for monitoring."""
        return {
            "connections": self.connection_count,
            "rooms": self.room_count,
            "members": {room: len(ids) for room, ids in self._members.items()},
        }

    def clear(self) -> list[Connection]:
        """Remove every connection. Returns them so the caller can close transports."""
        connections = list(self._connections.values())
        for connection in connections:
            self.remove_connection(connection.id)
        return connections
