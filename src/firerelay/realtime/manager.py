"""Connection manager — client lifecycle and inbound commands.

Learn: Each connection moves connecting → open → closed and never back.
connect() registers it and puts it in the global room "*"; disconnect()
removes it from every room before returning, so once a close has been
handled no later broadcast can pick it up. A reconnecting client is a new
connection with a new id.

Inbound commands are only honoured in room-scoped mode. A command that
fails to parse is a ProtocolError: it is logged and dropped, the
connection stays open and nothing is sent back.
"""

import asyncio
import uuid

import structlog

from firerelay.errors import ProtocolError
from firerelay.messages import event_frame
from firerelay.realtime.commands import (
    CustomEvent,
    JoinRoom,
    LeaveRoom,
    Ping,
    SendRoomMessage,
    parse_command,
)
from firerelay.realtime.dispatcher import BroadcastDispatcher
from firerelay.realtime.registry import (
    Connection,
    ConnectionState,
    SubscriptionRegistry,
    Transport,
)
from firerelay.routing import GLOBAL_ROOM, RoutingMode

logger = structlog.get_logger()


class ConnectionManager:
    """Accepts connections and applies client commands to the registry."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        dispatcher: BroadcastDispatcher,
        mode: RoutingMode | str = RoutingMode.ROOM_SCOPED,
    ):
        self.registry = registry
        self.dispatcher = dispatcher
        self.mode = RoutingMode(mode)

    @property
    def accepts_commands(self) -> bool:
        return self.mode is RoutingMode.ROOM_SCOPED

    def connect(self, transport: Transport, join_global: bool = True) -> Connection:
        """Register an accepted transport and join it to the global room."""
        connection = Connection(id=uuid.uuid4().hex, transport=transport)
        self.registry.add_connection(connection)
        connection.state = ConnectionState.OPEN
        if join_global:
            self.registry.join(connection.id, GLOBAL_ROOM)
        logger.info(
            "connection.opened",
            connection_id=connection.id,
            total=self.registry.connection_count,
        )
        return connection

    async def accept(self, transport: Transport) -> Connection:
        """Register a live socket, greet it, then join it to "*".

        The ``connected`` frame is always the first one a client sees: no
        broadcast can reach the connection before it has been sent.
        """
        connection = self.connect(transport, join_global=False)
        await self.dispatcher.send_to_connection(
            connection,
            event_frame(
                "connected",
                {"connectionId": connection.id, "mode": self.mode.value},
            ),
        )
        self.registry.join(connection.id, GLOBAL_ROOM)
        return connection

    def disconnect(self, connection: Connection) -> None:
        """Purge a closed connection from the registry. Safe to call twice."""
        removed = self.registry.remove_connection(connection.id)
        connection.state = ConnectionState.CLOSED
        if removed is not None:
            logger.info(
                "connection.closed",
                connection_id=connection.id,
                total=self.registry.connection_count,
            )

    async def close_all(self, code: int = 1001) -> int:
        """Unregister every connection and close its transport (shutdown)."""
        connections = self.registry.clear()

        async def _close(connection: Connection) -> None:
            try:
                await asyncio.wait_for(connection.transport.close(code=code), timeout=1.0)
            except Exception:
                logger.debug("connection.close_failed", connection_id=connection.id)

        if connections:
            await asyncio.gather(*(_close(c) for c in connections))
        logger.info("connection.all_closed", count=len(connections))
        return len(connections)

    async def handle_message(self, connection: Connection, text: str) -> None:
        """Apply one inbound text frame."""
        if not connection.is_open:
            return
        if not self.accepts_commands:
            logger.debug("command.ignored", connection_id=connection.id, mode=self.mode.value)
            return

        try:
            command = parse_command(text)
        except ProtocolError as e:
            logger.warning("command.rejected", connection_id=connection.id, reason=str(e))
            return

        if isinstance(command, JoinRoom):
            self.registry.join(connection.id, command.data)
            logger.debug("room.joined", connection_id=connection.id, room=command.data)

        elif isinstance(command, LeaveRoom):
            if command.data == GLOBAL_ROOM:
                logger.warning(
                    "command.rejected",
                    connection_id=connection.id,
                    reason="cannot leave the global room",
                )
                return
            self.registry.leave(connection.id, command.data)
            logger.debug("room.left", connection_id=connection.id, room=command.data)

        elif isinstance(command, SendRoomMessage):
            room = command.data.room
            delivered = await self.dispatcher.send_to_room(
                room,
                event_frame(
                    "room_message",
                    {"from": connection.id, "message": command.data.message},
                    room=room,
                ),
            )
            logger.debug(
                "room.message_relayed",
                connection_id=connection.id,
                room=room,
                delivered=delivered,
            )

        elif isinstance(command, CustomEvent):
            await self.dispatcher.send_to_connection(
                connection,
                event_frame("custom_event_response", {"status": "received", "data": command.data}),
            )

        elif isinstance(command, Ping):
            await self.dispatcher.send_to_connection(connection, event_frame("pong"))
