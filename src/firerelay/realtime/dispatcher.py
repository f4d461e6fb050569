"""Broadcast dispatcher — fan-out of ChangeEvents to live connections.

Learn: For every target room the dispatcher asks the registry for the
room's members at that moment (no caching) and serializes each message
shape once. All connections are then served concurrently in one gather,
so a slow member of "*" never holds back a room frame to someone else.
Each send has its own timeout.
A send that fails or times out only affects its own connection: the
connection is dropped from the registry and its transport closed. No
exception leaves dispatch(), and no other send waits on the failed one.

Delivery is best-effort. There is no outbound queue and no retry: a
connection that cannot take a message simply misses it.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from firerelay.errors import SendError
from firerelay.events import ChangeEvent
from firerelay.messages import dumps, global_message, room_frame
from firerelay.realtime.registry import Connection, SubscriptionRegistry
from firerelay.routing import GLOBAL_ROOM, RoutingTable

logger = structlog.get_logger()


@dataclass
class DispatchStats:
    """Runtime counters for monitoring."""

    events: int = 0
    messages_sent: int = 0
    send_failures: int = 0
    connections_dropped: int = 0


class BroadcastDispatcher:
    """Resolves target rooms to connections and delivers messages."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        routing: RoutingTable,
        send_timeout: float = 5.0,
    ):
        self.registry = registry
        self.routing = routing
        self.send_timeout = send_timeout
        self.stats = DispatchStats()

    async def publish(self, event: ChangeEvent) -> int:
        """Route an event and dispatch it. Returns the number of successful sends."""
        return await self.dispatch(event, self.routing.targets(event))

    async def dispatch(self, event: ChangeEvent, targets: list[str]) -> int:
        """Deliver an event to every member of every target room.

        Every room's members are resolved before the first send, then all
        connections are served concurrently. A connection that sits in
        several target rooms gets its frames in target order.
        """
        self.stats.events += 1
        global_text: Optional[str] = None
        plan: dict[str, tuple[Connection, list[str]]] = {}

        for room in targets:
            if room == GLOBAL_ROOM:
                if global_text is None:
                    global_text = self._serialize(event, global_message(event))
                text = global_text
            else:
                text = self._serialize(event, room_frame(event, room))
            for connection in self.registry.members(room):
                plan.setdefault(connection.id, (connection, []))[1].append(text)

        delivered = 0
        if plan:
            results = await asyncio.gather(
                *(self._deliver_all(conn, texts) for conn, texts in plan.values()),
                return_exceptions=True,
            )
            delivered = sum(r for r in results if isinstance(r, int))

        logger.debug(
            "dispatch.event",
            entity_type=event.entity_type.value,
            action=event.action.value,
            entity_id=event.entity_id,
            targets=targets,
            delivered=delivered,
        )
        return delivered

    async def send_to_room(self, room: str, frame: dict[str, Any]) -> int:
        """Send one frame to every current member of a room."""
        return await self._fan_out(room, dumps(frame))

    async def send_to_connection(self, connection: Connection, frame: dict[str, Any]) -> bool:
        """Send one frame to a single connection."""
        return await self._deliver(connection, dumps(frame))

    # ─── Internals ───────────────────────────────────────

    def _serialize(self, event: ChangeEvent, message: dict[str, Any]) -> str:
        try:
            return dumps(message)
        except TypeError as e:
            logger.warning(
                "dispatch.encode_failed",
                entity_type=event.entity_type.value,
                entity_id=event.entity_id,
                error=str(e),
            )
            return dumps(message, strict=False)

    async def _fan_out(self, room: str, text: str) -> int:
        members = self.registry.members(room)
        if not members:
            return 0
        results = await asyncio.gather(
            *(self._deliver(conn, text) for conn in members),
            return_exceptions=True,
        )
        return sum(1 for r in results if r is True)

    async def _deliver_all(self, connection: Connection, texts: list[str]) -> int:
        """Send frames to one connection in order; stop once it is dropped."""
        sent = 0
        for text in texts:
            if not await self._deliver(connection, text):
                break
            sent += 1
        return sent

    async def _deliver(self, connection: Connection, text: str) -> bool:
        """Send to one connection; on failure drop it. Never raises."""
        if not connection.is_open:
            return False
        try:
            await self._send(connection, text)
        except SendError as e:
            self.stats.send_failures += 1
            logger.warning(
                "dispatch.send_failed",
                connection_id=connection.id,
                reason=e.reason,
            )
            await self._drop(connection)
            return False
        self.stats.messages_sent += 1
        return True

    async def _send(self, connection: Connection, text: str) -> None:
        try:
            await asyncio.wait_for(
                connection.transport.send_text(text),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError:
            raise SendError(connection.id, f"timed out after {self.send_timeout}s")
        except Exception as e:
            raise SendError(connection.id, str(e) or type(e).__name__) from e

    async def _drop(self, connection: Connection) -> None:
        """Unregister a dead connection, then close its transport."""
        if self.registry.remove_connection(connection.id) is None:
            return
        self.stats.connections_dropped += 1
        logger.info("dispatch.connection_dropped", connection_id=connection.id)
        try:
            await asyncio.wait_for(connection.transport.close(code=1011), timeout=1.0)
        except Exception:
            # Transport already gone; nothing left to release.
            logger.debug("dispatch.close_failed", connection_id=connection.id)

    def get_stats(self) -> dict:
        return {
            "events": self.stats.events,
            "messages_sent": self.stats.messages_sent,
            "send_failures": self.stats.send_failures,
            "connections_dropped": self.stats.connections_dropped,
        }
