"""WebSocket endpoint — where clients connect.

Learn: One coroutine per client. It registers the connection, then reads
frames until the client goes away and hands each text frame to the
ConnectionManager. Outbound change messages don't flow through here: the
BroadcastDispatcher writes to the socket directly from the stream tasks.

Whatever ends the loop (clean close, network error, the dispatcher
dropping a dead connection), the finally block purges the connection from
the registry before the handler returns.
"""

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from firerelay.realtime.manager import ConnectionManager

logger = structlog.get_logger()
router = APIRouter()


@router.websocket("/")
@router.websocket("/ws")
async def relay_websocket(websocket: WebSocket):
    """Real-time change feed.

    Server → client: change messages for "*" and every joined room.
    Client → server (room-scoped mode): join_room, leave_room,
    send_room_message, custom_event, ping.
    """
    manager: ConnectionManager = websocket.app.state.manager

    await websocket.accept()
    connection = await manager.accept(websocket)
    structlog.contextvars.bind_contextvars(connection_id=connection.id)

    try:
        while connection.is_open:
            message = await websocket.receive()

            if message["type"] == "websocket.disconnect":
                break

            text = message.get("text")
            if text is None:
                logger.warning("command.rejected", reason="binary frames are not supported")
                continue
            await manager.handle_message(connection, text)

    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("websocket.error")
    finally:
        manager.disconnect(connection)
        structlog.contextvars.unbind_contextvars("connection_id")
