"""Real-time delivery — registry, dispatcher, connection manager, endpoint.

Learn: Events flow one way and commands the other:
1. ChangeSource → BroadcastDispatcher → SubscriptionRegistry members → sockets
2. Socket frames → ConnectionManager → SubscriptionRegistry

All three objects are built once in the app lifespan and shared by
reference; nothing here is module-level state.
"""

from firerelay.realtime.dispatcher import BroadcastDispatcher
from firerelay.realtime.manager import ConnectionManager
from firerelay.realtime.registry import Connection, ConnectionState, SubscriptionRegistry

__all__ = [
    "BroadcastDispatcher",
    "Connection",
    "ConnectionManager",
    "ConnectionState",
    "SubscriptionRegistry",
]
