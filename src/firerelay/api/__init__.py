"""HTTP routes.

Learn: The relay's only HTTP surface is the health check; clients talk
to it over the WebSocket endpoint in firerelay.realtime.websocket.
"""

from fastapi import APIRouter

from firerelay.api.health import router as health_router

api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
