"""Health check endpoint.

Learn: Reports whether the relay is receiving upstream events and how
many clients it is serving. "degraded" means clients are connected to a
relay that cannot currently see changes: upstream disabled, or a stream
is in backoff.
"""

from fastapi import APIRouter, Request

from firerelay import __version__

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Report relay status, upstream streams and delivery counters."""
    state = request.app.state
    source = state.source

    checks = {
        "server": "ok",
        "version": __version__,
        "mode": state.manager.mode.value,
        "upstream": "connected" if source is not None else "disabled",
        "connections": state.registry.connection_count,
        "rooms": state.registry.room_count,
        "delivery": state.dispatcher.get_stats(),
        "streams": source.get_status() if source is not None else {},
    }

    degraded = source is None or source.degraded
    return {"status": "degraded" if degraded else "healthy", **checks}
