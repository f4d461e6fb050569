"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The lifespan builds the relay's object graph once:

    SubscriptionRegistry ─┬─► BroadcastDispatcher ─► ChangeSource (5 stream tasks)
                          └─► ConnectionManager   ─► /ws endpoint

Everything is kept on app.state and torn down in reverse at shutdown.

Missing Firebase credentials are handled here, by policy:
- fail_fast: raise ConfigurationError, uvicorn aborts startup.
- degraded:  log loudly and serve clients without upstream events.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI

from firerelay import __version__
from firerelay.api import api_router
from firerelay.config import FirebaseCredentials, Settings, settings as default_settings
from firerelay.errors import ConfigurationError
from firerelay.log import configure_logging
from firerelay.realtime import BroadcastDispatcher, ConnectionManager, SubscriptionRegistry
from firerelay.routing import RoutingTable
from firerelay.source import ChangeSource
from firerelay.upstream import Upstream

logger = structlog.get_logger()


def connect_upstream(cfg: Settings) -> Optional[Upstream]:
    """Build the Firestore upstream, or None when running degraded.

    Raises ConfigurationError under the fail_fast policy.
    """
    creds = FirebaseCredentials()
    missing = creds.missing()
    fail_fast = cfg.on_missing_credentials == "fail_fast"

    if missing:
        logger.warning(
            "firerelay.credentials_missing",
            missing=list(missing),
            policy=cfg.on_missing_credentials,
        )
        if fail_fast:
            raise ConfigurationError(
                f"Missing Firebase credentials: {', '.join(missing)}",
                missing=missing,
            )
        logger.warning(
            "firerelay.degraded",
            reason="no upstream credentials, serving clients without change events",
        )
        return None

    from firerelay.upstream.firestore import FirestoreUpstream

    try:
        return FirestoreUpstream.from_credentials(creds)
    except ConfigurationError as e:
        logger.error(
            "firerelay.firebase_init_failed",
            error=str(e),
            policy=cfg.on_missing_credentials,
        )
        if fail_fast:
            raise
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` at shutdown.
    """
    cfg: Settings = app.state.settings
    logger.info(
        "firerelay.starting",
        version=__version__,
        mode=cfg.mode,
        port=cfg.port,
        on_missing_credentials=cfg.on_missing_credentials,
    )

    registry = SubscriptionRegistry()
    dispatcher = BroadcastDispatcher(
        registry,
        RoutingTable(cfg.mode),
        send_timeout=cfg.send_timeout,
    )
    manager = ConnectionManager(registry, dispatcher, cfg.mode)

    upstream = app.state.upstream
    if upstream is None:
        upstream = connect_upstream(cfg)

    source: Optional[ChangeSource] = None
    if upstream is not None:
        source = ChangeSource(
            upstream,
            dispatcher.publish,
            backoff_initial=cfg.backoff_initial,
            backoff_max=cfg.backoff_max,
            emit_initial_snapshot=cfg.emit_initial_snapshot,
        )
        source.start()

    app.state.registry = registry
    app.state.dispatcher = dispatcher
    app.state.manager = manager
    app.state.source = source

    yield

    # Shutdown
    logger.info("firerelay.shutdown")

    if source is not None:
        await source.stop()

    await manager.close_all()

    if upstream is not None:
        await asyncio.to_thread(upstream.close)

    logger.info("firerelay.stopped", delivery=dispatcher.get_stats())


def create_app(
    app_settings: Optional[Settings] = None,
    upstream: Optional[Upstream] = None,
) -> FastAPI:
    """Build and return the FastAPI application.

    Args:
        app_settings: Overrides the env-loaded settings (tests).
        upstream: Use this change-stream backend instead of Firestore.
    """
    app = FastAPI(
        title="firerelay",
        description="Relays Firestore document changes to WebSocket clients",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = app_settings or default_settings
    app.state.upstream = upstream

    app.include_router(api_router)

    from firerelay.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: firerelay.main:app)
app = create_app()


def run() -> None:
    """Console entry point: configure logging and serve until terminated."""
    configure_logging(default_settings.log_level, json=default_settings.log_json)
    uvicorn.run(app, host=default_settings.host, port=default_settings.port)


if __name__ == "__main__":
    run()
