"""Firestore upstream — snapshot listeners bridged onto asyncio.

Learn: Firestore's on_snapshot() calls back on a background thread owned
by the client library. The callback does no relay work itself: it converts
the change list and hands it to the event loop with call_soon_threadsafe,
into a queue owned by the watch() generator. Callbacks for one listener
are queued in the order they fire, which keeps per-stream order intact.

A listener that dies (permission denied, stream reset that the library
gives up on) stops calling back. watch() checks the listener's liveness
whenever the queue has been quiet for `liveness_interval` seconds and
raises StreamError once it is no longer active.
"""

import asyncio
from typing import Any, AsyncIterator, Optional

import firebase_admin
import structlog
from firebase_admin import credentials, firestore

from firerelay.config import FirebaseCredentials
from firerelay.errors import ConfigurationError, StreamError
from firerelay.events import Action, RawChange
from firerelay.upstream.base import StreamSpec, Upstream

logger = structlog.get_logger()

# Firestore ChangeType names → relay actions.
_ACTIONS = {
    "ADDED": Action.CREATED,
    "MODIFIED": Action.MODIFIED,
    "REMOVED": Action.REMOVED,
}

_APP_NAME = "firerelay"


def to_raw_change(change: Any) -> RawChange:
    """Convert one google.cloud.firestore DocumentChange."""
    kind = getattr(change.type, "name", str(change.type)).upper()
    document = change.document
    return RawChange(
        entity_id=document.id,
        action=_ACTIONS[kind],
        snapshot=document.to_dict() or {},
    )


class FirestoreUpstream(Upstream):
    """Change streams backed by Firestore snapshot listeners."""

    def __init__(self, client: Any, app: Optional[Any] = None, liveness_interval: float = 5.0):
        self._client = client
        self._app = app
        self.liveness_interval = liveness_interval

    @property
    def name(self) -> str:
        return "firestore"

    @classmethod
    def from_credentials(cls, creds: FirebaseCredentials) -> "FirestoreUpstream":
        """Initialize a named firebase_admin app and its Firestore client.

        Raises ConfigurationError if the credentials are rejected.
        """
        try:
            app = firebase_admin.initialize_app(
                credentials.Certificate(creds.as_certificate()),
                name=_APP_NAME,
            )
            client = firestore.client(app)
        except (ValueError, IOError) as e:
            raise ConfigurationError(f"Firebase initialization failed: {e}") from e
        logger.info("firestore.initialized", project_id=creds.project_id)
        return cls(client, app=app)

    def _query(self, stream: StreamSpec) -> Any:
        if stream.collection_group:
            return self._client.collection_group(stream.name)
        return self._client.collection(stream.name)

    async def watch(self, stream: StreamSpec) -> AsyncIterator[list[RawChange]]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def on_snapshot(docs, changes, read_time):
            # Runs on the Firestore listener thread.
            try:
                item: Any = [to_raw_change(c) for c in changes]
            except Exception as e:
                item = e
            try:
                loop.call_soon_threadsafe(queue.put_nowait, item)
            except RuntimeError:
                # Event loop already closed during shutdown.
                pass

        try:
            listener = self._query(stream).on_snapshot(on_snapshot)
        except Exception as e:
            raise StreamError(stream.name, f"subscribe failed: {e}") from e

        logger.info("firestore.listening", stream=stream.name)
        try:
            while True:
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=self.liveness_interval)
                except asyncio.TimeoutError:
                    if not getattr(listener, "is_active", True):
                        raise StreamError(stream.name, "snapshot listener closed")
                    continue
                if isinstance(item, Exception):
                    raise StreamError(stream.name, f"bad snapshot: {item}") from item
                yield item
        finally:
            try:
                listener.unsubscribe()
            except Exception as e:
                logger.debug("firestore.unsubscribe_failed", stream=stream.name, error=str(e))

    def close(self) -> None:
        if self._app is not None:
            firebase_admin.delete_app(self._app)
            self._app = None
