"""Test fixtures — fake transports, a scriptable upstream, wired relay objects.

Learn: Nothing here talks to Firestore or opens a socket. FakeTransport
records what the dispatcher sends (and can be told to fail or stall), and
FakeUpstream lets a test push change batches or break a stream on demand.
"""

import asyncio
import json
from collections import Counter, defaultdict
from typing import Any, AsyncIterator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from firerelay.config import Settings
from firerelay.errors import StreamError
from firerelay.events import Action, ChangeEvent, EntityType, ParentIds, RawChange
from firerelay.main import create_app, lifespan
from firerelay.realtime import BroadcastDispatcher, ConnectionManager, SubscriptionRegistry
from firerelay.routing import RoutingTable
from firerelay.upstream import StreamSpec, Upstream


class FakeTransport:
    """Stands in for a WebSocket."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.sent: list[str] = []
        self.attempts = 0
        self.closed_with: int | None = None

    async def send_text(self, data: str) -> None:
        self.attempts += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionResetError("connection reset by peer")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    @property
    def messages(self) -> list[dict]:
        return [json.loads(s) for s in self.sent]


class FakeUpstream(Upstream):
    """In-memory upstream. Each stream is a queue of batches or errors."""

    def __init__(self):
        self.queues: dict[str, asyncio.Queue] = defaultdict(asyncio.Queue)
        self.subscriptions: Counter = Counter()
        self.fail_subscribe: Counter = Counter()
        self.closed = False

    @property
    def name(self) -> str:
        return "fake"

    def push(self, stream: str, *changes: RawChange) -> None:
        self.queues[stream].put_nowait(list(changes))

    def break_stream(self, stream: str, reason: str = "connection lost") -> None:
        self.queues[stream].put_nowait(StreamError(stream, reason))

    async def watch(self, stream: StreamSpec) -> AsyncIterator[list[RawChange]]:
        self.subscriptions[stream.name] += 1
        if self.fail_subscribe[stream.name] > 0:
            self.fail_subscribe[stream.name] -= 1
            raise StreamError(stream.name, "permission denied")
        queue = self.queues[stream.name]
        while True:
            item = await queue.get()
            if isinstance(item, Exception):
                raise item
            yield item

    def close(self) -> None:
        self.closed = True


def make_event(
    entity_type: EntityType | str,
    entity_id: str = "E1",
    action: Action | str = Action.MODIFIED,
    payload: dict[str, Any] | None = None,
) -> ChangeEvent:
    """Build a ChangeEvent the way normalize() would from a payload."""
    payload = payload or {}
    return ChangeEvent(
        entity_type=EntityType(entity_type),
        action=Action(action),
        entity_id=entity_id,
        parent_ids=ParentIds.from_payload(payload),
        payload=payload,
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate() is true or fail the test."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def registry() -> SubscriptionRegistry:
    return SubscriptionRegistry()


@pytest.fixture
def dispatcher(registry) -> BroadcastDispatcher:
    return BroadcastDispatcher(registry, RoutingTable("room_scoped"), send_timeout=0.2)


@pytest.fixture
def manager(registry, dispatcher) -> ConnectionManager:
    return ConnectionManager(registry, dispatcher, "room_scoped")


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        mode="room_scoped",
        on_missing_credentials="degraded",
        send_timeout=1.0,
        backoff_initial=0.01,
        backoff_max=0.05,
    )


@pytest.fixture
def no_credentials(monkeypatch):
    """Make sure no FIREBASE_* variable leaks in from the environment."""
    for name in (
        "FIREBASE_PROJECT_ID",
        "FIREBASE_PRIVATE_KEY",
        "FIREBASE_PRIVATE_KEY_ID",
        "FIREBASE_CLIENT_EMAIL",
        "FIREBASE_CLIENT_ID",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest_asyncio.fixture()
async def client(test_settings, upstream):
    """HTTP client against an app running its lifespan with a fake upstream.

    Learn: ASGITransport doesn't drive the lifespan, so we enter it
    ourselves around the client.
    """
    app = create_app(test_settings, upstream=upstream)
    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
