"""Firestore upstream tests against a fake client (no network)."""

import asyncio
import threading
from types import SimpleNamespace

import pytest

from firerelay.errors import StreamError
from firerelay.events import Action, EntityType
from firerelay.upstream import StreamSpec
from firerelay.upstream.firestore import FirestoreUpstream, to_raw_change


def _doc_change(kind, doc_id, data):
    return SimpleNamespace(
        type=SimpleNamespace(name=kind),
        document=SimpleNamespace(id=doc_id, to_dict=lambda: data),
    )


class FakeWatch:
    def __init__(self):
        self.is_active = True
        self.unsubscribed = False

    def unsubscribe(self):
        self.unsubscribed = True
        self.is_active = False


class FakeQuery:
    """Calls the snapshot callback from its own thread, like the real client."""

    def __init__(self, batches, fail=False):
        self.batches = batches
        self.fail = fail
        self.watch = FakeWatch()

    def on_snapshot(self, callback):
        if self.fail:
            raise PermissionError("missing or insufficient permissions")

        def fire():
            for changes in self.batches:
                callback([], changes, None)

        threading.Thread(target=fire, daemon=True).start()
        return self.watch


class FakeClient:
    def __init__(self, query):
        self.query = query
        self.calls = []

    def collection(self, name):
        self.calls.append(("collection", name))
        return self.query

    def collection_group(self, name):
        self.calls.append(("collection_group", name))
        return self.query


PROJECTS = StreamSpec("projects", EntityType.PROJECT)
TASKS = StreamSpec("tasks", EntityType.TASK, collection_group=True)


@pytest.mark.parametrize(
    "kind,action",
    [("ADDED", Action.CREATED), ("MODIFIED", Action.MODIFIED), ("REMOVED", Action.REMOVED)],
)
def test_to_raw_change(kind, action):
    raw = to_raw_change(_doc_change(kind, "P1", {"name": "Alpha"}))
    assert raw.entity_id == "P1"
    assert raw.action is action
    assert raw.snapshot == {"name": "Alpha"}


def test_to_raw_change_tolerates_empty_document():
    raw = to_raw_change(_doc_change("REMOVED", "P1", None))
    assert raw.snapshot == {}


@pytest.mark.asyncio
async def test_watch_yields_batches_in_order_and_unsubscribes():
    query = FakeQuery([
        [_doc_change("ADDED", "P1", {"n": 1})],
        [_doc_change("MODIFIED", "P1", {"n": 2}), _doc_change("REMOVED", "P2", {})],
    ])
    client = FakeClient(query)
    upstream = FirestoreUpstream(client, liveness_interval=0.05)

    stream = upstream.watch(PROJECTS)
    first = await asyncio.wait_for(stream.__anext__(), timeout=2.0)
    second = await asyncio.wait_for(stream.__anext__(), timeout=2.0)
    await stream.aclose()

    assert client.calls == [("collection", "projects")]
    assert [(c.entity_id, c.action) for c in first] == [("P1", Action.CREATED)]
    assert [(c.entity_id, c.snapshot.get("n")) for c in second] == [("P1", 2), ("P2", None)]
    assert query.watch.unsubscribed


@pytest.mark.asyncio
async def test_tasks_use_collection_group():
    client = FakeClient(FakeQuery([[_doc_change("ADDED", "T1", {})]]))
    upstream = FirestoreUpstream(client, liveness_interval=0.05)

    stream = upstream.watch(TASKS)
    await asyncio.wait_for(stream.__anext__(), timeout=2.0)
    await stream.aclose()

    assert client.calls == [("collection_group", "tasks")]


@pytest.mark.asyncio
async def test_dead_listener_raises_stream_error():
    query = FakeQuery([])
    query.watch.is_active = False
    upstream = FirestoreUpstream(FakeClient(query), liveness_interval=0.05)

    with pytest.raises(StreamError) as exc_info:
        await asyncio.wait_for(upstream.watch(PROJECTS).__anext__(), timeout=2.0)
    assert exc_info.value.stream == "projects"
    assert query.watch.unsubscribed


@pytest.mark.asyncio
async def test_subscribe_failure_raises_stream_error():
    upstream = FirestoreUpstream(FakeClient(FakeQuery([], fail=True)))

    with pytest.raises(StreamError, match="subscribe failed"):
        await upstream.watch(PROJECTS).__anext__()


@pytest.mark.asyncio
async def test_unknown_change_type_fails_the_stream():
    query = FakeQuery([[_doc_change("EXPLODED", "P1", {})]])
    upstream = FirestoreUpstream(FakeClient(query), liveness_interval=0.05)

    with pytest.raises(StreamError, match="bad snapshot"):
        await asyncio.wait_for(upstream.watch(PROJECTS).__anext__(), timeout=2.0)
