"""Routing table tests."""

import pytest

from conftest import make_event
from firerelay.events import EntityType
from firerelay.routing import GLOBAL_ROOM, RoutingMode, RoutingTable, is_valid_room


@pytest.fixture
def table() -> RoutingTable:
    return RoutingTable(RoutingMode.ROOM_SCOPED)


@pytest.mark.parametrize("project_id,task_id", [("P", "T"), ("p-1", "t-99"), ("A B", "x")])
def test_task_routes_to_global_project_and_task(table, project_id, task_id):
    event = make_event("task", task_id, payload={"projectId": project_id})
    assert table.targets(event) == ["*", f"project:{project_id}", f"task:{task_id}"]


def test_project_routes_to_own_room(table):
    event = make_event("project", "P1", payload={"name": "Renamed"})
    assert table.targets(event) == ["*", "project:P1"]


def test_user_routes_to_own_room(table):
    assert table.targets(make_event("user", "U1")) == ["*", "user:U1"]


def test_comment_routes_to_task_and_comment_rooms(table):
    event = make_event("comment", "C9", payload={"projectId": "P1", "taskId": "T2", "text": "hi"})
    assert table.targets(event) == ["*", "task:T2", "comments:T2"]


def test_notification_routes_to_recipient(table):
    event = make_event("notification", "N1", payload={"userId": "U5"})
    assert table.targets(event) == ["*", "user:U5"]


@pytest.mark.parametrize(
    "entity_type,payload,expected",
    [
        ("task", {}, ["*", "task:E1"]),
        ("comment", {"projectId": "P1"}, ["*"]),
        ("notification", {"title": "ping"}, ["*"]),
    ],
)
def test_missing_parent_drops_dependent_room(table, entity_type, payload, expected):
    event = make_event(entity_type, "E1", payload=payload)
    targets = table.targets(event)
    assert targets == expected
    assert GLOBAL_ROOM in targets


def test_same_event_same_targets(table):
    event = make_event("task", "T1", payload={"projectId": "P1"})
    assert table.targets(event) == table.targets(event)


@pytest.mark.parametrize("entity_type", [e.value for e in EntityType])
def test_broadcast_only_mode_always_global(entity_type):
    table = RoutingTable("broadcast_only")
    event = make_event(entity_type, "X1", payload={"projectId": "P", "taskId": "T", "userId": "U"})
    assert table.targets(event) == ["*"]


def test_unknown_mode_rejected():
    with pytest.raises(ValueError):
        RoutingTable("everything")


@pytest.mark.parametrize(
    "room,valid",
    [
        ("*", True),
        ("project:P1", True),
        ("task:T2", True),
        ("user:U1", True),
        ("comments:T2", True),
        ("project:", False),
        ("team:1", False),
        ("task:my task", True),
        ("task:   ", False),
        ("task:T2\n", False),
        ("", False),
        ("task", False),
    ],
)
def test_room_name_validation(room, valid):
    assert is_valid_room(room) is valid


@pytest.mark.parametrize("doc_id", ["T2", "my task", "ünïcode id", "a:b"])
def test_every_emitted_room_is_joinable(table, doc_id):
    events = [
        make_event("project", doc_id),
        make_event("task", doc_id, payload={"projectId": doc_id}),
        make_event("user", doc_id),
        make_event("comment", "C1", payload={"projectId": doc_id, "taskId": doc_id}),
        make_event("notification", "N1", payload={"userId": doc_id}),
    ]
    for event in events:
        for room in table.targets(event):
            assert is_valid_room(room), room
