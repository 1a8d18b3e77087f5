# orbit/conftest.py
import os
from datetime import datetime, timezone

import pytest

from orbit.core.store import InMemoryStore, set_store
from orbit.models.room import Room, RoomMember, RoomTask
from orbit.realtime.notifier import InMemoryNotifier, set_notifier

# Task that has existed long before any test day
LONG_AGO = datetime(2023, 12, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def db_url():
    """SQL store tests use TEST_DATABASE_URL when set, SQLite in-memory otherwise."""
    return os.getenv("TEST_DATABASE_URL") or "sqlite://"


@pytest.fixture(autouse=True)
def store():
    """Fresh in-memory store per test, installed as the process store."""
    fresh = InMemoryStore()
    set_store(fresh)
    yield fresh
    set_store(None)


@pytest.fixture(autouse=True)
def notifier():
    sink = InMemoryNotifier()
    set_notifier(sink)
    yield sink
    set_notifier(None)


def make_room(room_id="r1", members=("alice", "bob", "carol"), timezone_name="UTC", tasks=None) -> Room:
    room = Room(room_id=room_id, name=f"Room {room_id}", timezone=timezone_name)
    for user_id in members:
        room.members[user_id] = RoomMember(user_id=user_id, username=user_id.title())
    for task in tasks or [
        RoomTask(task_id="t1", title="Read 10 pages", points=10, created_at=LONG_AGO),
        RoomTask(task_id="t2", title="Stretch", points=5, created_at=LONG_AGO),
        RoomTask(task_id="t3", title="Journal", points=15, created_at=LONG_AGO),
    ]:
        room.tasks[task.task_id] = task
    return room


@pytest.fixture
def room(store):
    seeded = make_room()
    store.save_room(seeded)
    return seeded
