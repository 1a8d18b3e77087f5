import asyncio

import pytest

from orbit.models.notification import NudgeSent
from orbit.realtime.hub import RoomHub


class MockWS:
    def __init__(self, fail=False):
        self.sent = []
        self.closed = False
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(data)

    async def close(self, code=1000, reason=None):
        self.closed = True


@pytest.fixture
def hub():
    return RoomHub(keepalive_seconds=30, stale_after_seconds=90)


@pytest.mark.asyncio
async def test_register_tracks_online_users(hub):
    a1, a2, b = MockWS(), MockWS(), MockWS()
    await hub.register("r1", a1, "alice")
    await hub.register("r1", a2, "alice")
    await hub.register("r1", b, "bob")

    assert await hub.get_room_size("r1") == 3
    assert await hub.online_users("r1") == ["alice", "bob"]

    await hub.unregister(a1)
    assert await hub.online_users("r1") == ["alice", "bob"]
    await hub.unregister(a2)
    assert await hub.online_users("r1") == ["bob"]


@pytest.mark.asyncio
async def test_empty_rooms_are_cleaned_up(hub):
    ws = MockWS()
    await hub.register("r1", ws, "alice")
    await hub.unregister(ws)
    assert await hub.get_room_size("r1") == 0
    assert await hub.online_users("r1") == []


@pytest.mark.asyncio
async def test_broadcast_prunes_dead_sockets(hub):
    good, dead = MockWS(), MockWS(fail=True)
    await hub.register("r1", good, "alice")
    await hub.register("r1", dead, "bob")

    sent = await hub.broadcast("r1", {"type": "hello"})
    assert sent == 1
    assert good.sent == [{"type": "hello"}]
    assert await hub.online_users("r1") == ["alice"]


@pytest.mark.asyncio
async def test_broadcast_is_scoped_to_room(hub):
    in_room, elsewhere = MockWS(), MockWS()
    await hub.register("r1", in_room, "alice")
    await hub.register("r2", elsewhere, "bob")
    await hub.broadcast("r1", {"type": "x"})
    assert elsewhere.sent == []


@pytest.mark.asyncio
async def test_stale_connections_are_pruned(hub):
    quiet, chatty = MockWS(), MockWS()
    await hub.register("r1", quiet, "alice")
    await hub.register("r1", chatty, "bob")

    now = hub._last_seen[quiet] + 91
    hub._last_seen[chatty] = now - 10

    assert await hub.prune_stale(now=now) == 1
    assert quiet.closed
    assert await hub.online_users("r1") == ["bob"]


@pytest.mark.asyncio
async def test_publish_delivers_through_running_loop(hub):
    ws = MockWS()
    await hub.register("r1", ws, "alice")
    await hub.start()
    try:
        hub.publish(NudgeSent(room_id="r1", recipient_id=None, from_user_id="bob", message="hi"))
        await asyncio.sleep(0.05)
    finally:
        await hub.stop()

    assert ws.sent[0]["type"] == "nudge.sent"
    assert ws.sent[0]["payload"]["fromUserId"] == "bob"
    assert ws.closed
    assert not hub.running


def test_publish_without_running_hub_is_dropped(hub):
    hub.publish(NudgeSent(room_id="r1", recipient_id=None, from_user_id="bob", message="hi"))
    assert not hub.running
