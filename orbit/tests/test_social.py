from datetime import datetime, timedelta, timezone

import pytest

from orbit.core.errors import LimitReachedError, NotFoundError, PermissionError, ValidationError
from orbit.features.social.service import NUDGE_MESSAGE, SocialService
from orbit.features.tasks.service import TaskService
from orbit.conftest import make_room

NOW = datetime(2024, 2, 1, 15, 0, tzinfo=timezone.utc)


def give(service, to_user_id, kind="star", now=NOW, from_user_id="alice"):
    return service.give_appreciation(
        room_id="r1", from_user_id=from_user_id, to_user_id=to_user_id, appreciation_type=kind, now=now
    )


def test_give_appreciation_updates_stats_and_notifies(store, notifier, room):
    service = SocialService(store)
    result = give(service, "bob")

    assert result["stats"] == {"star": 1, "fire": 0, "shield": 0}
    assert result["remaining"] == 2
    assert result["windowStart"] == "2024-02-01T00:00:00+00:00"
    assert result["windowEnd"] == "2024-02-02T00:00:00+00:00"
    event = notifier.of_type("appreciation.given")[0]
    assert event.recipient_id == "bob"
    assert event.to_event()["payload"]["appreciationType"] == "star"


@pytest.mark.parametrize(
    "to_user_id, kind, error",
    [
        ("alice", "star", ValidationError),
        ("mallory", "star", ValidationError),
        ("bob", "heart", ValidationError),
    ],
)
def test_invalid_appreciations(store, room, to_user_id, kind, error):
    with pytest.raises(error):
        give(SocialService(store), to_user_id, kind)


def test_sender_must_be_member(store, room):
    with pytest.raises(PermissionError):
        give(SocialService(store), "bob", from_user_id="mallory")


def test_unknown_room(store):
    with pytest.raises(NotFoundError):
        SocialService(store).remaining_appreciations("nowhere", "alice", NOW)


def test_same_type_to_same_recipient_once_per_day(store, room):
    service = SocialService(store)
    give(service, "bob", "star")
    with pytest.raises(LimitReachedError, match="already given"):
        give(service, "bob", "star", NOW + timedelta(hours=1))
    give(service, "bob", "star", NOW + timedelta(days=1))


def test_three_appreciations_per_room_per_day(store, room):
    service = SocialService(store)
    give(service, "bob", "star")
    give(service, "bob", "fire")
    give(service, "carol", "star")
    with pytest.raises(LimitReachedError, match="3 appreciations"):
        give(service, "carol", "fire")

    remaining = service.remaining_appreciations("r1", "alice", NOW)
    assert remaining["remaining"] == 0
    assert remaining["usedInWindow"] == 3
    assert remaining["dailyLimit"] == 3

    sent = service.sent_appreciations("r1", "alice", NOW)["sent"]
    assert sorted((a["toUserId"], a["type"]) for a in sent) == [("bob", "fire"), ("bob", "star"), ("carol", "star")]


def test_received_stats_only_cover_current_window(store, room):
    service = SocialService(store)
    give(service, "bob", "star", NOW - timedelta(days=1))
    give(service, "bob", "shield", NOW, from_user_id="carol")
    stats = service.received_appreciations("r1", "alice", "bob", NOW)["stats"]
    assert stats == {"star": 0, "fire": 0, "shield": 1}


def test_nudge_requires_a_completion_today(store, room):
    service = SocialService(store)
    with pytest.raises(ValidationError):
        service.send_nudge(room_id="r1", from_user_id="alice", now=NOW)
    status = service.nudge_status("r1", "alice", NOW)
    assert status == {"canSend": False, "hasCompletedTask": False, "alreadySentToday": False}


def test_one_nudge_per_day(store, notifier, room):
    TaskService(store).complete(room_id="r1", task_id="t1", user_id="alice", now=NOW - timedelta(hours=2))
    service = SocialService(store)

    assert service.nudge_status("r1", "alice", NOW)["canSend"] is True
    result = service.send_nudge(room_id="r1", from_user_id="alice", now=NOW)
    assert result["message"] == NUDGE_MESSAGE
    assert notifier.of_type("nudge.sent")[0].recipient_id is None

    with pytest.raises(LimitReachedError):
        service.send_nudge(room_id="r1", from_user_id="alice", now=NOW + timedelta(hours=1))
    assert service.nudge_status("r1", "alice", NOW) == {
        "canSend": False,
        "hasCompletedTask": True,
        "alreadySentToday": True,
    }


def test_quotas_are_per_room(store, room):
    store.save_room(make_room(room_id="r2"))
    service = SocialService(store)
    for kind in ("star", "fire", "shield"):
        give(service, "bob", kind)
    service.give_appreciation(room_id="r2", from_user_id="alice", to_user_id="bob", appreciation_type="star", now=NOW)
