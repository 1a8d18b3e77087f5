from datetime import datetime, timezone

from orbit.models.notification import (
    NOTIFICATION_TYPES,
    AppreciationGiven,
    MvpDecided,
    StreakMilestone,
    TaskCompleted,
)
from orbit.realtime.notifier import InMemoryNotifier, publish_all


def test_event_shape_is_type_and_camel_case_payload():
    event = TaskCompleted(
        room_id="r1", recipient_id=None, user_id="alice", task_id="t1", points=10, counted_for_streak=True
    ).to_event()
    assert event == {
        "type": "task.completed",
        "payload": {
            "roomId": "r1",
            "recipientId": None,
            "userId": "alice",
            "taskId": "t1",
            "points": 10,
            "countedForStreak": True,
        },
    }


def test_datetimes_are_serialised():
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    event = AppreciationGiven(
        room_id="r1",
        recipient_id="bob",
        from_user_id="alice",
        to_user_id="bob",
        appreciation_type="fire",
        window_start=start,
        window_end=start.replace(day=2),
    ).to_event()
    assert event["payload"]["windowStart"] == "2024-01-01T00:00:00+00:00"


def test_types_are_unique():
    assert len(NOTIFICATION_TYPES) == len(set(NOTIFICATION_TYPES)) == 8


class Exploding:
    def publish(self, notification):
        if notification.type == "mvp.decided":
            raise RuntimeError("push down")


def test_publish_all_swallows_failures():
    items = [
        StreakMilestone(room_id="r1", recipient_id="alice", user_id="alice", current_streak=7),
        MvpDecided(room_id="r1", recipient_id="alice", user_id="alice", date="2024-01-01", mvp_score=55),
    ]
    assert publish_all(Exploding(), items) == 1


def test_in_memory_notifier_inbox():
    sink = InMemoryNotifier()
    sink.publish(StreakMilestone(room_id="r1", recipient_id="alice", user_id="alice", current_streak=7))
    sink.publish(StreakMilestone(room_id="r1", recipient_id="bob", user_id="bob", current_streak=14))
    assert [n.current_streak for n in sink.inbox("bob")] == [14]
    assert sink.counts() == {"streak.milestone": 2}
    sink.clear()
    assert sink.published == []
