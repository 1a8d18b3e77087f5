from datetime import datetime, timedelta, timezone

import pytest

from orbit.core.errors import PermissionError
from orbit.features.mvp.service import MvpService
from orbit.features.social.service import SocialService
from orbit.features.summary.service import SummaryService
from orbit.features.tasks.service import TaskService

DAY = datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)
NEXT_MORNING = datetime(2024, 1, 11, 8, 0, tzinfo=timezone.utc)


def test_summary_for_an_active_day(store, room):
    tasks = TaskService(store)
    tasks.complete(room_id="r1", task_id="t1", user_id="alice", now=DAY)
    tasks.complete(room_id="r1", task_id="t2", user_id="alice", now=DAY)
    tasks.complete(room_id="r1", task_id="t1", user_id="bob", now=DAY)
    SocialService(store).give_appreciation(
        room_id="r1", from_user_id="bob", to_user_id="alice", appreciation_type="star", now=DAY
    )

    summary = SummaryService(MvpService(store)).orbit_summary("r1", "carol", now=NEXT_MORNING)

    assert summary["date"] == "2024-01-10"
    assert summary["roomName"] == "Room r1"
    assert summary["roomStreak"] == 1
    assert summary["roomStreakStatus"] == "stable"
    assert summary["totalTasksCompleted"] == 3
    assert summary["activeMembers"] == 2
    assert summary["totalMembers"] == 3
    assert summary["mvp"]["userId"] == "alice"

    members = {m["userId"]: m for m in summary["members"]}
    assert members["alice"]["appreciationsReceived"] == {"star": 1, "fire": 0, "shield": 0}
    assert members["alice"]["streakMaintained"] is True
    assert members["carol"]["isActive"] is False
    assert members["carol"]["appreciationsReceived"] == {"star": 0, "fire": 0, "shield": 0}


def test_quiet_day_is_dimmed(store, room):
    summary = SummaryService(MvpService(store)).orbit_summary("r1", "alice", now=NEXT_MORNING)
    assert summary["roomStreakStatus"] == "dimmed"
    assert summary["mvp"] is None
    assert summary["activeMembers"] == 0


def test_summary_prefers_recorded_mvp(store, room):
    TaskService(store).complete(room_id="r1", task_id="t1", user_id="bob", now=DAY)
    mvp = MvpService(store)
    mvp.decide("r1", "2024-01-10", now=DAY + timedelta(hours=16))
    TaskService(store).complete(room_id="r1", task_id="t1", user_id="alice", now=DAY + timedelta(hours=1))
    TaskService(store).complete(room_id="r1", task_id="t2", user_id="alice", now=DAY + timedelta(hours=1))

    summary = SummaryService(mvp).orbit_summary("r1", "alice", now=NEXT_MORNING)
    assert summary["mvp"]["userId"] == "bob"


def test_summary_is_members_only(store, room):
    with pytest.raises(PermissionError):
        SummaryService(MvpService(store)).orbit_summary("r1", "mallory", now=NEXT_MORNING)
