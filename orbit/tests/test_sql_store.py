"""SqlStore against SQLite (or TEST_DATABASE_URL when provided)."""

import os
import threading
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from orbit.core import database
from orbit.core.persistence import SqlStore
from orbit.features.mvp.service import MvpService
from orbit.features.ratelimit.service import DailyRateLimiter, RatePolicy
from orbit.features.streaks.service import StreakService
from orbit.features.tasks.service import TaskService
from orbit.features.timewindow.service import day_window
from orbit.models.mvp import MVPRecord
from orbit.models.streak import StreakState
from orbit.conftest import make_room

NOW = datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def sql_store(db_url):
    database.init_engine(db_url)
    database.drop_all_tables()
    store = SqlStore()
    yield store
    database.drop_all_tables()
    database.dispose_engine()


def test_room_round_trip(sql_store):
    sql_store.save_room(make_room(timezone_name="Europe/Berlin"))
    room = sql_store.get_room("r1")
    assert room.timezone == "Europe/Berlin"
    assert sorted(room.members) == ["alice", "bob", "carol"]
    assert room.tasks["t1"].created_at.tzinfo is not None
    assert sql_store.list_room_ids() == ["r1"]
    assert sql_store.get_room("missing") is None


def test_points_accumulate(sql_store):
    sql_store.save_room(make_room())
    assert sql_store.add_points("r1", "alice", 10) == 10
    assert sql_store.add_points("r1", "alice", -4) == 6
    assert sql_store.get_room("r1").members["alice"].points == 6
    assert sql_store.get_user_points("nobody") == 0


def test_duplicate_completion_rejected_by_constraint(sql_store):
    sql_store.save_room(make_room())
    tasks = TaskService(sql_store)
    tasks.complete(room_id="r1", task_id="t1", user_id="alice", now=NOW)
    found = sql_store.find_completion("alice", "r1", "t1", date(2024, 1, 10))
    assert found is not None and found.is_valid

    assert sql_store.add_completion(replace(found, completion_id="other")) is False


def test_completion_queries(sql_store):
    sql_store.save_room(make_room())
    tasks = TaskService(sql_store)
    tasks.complete(room_id="r1", task_id="t1", user_id="alice", now=NOW)
    tasks.complete(room_id="r1", task_id="t2", user_id="bob", now=NOW + timedelta(hours=1))
    window = day_window(NOW)

    assert len(sql_store.find_completions(room_id="r1", start=window.start, end=window.end)) == 2
    assert [c.user_id for c in sql_store.find_completions(user_id="bob")] == ["bob"]
    assert sql_store.find_completions(room_id="r1", completion_date=date(2024, 1, 11)) == []


def test_compare_and_set_streak(sql_store):
    empty = StreakState(scope="user", key="alice")
    first = empty.with_values(current_streak=1, longest_streak=1, last_activity_date=date(2024, 1, 1))
    second = first.with_values(current_streak=2, longest_streak=2, last_activity_date=date(2024, 1, 2))

    assert sql_store.compare_and_set_streak(empty, first)
    assert not sql_store.compare_and_set_streak(empty, first)
    assert sql_store.compare_and_set_streak(first, second)
    assert not sql_store.compare_and_set_streak(first, second)
    assert sql_store.get_streak("user", "alice") == second
    assert sql_store.list_active_streaks() == [second]


def test_streak_service_on_sql(sql_store):
    service = StreakService(sql_store)
    for offset in range(3):
        service.record_valid_completion(user_id="alice", room_id="r1", day=date(2024, 1, 1) + timedelta(days=offset))
    assert sql_store.get_streak("user_room", "alice:r1").current_streak == 3


def test_rate_limit_slots(sql_store):
    limiter = DailyRateLimiter(sql_store)
    policy = RatePolicy(kind="appreciation", limit=3, unique_per_target=True)
    assert limiter.try_consume("alice", "r1", policy, NOW, target_id="bob", variant="star").allowed
    assert limiter.try_consume("alice", "r1", policy, NOW, target_id="bob", variant="star").reason == "duplicate"
    assert limiter.try_consume("alice", "r1", policy, NOW, target_id="bob", variant="fire").allowed
    assert limiter.try_consume("alice", "r1", policy, NOW, target_id="carol", variant="star").allowed
    assert limiter.try_consume("alice", "r1", policy, NOW, target_id="carol", variant="fire").reason == "limit_reached"
    assert limiter.try_consume("alice", "r1", policy, day_window(NOW).end, target_id="bob", variant="star").allowed


@pytest.mark.skipif(
    not os.getenv("TEST_DATABASE_URL"), reason="needs a server database; SQLite shares one connection across threads"
)
def test_concurrent_slot_claims_respect_limit(sql_store):
    limiter = DailyRateLimiter(sql_store)
    policy = RatePolicy(kind="nudge", limit=1)
    results = []
    barrier = threading.Barrier(4)

    def attempt():
        barrier.wait()
        results.append(limiter.try_consume("alice", "r1", policy, NOW).allowed)

    threads = [threading.Thread(target=attempt) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    assert sql_store.count_actions("nudge", "r1", "alice", day_window(NOW)) == 1


def test_mvp_created_once(sql_store):
    record = MVPRecord(room_id="r1", date="2024-01-10", user_id="alice", mvp_score=55, tasks_completed=3, created_at=NOW)
    rival = MVPRecord(room_id="r1", date="2024-01-10", user_id="bob", mvp_score=35, tasks_completed=1, created_at=NOW)

    stored, created = sql_store.create_mvp_if_absent(record)
    assert created and stored == record
    again, created_again = sql_store.create_mvp_if_absent(rival)
    assert not created_again
    assert again.user_id == "alice"
    assert [r.date for r in sql_store.list_mvps("r1", "2024-01-01")] == ["2024-01-10"]


def test_mvp_service_on_sql(sql_store):
    sql_store.save_room(make_room())
    TaskService(sql_store).complete(room_id="r1", task_id="t1", user_id="bob", now=NOW)
    record = MvpService(sql_store).decide("r1", "2024-01-10", now=NOW + timedelta(days=1))
    assert record.user_id == "bob"
    assert sql_store.get_mvp("r1", "2024-01-10") == record
