"""
Activity store: the persistence collaborator behind the streak/MVP engine.

Two implementations share one interface:
- InMemoryStore (default when DATABASE_URL is unset; dev and tests)
- SqlStore in orbit.core.persistence (PostgreSQL / SQLite via SQLAlchemy Core)

Check-then-act sequences are exposed as single conditional operations
(compare_and_set_streak, insert_action_if_allowed, create_mvp_if_absent) so
callers never do a separate count and insert.
"""

from __future__ import annotations

import threading
from copy import deepcopy
from datetime import date, datetime
from typing import Dict, List, Optional, Protocol, Tuple

from orbit.core.locks import KeyedLock
from orbit.features.timewindow.service import as_utc
from orbit.models.mvp import MVPRecord
from orbit.models.room import Room, RoomMember, TaskCompletion
from orbit.models.social import RateLimitWindow, SocialAction
from orbit.models.streak import StreakScope, StreakState


class ActivityStore(Protocol):
    # Rooms --------------------------------------------------------------
    def get_room(self, room_id: str) -> Optional[Room]: ...
    def save_room(self, room: Room) -> None: ...
    def list_room_ids(self) -> List[str]: ...
    def add_points(self, room_id: str, user_id: str, delta: int) -> int: ...
    def get_user_points(self, user_id: str) -> int: ...

    # Completions --------------------------------------------------------
    def add_completion(self, completion: TaskCompletion) -> bool: ...
    def find_completion(self, user_id: str, room_id: str, task_id: str, day: date) -> Optional[TaskCompletion]: ...
    def delete_completion(self, completion_id: str) -> bool: ...
    def find_completions(
        self,
        *,
        room_id: Optional[str] = None,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        completion_date: Optional[date] = None,
    ) -> List[TaskCompletion]: ...

    # Streaks ------------------------------------------------------------
    def get_streak(self, scope: StreakScope, key: str) -> StreakState: ...
    def compare_and_set_streak(self, expected: StreakState, new: StreakState) -> bool: ...
    def list_active_streaks(self) -> List[StreakState]: ...

    # Social actions -----------------------------------------------------
    def count_actions(self, kind: str, room_id: str, actor_id: str, window: RateLimitWindow) -> int: ...
    def find_actions(
        self,
        kind: str,
        room_id: str,
        window: RateLimitWindow,
        *,
        actor_id: Optional[str] = None,
        target_id: Optional[str] = None,
    ) -> List[SocialAction]: ...
    def insert_action_if_allowed(
        self,
        action: SocialAction,
        *,
        limit: int,
        window: RateLimitWindow,
        unique_per_target: bool,
    ) -> Tuple[Optional[str], int]: ...

    # MVP ----------------------------------------------------------------
    def get_mvp(self, room_id: str, day: str) -> Optional[MVPRecord]: ...
    def create_mvp_if_absent(self, record: MVPRecord) -> Tuple[MVPRecord, bool]: ...
    def list_mvps(self, room_id: str, since: str) -> List[MVPRecord]: ...


def _same_target(action: SocialAction, other: SocialAction) -> bool:
    return action.target_id == other.target_id and action.variant == other.variant


class InMemoryStore:
    """
    Process-local store. Safe for concurrent request handlers: every
    check-then-act runs under a per-key lock, everything else under one guard.
    """

    def __init__(self):
        self._guard = threading.RLock()
        self._keyed = KeyedLock()
        self._rooms: Dict[str, Room] = {}
        self._user_points: Dict[str, int] = {}
        self._completions: Dict[str, TaskCompletion] = {}
        self._streaks: Dict[Tuple[str, str], StreakState] = {}
        self._actions: List[SocialAction] = []
        self._mvps: Dict[Tuple[str, str], MVPRecord] = {}

    # Rooms --------------------------------------------------------------
    def get_room(self, room_id: str) -> Optional[Room]:
        with self._guard:
            room = self._rooms.get(room_id)
            return deepcopy(room) if room else None

    def save_room(self, room: Room) -> None:
        with self._guard:
            self._rooms[room.room_id] = deepcopy(room)

    def list_room_ids(self) -> List[str]:
        with self._guard:
            return sorted(self._rooms)

    def add_points(self, room_id: str, user_id: str, delta: int) -> int:
        with self._guard:
            room = self._rooms.get(room_id)
            if room is not None:
                member = room.members.setdefault(user_id, RoomMember(user_id=user_id, username=user_id))
                member.points += delta
            self._user_points[user_id] = self._user_points.get(user_id, 0) + delta
            return self._user_points[user_id]

    def get_user_points(self, user_id: str) -> int:
        with self._guard:
            return self._user_points.get(user_id, 0)

    # Completions --------------------------------------------------------
    def add_completion(self, completion: TaskCompletion) -> bool:
        with self._guard:
            if self._find_completion(completion.user_id, completion.room_id, completion.task_id, completion.completion_date):
                return False
            self._completions[completion.completion_id] = deepcopy(completion)
            return True

    def _find_completion(self, user_id, room_id, task_id, day) -> Optional[TaskCompletion]:
        for completion in self._completions.values():
            if (
                completion.user_id == user_id
                and completion.room_id == room_id
                and completion.task_id == task_id
                and completion.completion_date == day
            ):
                return completion
        return None

    def find_completion(self, user_id: str, room_id: str, task_id: str, day: date) -> Optional[TaskCompletion]:
        with self._guard:
            found = self._find_completion(user_id, room_id, task_id, day)
            return deepcopy(found) if found else None

    def delete_completion(self, completion_id: str) -> bool:
        with self._guard:
            return self._completions.pop(completion_id, None) is not None

    def find_completions(
        self,
        *,
        room_id: Optional[str] = None,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        completion_date: Optional[date] = None,
    ) -> List[TaskCompletion]:
        with self._guard:
            matches = []
            for completion in self._completions.values():
                if room_id is not None and completion.room_id != room_id:
                    continue
                if user_id is not None and completion.user_id != user_id:
                    continue
                if completion_date is not None and completion.completion_date != completion_date:
                    continue
                if start is not None or end is not None:
                    if completion.completed_at is None:
                        continue
                    moment = as_utc(completion.completed_at)
                    if start is not None and moment < start:
                        continue
                    if end is not None and moment >= end:
                        continue
                matches.append(deepcopy(completion))
            return sorted(matches, key=lambda c: (c.completed_at is None, c.completed_at or datetime.min))

    # Streaks ------------------------------------------------------------
    def get_streak(self, scope: StreakScope, key: str) -> StreakState:
        with self._guard:
            return self._streaks.get((scope, key)) or StreakState(scope=scope, key=key)

    def compare_and_set_streak(self, expected: StreakState, new: StreakState) -> bool:
        ident = (expected.scope, expected.key)
        with self._keyed.hold(f"streak:{expected.scope}:{expected.key}"):
            with self._guard:
                current = self._streaks.get(ident) or StreakState(scope=expected.scope, key=expected.key)
                if current != expected:
                    return False
                self._streaks[ident] = new
                return True

    def list_active_streaks(self) -> List[StreakState]:
        with self._guard:
            return [state for state in self._streaks.values() if state.current_streak > 0]

    # Social actions -----------------------------------------------------
    def _matching(self, kind, room_id, window, actor_id=None, target_id=None) -> List[SocialAction]:
        return [
            action
            for action in self._actions
            if action.kind == kind
            and action.room_id == room_id
            and (actor_id is None or action.actor_id == actor_id)
            and (target_id is None or action.target_id == target_id)
            and window.contains(as_utc(action.created_at))
        ]

    def count_actions(self, kind: str, room_id: str, actor_id: str, window: RateLimitWindow) -> int:
        with self._guard:
            return len(self._matching(kind, room_id, window, actor_id=actor_id))

    def find_actions(
        self,
        kind: str,
        room_id: str,
        window: RateLimitWindow,
        *,
        actor_id: Optional[str] = None,
        target_id: Optional[str] = None,
    ) -> List[SocialAction]:
        with self._guard:
            return [deepcopy(a) for a in self._matching(kind, room_id, window, actor_id, target_id)]

    def insert_action_if_allowed(
        self,
        action: SocialAction,
        *,
        limit: int,
        window: RateLimitWindow,
        unique_per_target: bool,
    ) -> Tuple[Optional[str], int]:
        """Returns (deny_reason, used_in_window_after)."""
        with self._keyed.hold(f"action:{action.kind}:{action.room_id}:{action.actor_id}"):
            with self._guard:
                used = self._matching(action.kind, action.room_id, window, actor_id=action.actor_id)
                if len(used) >= limit:
                    return "limit_reached", len(used)
                if unique_per_target and any(_same_target(action, other) for other in used):
                    return "duplicate", len(used)
                self._actions.append(deepcopy(action))
                return None, len(used) + 1

    # MVP ----------------------------------------------------------------
    def get_mvp(self, room_id: str, day: str) -> Optional[MVPRecord]:
        with self._guard:
            return self._mvps.get((room_id, day))

    def create_mvp_if_absent(self, record: MVPRecord) -> Tuple[MVPRecord, bool]:
        with self._guard:
            existing = self._mvps.get((record.room_id, record.date))
            if existing is not None:
                return existing, False
            self._mvps[(record.room_id, record.date)] = record
            return record, True

    def list_mvps(self, room_id: str, since: str) -> List[MVPRecord]:
        with self._guard:
            records = [r for (rid, day), r in self._mvps.items() if rid == room_id and day >= since]
            return sorted(records, key=lambda r: r.date, reverse=True)


# Global store used by routes and jobs
_store: Optional[ActivityStore] = None


def get_store() -> ActivityStore:
    """Return the process store, SQL-backed when a database is configured."""
    global _store
    if _store is None:
        from orbit.core.database import get_database_url

        if get_database_url():
            from orbit.core.persistence import SqlStore

            _store = SqlStore()
        else:
            _store = InMemoryStore()
    return _store


def set_store(store: Optional[ActivityStore]) -> None:
    """Replace the process store (tests, alternate backends)."""
    global _store
    _store = store
