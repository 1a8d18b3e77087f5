from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Tuple

from orbit.core.config import settings
from orbit.core.errors import ConflictError
from orbit.core.store import ActivityStore, get_store
from orbit.features.streaks import engine
from orbit.features.timewindow.service import as_utc, local_date, utc_now
from orbit.models.notification import Notification, StreakIncremented, StreakMilestone, StreakReset
from orbit.models.streak import KEY_SEPARATOR, StreakScope, StreakState, StreakTransition, streak_key

logger = logging.getLogger("orbit.streaks")

MAX_CAS_ATTEMPTS = 5


def _owners(scope: str, key: str) -> Tuple[Optional[str], Optional[str]]:
    """(user_id, room_id) a streak row belongs to."""
    if scope == "user_room":
        user_id, _, room_id = key.partition(KEY_SEPARATOR)
        return user_id, room_id
    if scope == "user":
        return key, None
    return None, key


class StreakService:
    """Applies streak transitions through the store, one (scope, key) at a time.

    Every read-modify-write is a compare-and-set against the row that was read,
    retried when another writer got there first.
    """

    def __init__(
        self,
        store: Optional[ActivityStore] = None,
        milestone_interval: Optional[int] = None,
    ):
        self._store = store
        self._milestone_interval = milestone_interval

    @property
    def store(self) -> ActivityStore:
        return self._store or get_store()

    @property
    def milestone_interval(self) -> int:
        return self._milestone_interval or settings.STREAK_MILESTONE_INTERVAL

    def get(self, scope: StreakScope, key: str) -> StreakState:
        return self.store.get_streak(scope, key)

    def apply(self, scope: StreakScope, key: str, step: Callable[[StreakState], StreakTransition]) -> StreakTransition:
        store = self.store
        for _ in range(MAX_CAS_ATTEMPTS):
            before = store.get_streak(scope, key)
            transition = step(before)
            if not transition.changed:
                return transition
            if store.compare_and_set_streak(before, transition.after):
                return transition
            logger.debug("streak write lost a race, retrying", extra={"event_type": f"streak.{scope}"})
        raise ConflictError(f"Streak {scope}/{key} is being updated concurrently")

    # Completion ---------------------------------------------------------
    def record_valid_completion(
        self, *, user_id: str, room_id: str, day: date
    ) -> Tuple[Dict[str, StreakTransition], List[Notification]]:
        """Credit `day` to the member's room streak, global streak and the room streak."""
        targets = (
            ("user_room", streak_key("user_room", user_id=user_id, room_id=room_id)),
            ("user", streak_key("user", user_id=user_id)),
            ("room", streak_key("room", room_id=room_id)),
        )
        transitions: Dict[str, StreakTransition] = {}
        emitted: List[Notification] = []

        for scope, key in targets:
            transition = self.apply(scope, key, lambda state: engine.advance(state, day))
            transitions[scope] = transition
            if not transition.counted:
                continue
            emitted.append(
                StreakIncremented(
                    room_id=room_id,
                    recipient_id=user_id if scope != "room" else None,
                    user_id=user_id if scope != "room" else None,
                    scope=scope,
                    current_streak=transition.after.current_streak,
                    longest_streak=transition.after.longest_streak,
                    streak_day=day.isoformat(),
                )
            )
            if scope == "user" and transition.after.current_streak % self.milestone_interval == 0:
                emitted.append(
                    StreakMilestone(
                        room_id=room_id,
                        recipient_id=user_id,
                        user_id=user_id,
                        current_streak=transition.after.current_streak,
                    )
                )
        return transitions, emitted

    # Withdrawal ---------------------------------------------------------
    def rebuild_after_withdrawal(
        self, *, user_id: str, room_id: str, day: date, today: Optional[date] = None
    ) -> Dict[str, StreakTransition]:
        """Re-derive streaks after a valid completion on `day` was removed.

        Scopes that still have another valid completion on `day` are left alone.
        """
        store = self.store
        today = today or utc_now().date()
        sources = {
            "user_room": (streak_key("user_room", user_id=user_id, room_id=room_id), dict(user_id=user_id, room_id=room_id)),
            "user": (streak_key("user", user_id=user_id), dict(user_id=user_id)),
            "room": (streak_key("room", room_id=room_id), dict(room_id=room_id)),
        }
        transitions: Dict[str, StreakTransition] = {}
        for scope, (key, filters) in sources.items():
            days = {c.completion_date for c in store.find_completions(**filters) if c.is_valid}
            if day in days:
                continue

            def step(state: StreakState, days=days) -> StreakTransition:
                rebuilt = engine.rebuild(state, days)
                decayed = engine.decay(rebuilt.after, today)
                return StreakTransition(before=state, after=decayed.after, outcome="rebuilt")

            transitions[scope] = self.apply(scope, key, step)
        return transitions


def _local_todays(store: ActivityStore, now: datetime) -> Tuple[Dict[str, date], Dict[str, date]]:
    """Local "today" per room, and per user the earliest of their rooms' local days."""
    rooms: Dict[str, date] = {}
    users: Dict[str, date] = {}
    for room_id in store.list_room_ids():
        room = store.get_room(room_id)
        if room is None:
            continue
        today = local_date(now, room.timezone)
        rooms[room_id] = today
        for user_id in room.members:
            users[user_id] = min(users.get(user_id, today), today)
    return rooms, users


def run_decay_sweep(
    store: Optional[ActivityStore] = None,
    today: Optional[date] = None,
    notifier=None,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """Reset every active streak whose owner missed yesterday.

    Streak days are room-local, so each streak is checked against the local
    date of its room. A user-wide streak uses the user's westernmost room,
    whose day ends last. Passing `today` pins one date for every streak.

    Each streak is handled on its own; a failure is logged and the sweep moves on.
    Running it twice for the same day changes nothing the second time.
    """
    service = StreakService(store=store)
    moment = as_utc(now) if now else utc_now()
    fallback = today or moment.date()
    room_today: Dict[str, date] = {}
    user_today: Dict[str, date] = {}
    if today is None:
        room_today, user_today = _local_todays(service.store, moment)
    counts = {"checked": 0, "decayed": 0, "failed": 0}

    for state in service.store.list_active_streaks():
        counts["checked"] += 1
        user_id, room_id = _owners(state.scope, state.key)
        if state.scope == "user":
            day = user_today.get(user_id, fallback)
        else:
            day = room_today.get(room_id, fallback)
        try:
            transition = service.apply(state.scope, state.key, lambda s, day=day: engine.decay(s, day))
        except Exception:
            counts["failed"] += 1
            logger.exception("streak decay failed", extra={"event_type": "streak.decay", "scope": state.scope})
            continue

        if transition.outcome != "decayed":
            continue
        counts["decayed"] += 1
        if notifier is not None and room_id:
            try:
                notifier.publish(
                    StreakReset(
                        room_id=room_id,
                        recipient_id=user_id,
                        user_id=user_id,
                        scope=state.scope,
                        previous_streak=transition.before.current_streak,
                    )
                )
            except Exception:
                logger.warning("streak reset notification failed", exc_info=True, extra={"room_id": room_id})

    logger.info(
        f"streak decay sweep at {moment.isoformat()}: "
        f"{counts['decayed']} decayed of {counts['checked']} checked, {counts['failed']} failed"
    )
    return counts


# Global singleton service
streak_service = StreakService()
