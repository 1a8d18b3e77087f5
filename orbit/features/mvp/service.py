"""
Room MVP decisions.

A room's MVP for one of its local days is computed once, after that day has
ended in the room's time zone, from the day's completions and the members'
room streaks, and stored as immutable history. Deciding again for
the same (room, day) returns the stored record.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from orbit.core.config import settings
from orbit.core.errors import NotFoundError
from orbit.core.store import ActivityStore, get_store
from orbit.features.mvp.scoring_engine import mvp_score, select_mvp
from orbit.features.timewindow.service import as_utc, local_date, local_yesterday, utc_now
from orbit.features.validation.service import is_valid_completion
from orbit.models.mvp import MemberDaySummary, MVPRecord
from orbit.models.notification import MvpDecided
from orbit.models.room import Room, TaskCompletion
from orbit.models.streak import streak_key
from orbit.realtime.notifier import Notifier, get_notifier, publish_all

logger = logging.getLogger("orbit.mvp")


class MvpService:
    def __init__(self, store: Optional[ActivityStore] = None, notifier: Optional[Notifier] = None):
        self._store = store
        self._notifier = notifier

    @property
    def store(self) -> ActivityStore:
        return self._store or get_store()

    @property
    def notifier(self) -> Notifier:
        return self._notifier or get_notifier()

    def _room(self, room_id: str) -> Room:
        room = self.store.get_room(room_id)
        if room is None:
            raise NotFoundError(f"Room {room_id} not found")
        return room

    def build_day_summaries(self, room_id: str, day: str) -> Tuple[Room, List[MemberDaySummary]]:
        """Score every member of the room for `day` (YYYY-MM-DD)."""
        room = self._room(room_id)
        store = self.store
        completions = store.find_completions(room_id=room_id, completion_date=date.fromisoformat(day))

        by_user: Dict[str, List[TaskCompletion]] = {}
        for completion in completions:
            by_user.setdefault(completion.user_id, []).append(completion)

        summaries = []
        for member in room.members.values():
            own = by_user.get(member.user_id, [])
            valid_at = sorted(
                as_utc(c.completed_at)
                for c in own
                if is_valid_completion(c.task_created_at, c.completed_at, room.timezone, settings.MIN_HOURS_GAP)
            )
            streak = store.get_streak("user_room", streak_key("user_room", user_id=member.user_id, room_id=room_id))
            tasks_completed = len(own)
            streak_maintained = tasks_completed > 0
            summaries.append(
                MemberDaySummary(
                    user_id=member.user_id,
                    username=member.username,
                    avatar=member.avatar,
                    tasks_completed=tasks_completed,
                    valid_task_count=len(valid_at),
                    streak_maintained=streak_maintained,
                    current_streak=streak.current_streak,
                    mvp_score=mvp_score(
                        tasks_completed,
                        len(valid_at),
                        streak_maintained,
                        streak.current_streak,
                        task_cap=settings.MVP_TASK_CAP,
                    ),
                    first_valid_completion_at=valid_at[0] if valid_at else None,
                )
            )
        return room, summaries

    def closed_day(self, room_id: str, now: Optional[datetime] = None) -> str:
        """The room's most recent fully ended local day (YYYY-MM-DD)."""
        return local_yesterday(now, self._room(room_id).timezone).isoformat()

    def decide(self, room_id: str, day: Optional[str] = None, now: Optional[datetime] = None) -> Optional[MVPRecord]:
        """Return the MVP record for (room, day), creating it on first call.

        `day` defaults to the room's last fully ended local day. A day that is
        still running in the room's time zone is never recorded, since the
        record is immutable once written. Returns None in that case, and when
        nobody in the room had a valid completion that day.
        """
        moment = as_utc(now) if now else utc_now()
        room = self._room(room_id)
        day = day or local_yesterday(moment, room.timezone).isoformat()
        existing = self.store.get_mvp(room_id, day)
        if existing is not None:
            return existing

        if date.fromisoformat(day) >= local_date(moment, room.timezone):
            logger.info(
                f"MVP for {day} not decided: day still open in {room.timezone}",
                extra={"room_id": room_id, "event_type": "mvp.day_open"},
            )
            return None

        _, summaries = self.build_day_summaries(room_id, day)
        winner = select_mvp(summaries)
        if winner is None:
            logger.info(f"no MVP for {day}: no eligible members", extra={"room_id": room_id, "event_type": "mvp.none"})
            return None

        record, created = self.store.create_mvp_if_absent(
            MVPRecord(
                room_id=room_id,
                date=day,
                user_id=winner.user_id,
                mvp_score=winner.mvp_score,
                tasks_completed=winner.tasks_completed,
                created_at=moment,
            )
        )
        if created:
            logger.info(
                f"MVP for {day} decided",
                extra={"room_id": room_id, "user_id": record.user_id, "event_type": "mvp.decided"},
            )
            publish_all(
                self.notifier,
                [
                    MvpDecided(
                        room_id=room_id,
                        recipient_id=record.user_id,
                        user_id=record.user_id,
                        date=record.date,
                        mvp_score=record.mvp_score,
                    )
                ],
            )
        return record

    def history(self, room_id: str, now: Optional[datetime] = None) -> List[MVPRecord]:
        room = self._room(room_id)
        since = local_date(now or utc_now(), room.timezone) - timedelta(days=settings.MVP_HISTORY_DAYS)
        return self.store.list_mvps(room_id, since.isoformat())

    def today_mvp(self, room_id: str, now: Optional[datetime] = None) -> Optional[MVPRecord]:
        """Today's crown holder: the recorded MVP of the room's local yesterday."""
        return self.store.get_mvp(room_id, self.closed_day(room_id, now))


def run_mvp_job(
    store: Optional[ActivityStore] = None,
    day: Optional[str] = None,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """Decide the MVP of every room's last ended local day. Safe to run more than once.

    Rooms whose local day has not ended yet are skipped; a later run picks them up.
    """
    service = MvpService(store=store, notifier=notifier)
    moment = as_utc(now) if now else utc_now()
    counts = {"rooms": 0, "decided": 0, "skipped": 0, "failed": 0}

    for room_id in service.store.list_room_ids():
        counts["rooms"] += 1
        try:
            record = service.decide(room_id, day, now=moment)
        except Exception:
            counts["failed"] += 1
            logger.exception("MVP decision failed", extra={"room_id": room_id, "event_type": "mvp.failed"})
            continue
        if record is None:
            counts["skipped"] += 1
        else:
            counts["decided"] += 1

    logger.info(
        f"MVP job at {moment.isoformat()}: {counts['decided']} decided, "
        f"{counts['skipped']} skipped, {counts['failed']} failed"
    )
    return counts


mvp_service = MvpService()
