"""
Completing and un-completing room tasks.

The completion row is the primary write. Everything after it (points, streaks,
notifications) is best-effort: a failure there is logged and the completion
stands.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from orbit.core.config import settings
from orbit.core.errors import ConflictError, NotFoundError, PermissionError, ValidationError
from orbit.core.store import ActivityStore, get_store
from orbit.features.streaks.service import StreakService
from orbit.features.timewindow.service import as_utc, local_date, utc_now
from orbit.features.validation.service import is_valid_completion
from orbit.models.notification import Notification, TaskCompleted, TaskUncompleted
from orbit.models.room import Room, TaskCompletion
from orbit.realtime.notifier import Notifier, get_notifier, publish_all

logger = logging.getLogger("orbit.tasks")


def leaderboard(room: Room) -> List[dict]:
    ranked = sorted(room.members.values(), key=lambda m: (-m.points, m.user_id))
    return [
        {"rank": i + 1, "userId": m.user_id, "username": m.username, "avatar": m.avatar, "points": m.points}
        for i, m in enumerate(ranked)
    ]


class TaskService:
    def __init__(
        self,
        store: Optional[ActivityStore] = None,
        notifier: Optional[Notifier] = None,
        streaks: Optional[StreakService] = None,
    ):
        self._store = store
        self._notifier = notifier
        self._streaks = streaks or StreakService(store=store)

    @property
    def store(self) -> ActivityStore:
        return self._store or get_store()

    @property
    def notifier(self) -> Notifier:
        return self._notifier or get_notifier()

    def _member_room(self, room_id: str, user_id: str) -> Room:
        room = self.store.get_room(room_id)
        if room is None:
            raise NotFoundError(f"Room {room_id} not found")
        if not room.is_member(user_id):
            raise PermissionError("Not a member of this room")
        return room

    def complete(self, *, room_id: str, task_id: str, user_id: str, now: Optional[datetime] = None) -> dict:
        moment = as_utc(now) if now else utc_now()
        room = self._member_room(room_id, user_id)
        task = room.tasks.get(task_id)
        if task is None:
            raise NotFoundError("Task not found")
        if not task.is_active:
            raise ValidationError("Task is not active")

        day = local_date(moment, room.timezone)
        is_valid = is_valid_completion(task.created_at, moment, room.timezone, settings.MIN_HOURS_GAP)
        completion = TaskCompletion(
            completion_id=str(uuid.uuid4()),
            user_id=user_id,
            room_id=room_id,
            task_id=task_id,
            task_created_at=task.created_at,
            completed_at=moment,
            completion_date=day,
            points_awarded=task.points,
            is_valid=is_valid,
        )
        if not self.store.add_completion(completion):
            raise ConflictError("Task already completed today")

        log_extra = {"room_id": room_id, "user_id": user_id, "event_type": "task.completed"}
        emitted: List[Notification] = []
        streak_state = None

        try:
            self.store.add_points(room_id, user_id, task.points)
        except Exception:
            logger.warning("awarding points failed", exc_info=True, extra=log_extra)

        counted = False
        if is_valid:
            try:
                transitions, streak_events = self._streaks.record_valid_completion(
                    user_id=user_id, room_id=room_id, day=day
                )
                counted = transitions["user_room"].counted
                streak_state = transitions["user_room"].after
                emitted.extend(streak_events)
            except Exception:
                logger.warning("streak update failed", exc_info=True, extra=log_extra)

        emitted.insert(
            0,
            TaskCompleted(
                room_id=room_id,
                recipient_id=None,
                user_id=user_id,
                task_id=task_id,
                points=task.points,
                counted_for_streak=counted,
            ),
        )
        publish_all(self.notifier, emitted)
        logger.info(f"Task completed: {task.title}", extra=log_extra)

        refreshed = self.store.get_room(room_id) or room
        return {
            "completion": {
                "id": completion.completion_id,
                "taskId": task_id,
                "userId": user_id,
                "completedAt": moment.isoformat(),
                "completionDate": day.isoformat(),
                "isValid": is_valid,
            },
            "pointsAwarded": task.points,
            "countedForStreak": counted,
            "streak": streak_state.to_dict() if streak_state else None,
            "leaderboard": leaderboard(refreshed),
            "events": [n.to_event() for n in emitted],
        }

    def uncomplete(self, *, room_id: str, task_id: str, user_id: str, now: Optional[datetime] = None) -> dict:
        moment = as_utc(now) if now else utc_now()
        room = self._member_room(room_id, user_id)
        day = local_date(moment, room.timezone)
        completion = self.store.find_completion(user_id, room_id, task_id, day)
        if completion is None or not self.store.delete_completion(completion.completion_id):
            raise NotFoundError("Completion not found for today")

        log_extra = {"room_id": room_id, "user_id": user_id, "event_type": "task.uncompleted"}
        try:
            self.store.add_points(room_id, user_id, -completion.points_awarded)
        except Exception:
            logger.warning("removing points failed", exc_info=True, extra=log_extra)

        if completion.is_valid:
            try:
                self._streaks.rebuild_after_withdrawal(
                    user_id=user_id, room_id=room_id, day=completion.completion_date, today=day
                )
            except Exception:
                logger.warning("streak rebuild failed", exc_info=True, extra=log_extra)

        publish_all(
            self.notifier,
            [
                TaskUncompleted(
                    room_id=room_id,
                    recipient_id=None,
                    user_id=user_id,
                    task_id=task_id,
                    points_removed=completion.points_awarded,
                )
            ],
        )
        logger.info("Task completion removed", extra=log_extra)

        refreshed = self.store.get_room(room_id) or room
        return {"pointsRemoved": completion.points_awarded, "leaderboard": leaderboard(refreshed)}


task_service = TaskService()
