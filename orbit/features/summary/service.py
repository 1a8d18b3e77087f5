"""
Daily orbit summary: yesterday's activity in a room, one row per member.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, Optional

from orbit.core.errors import PermissionError
from orbit.features.mvp.scoring_engine import select_mvp
from orbit.features.mvp.service import MvpService
from orbit.features.timewindow.service import day_window, utc_day_bounds
from orbit.models.social import APPRECIATION_TYPES, RateLimitWindow
from orbit.models.streak import streak_key


class SummaryService:
    def __init__(self, mvp: Optional[MvpService] = None):
        self._mvp = mvp or MvpService()

    @property
    def store(self):
        return self._mvp.store

    def _appreciations_received(self, room_id: str, window: RateLimitWindow) -> Dict[str, Dict[str, int]]:
        received: Dict[str, Dict[str, int]] = {}
        for action in self.store.find_actions("appreciation", room_id, window):
            counts = received.setdefault(action.target_id, {kind: 0 for kind in APPRECIATION_TYPES})
            if action.variant in counts:
                counts[action.variant] += 1
        return received

    def orbit_summary(self, room_id: str, viewer_id: str, now: Optional[datetime] = None) -> dict:
        day = self._mvp.closed_day(room_id, now)
        room, summaries = self._mvp.build_day_summaries(room_id, day)
        if not room.is_member(viewer_id):
            raise PermissionError("Not a member of this room")

        start, _ = utc_day_bounds(date.fromisoformat(day))
        received = self._appreciations_received(room_id, day_window(start))

        recorded = self.store.get_mvp(room_id, day)
        mvp = None
        if recorded is not None:
            member = room.members.get(recorded.user_id)
            mvp = {
                "userId": recorded.user_id,
                "username": member.username if member else None,
                "avatar": member.avatar if member else None,
                "mvpScore": recorded.mvp_score,
            }
        else:
            best = select_mvp(summaries)
            if best is not None:
                mvp = {"userId": best.user_id, "username": best.username, "avatar": best.avatar, "mvpScore": best.mvp_score}

        members = [
            {
                "userId": s.user_id,
                "username": s.username,
                "avatar": s.avatar,
                "tasksCompleted": s.tasks_completed,
                "validTaskCount": s.valid_task_count,
                "currentStreak": s.current_streak,
                "streakMaintained": s.streak_maintained,
                "isActive": s.tasks_completed > 0,
                "mvpScore": s.mvp_score,
                "appreciationsReceived": received.get(s.user_id, {kind: 0 for kind in APPRECIATION_TYPES}),
            }
            for s in summaries
        ]
        active = sum(1 for m in members if m["isActive"])
        room_streak = self.store.get_streak("room", streak_key("room", room_id=room_id))

        return {
            "date": day,
            "roomId": room_id,
            "roomName": room.name,
            "roomStreak": room_streak.current_streak,
            "roomStreakStatus": "stable" if active else "dimmed",
            "mvp": mvp,
            "members": members,
            "totalTasksCompleted": sum(m["tasksCompleted"] for m in members),
            "activeMembers": active,
            "totalMembers": len(members),
        }


summary_service = SummaryService()
