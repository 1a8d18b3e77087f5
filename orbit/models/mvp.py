"""
MVP domain model.

A room's MVP is decided once per calendar day from the previous day's valid
completions and the members' streak state. Records are immutable history.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class MemberDaySummary:
    """
    One member's activity for one day, plus the inputs and result of scoring.

    Attributes:
        user_id: Member id
        tasks_completed: All completions that day, valid or not
        valid_task_count: Completions passing the anti-gaming rule
        streak_maintained: At least one completion that day
        current_streak: Member's streak in the room
        mvp_score: Result of mvp_score() for the fields above
        first_valid_completion_at: Earliest valid completion, used for tie-breaks
    """

    user_id: str
    tasks_completed: int
    valid_task_count: int
    streak_maintained: bool
    current_streak: int
    mvp_score: int
    first_valid_completion_at: Optional[datetime] = None
    username: Optional[str] = None
    avatar: Optional[str] = None

    @property
    def eligible(self) -> bool:
        return self.valid_task_count > 0


@dataclass(frozen=True)
class MVPRecord:
    room_id: str
    date: str  # YYYY-MM-DD, UTC
    user_id: str
    mvp_score: int
    tasks_completed: int
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "roomId": self.room_id,
            "date": self.date,
            "userId": self.user_id,
            "mvpScore": self.mvp_score,
            "tasksCompleted": self.tasks_completed,
            "createdAt": self.created_at.isoformat(),
        }
