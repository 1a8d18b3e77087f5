"""
Notification kinds published to the room hub and in-app inbox.

Closed set: every kind is a frozen dataclass with its own typed payload.
`to_event()` produces the wire shape {"type": ..., "payload": {...}}.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import ClassVar, Optional, Union


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass(frozen=True)
class _Notification:
    type: ClassVar[str] = ""

    room_id: str
    recipient_id: Optional[str]

    def to_event(self) -> dict:
        payload = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            payload[_camel(f.name)] = value
        return {"type": self.type, "payload": payload}


@dataclass(frozen=True)
class TaskCompleted(_Notification):
    type: ClassVar[str] = "task.completed"

    user_id: str
    task_id: str
    points: int
    counted_for_streak: bool


@dataclass(frozen=True)
class TaskUncompleted(_Notification):
    type: ClassVar[str] = "task.uncompleted"

    user_id: str
    task_id: str
    points_removed: int


@dataclass(frozen=True)
class StreakIncremented(_Notification):
    type: ClassVar[str] = "streak.incremented"

    user_id: Optional[str]
    scope: str
    current_streak: int
    longest_streak: int
    streak_day: str


@dataclass(frozen=True)
class StreakMilestone(_Notification):
    type: ClassVar[str] = "streak.milestone"

    user_id: str
    current_streak: int


@dataclass(frozen=True)
class StreakReset(_Notification):
    type: ClassVar[str] = "streak.reset"

    user_id: Optional[str]
    scope: str
    previous_streak: int


@dataclass(frozen=True)
class MvpDecided(_Notification):
    type: ClassVar[str] = "mvp.decided"

    user_id: str
    date: str
    mvp_score: int


@dataclass(frozen=True)
class AppreciationGiven(_Notification):
    type: ClassVar[str] = "appreciation.given"

    from_user_id: str
    to_user_id: str
    appreciation_type: str
    window_start: datetime
    window_end: datetime


@dataclass(frozen=True)
class NudgeSent(_Notification):
    type: ClassVar[str] = "nudge.sent"

    from_user_id: str
    message: str


Notification = Union[
    TaskCompleted,
    TaskUncompleted,
    StreakIncremented,
    StreakMilestone,
    StreakReset,
    MvpDecided,
    AppreciationGiven,
    NudgeSent,
]

NOTIFICATION_TYPES = tuple(
    cls.type
    for cls in (
        TaskCompleted,
        TaskUncompleted,
        StreakIncremented,
        StreakMilestone,
        StreakReset,
        MvpDecided,
        AppreciationGiven,
        NudgeSent,
    )
)
