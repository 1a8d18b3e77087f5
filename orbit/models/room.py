from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Optional


@dataclass
class RoomTask:
    task_id: str
    title: str
    points: int
    created_at: datetime
    is_active: bool = True


@dataclass
class RoomMember:
    user_id: str
    username: str
    points: int = 0
    avatar: Optional[str] = None


@dataclass
class Room:
    """
    Domain model for a room. Only the fields the streak/MVP engine reads.
    """

    room_id: str
    name: str
    timezone: str = "UTC"
    members: Dict[str, RoomMember] = field(default_factory=dict)
    tasks: Dict[str, RoomTask] = field(default_factory=dict)

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members


@dataclass
class TaskCompletion:
    """One user completing one room task on one room-local calendar day."""

    completion_id: str
    user_id: str
    room_id: str
    task_id: str
    task_created_at: Optional[datetime]
    completed_at: Optional[datetime]
    completion_date: date
    points_awarded: int = 0
    is_valid: bool = False
