from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from typing import Literal, Optional

StreakScope = Literal["user_room", "user", "room"]
TransitionOutcome = Literal["started", "incremented", "restarted", "unchanged", "decayed", "rebuilt"]

STREAK_SCOPES = ("user_room", "user", "room")


KEY_SEPARATOR = ":"


def _key_part(name: str, value: Optional[str]) -> str:
    if not value:
        raise ValueError(f"{name} is required for this streak scope")
    if KEY_SEPARATOR in value:
        raise ValueError(f"{name} may not contain {KEY_SEPARATOR!r}: {value!r}")
    return value


def streak_key(scope: StreakScope, *, user_id: Optional[str] = None, room_id: Optional[str] = None) -> str:
    """Natural key of a streak row within its scope.

    Ids may not contain the separator, so a user_room key splits back into
    exactly one (user_id, room_id) pair.
    """
    if scope == "user_room":
        return f"{_key_part('user_id', user_id)}{KEY_SEPARATOR}{_key_part('room_id', room_id)}"
    if scope == "user":
        return _key_part("user_id", user_id)
    if scope == "room":
        return _key_part("room_id", room_id)
    raise ValueError(f"unknown streak scope: {scope}")


@dataclass(frozen=True)
class StreakState:
    """
    Streak for one (scope, key). Day-level, no direct DB concerns.

    Invariant: longest_streak >= current_streak >= 0.
    """

    scope: StreakScope
    key: str
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[date] = None

    def with_values(self, **changes) -> "StreakState":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "scope": self.scope,
            "key": self.key,
            "currentStreak": self.current_streak,
            "longestStreak": self.longest_streak,
            "lastActivityDate": self.last_activity_date.isoformat() if self.last_activity_date else None,
        }


@dataclass(frozen=True)
class StreakTransition:
    before: StreakState
    after: StreakState
    outcome: TransitionOutcome

    @property
    def changed(self) -> bool:
        return self.before != self.after

    @property
    def counted(self) -> bool:
        """True when this transition credited a new streak day."""
        return self.outcome in ("started", "incremented", "restarted")
