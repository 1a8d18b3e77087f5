from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

SocialKind = Literal["appreciation", "nudge"]
AppreciationType = Literal["star", "fire", "shield"]
DenyReason = Literal["limit_reached", "duplicate"]

APPRECIATION_TYPES = ("star", "fire", "shield")


@dataclass(frozen=True)
class RateLimitWindow:
    """Half-open [start, end) interval, UTC."""

    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


@dataclass
class SocialAction:
    """A rate-limited action between room members (appreciation, nudge)."""

    action_id: str
    kind: SocialKind
    room_id: str
    actor_id: str
    created_at: datetime
    target_id: Optional[str] = None
    variant: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.action_id,
            "kind": self.kind,
            "roomId": self.room_id,
            "fromUserId": self.actor_id,
            "toUserId": self.target_id,
            "type": self.variant,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reason: Optional[DenyReason] = None
    action: Optional[SocialAction] = None
