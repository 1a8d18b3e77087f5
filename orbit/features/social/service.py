"""
Appreciations and nudges between room members.

Both are quota-limited per actor per room per UTC day through the daily rate
limiter. Notifications are best-effort; a failed publish never undoes the
recorded action.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Optional

from orbit.core.errors import LimitReachedError, NotFoundError, PermissionError, ValidationError
from orbit.core.store import ActivityStore, get_store
from orbit.features.ratelimit.service import DailyRateLimiter, appreciation_policy, nudge_policy
from orbit.features.timewindow.service import as_utc, day_window, utc_now
from orbit.models.notification import AppreciationGiven, NudgeSent
from orbit.models.room import Room
from orbit.models.social import APPRECIATION_TYPES
from orbit.realtime.notifier import Notifier, get_notifier, publish_all

logger = logging.getLogger("orbit.social")

NUDGE_MESSAGE = "✨ Your orbit is waiting – don't forget today's tasks."

_DENY_MESSAGES = {
    "appreciation": {
        "limit_reached": "You can only give {limit} appreciations per day (UTC) per room",
        "duplicate": "You have already given this appreciation today (UTC)",
    },
    "nudge": {
        "limit_reached": "You can only send {limit} nudge per day per room",
        "duplicate": "You can only send {limit} nudge per day per room",
    },
}


def _window_dict(moment: datetime) -> dict:
    window = day_window(moment)
    return {"windowStart": window.start.isoformat(), "windowEnd": window.end.isoformat()}


class SocialService:
    def __init__(self, store: Optional[ActivityStore] = None, notifier: Optional[Notifier] = None):
        self._store = store
        self._notifier = notifier
        self._limiter = DailyRateLimiter(store)

    @property
    def store(self) -> ActivityStore:
        return self._store or get_store()

    @property
    def notifier(self) -> Notifier:
        return self._notifier or get_notifier()

    def _room_for_member(self, room_id: str, user_id: str) -> Room:
        room = self.store.get_room(room_id)
        if room is None:
            raise NotFoundError(f"Room {room_id} not found")
        if not room.is_member(user_id):
            raise PermissionError("Not a member of this room")
        return room

    # Appreciations ------------------------------------------------------
    def appreciation_stats(self, room_id: str, user_id: str, now: Optional[datetime] = None) -> Dict[str, int]:
        """Appreciations received by `user_id` in the current window, per type."""
        window = day_window(now or utc_now())
        stats = {kind: 0 for kind in APPRECIATION_TYPES}
        for action in self.store.find_actions("appreciation", room_id, window, target_id=user_id):
            if action.variant in stats:
                stats[action.variant] += 1
        return stats

    def give_appreciation(
        self,
        *,
        room_id: str,
        from_user_id: str,
        to_user_id: str,
        appreciation_type: str,
        now: Optional[datetime] = None,
    ) -> dict:
        moment = as_utc(now) if now else utc_now()
        if appreciation_type not in APPRECIATION_TYPES:
            raise ValidationError("Invalid appreciation type")
        room = self._room_for_member(room_id, from_user_id)
        if to_user_id == from_user_id:
            raise ValidationError("You cannot appreciate yourself")
        if not room.is_member(to_user_id):
            raise ValidationError("User is not a member of this room")

        policy = appreciation_policy()
        decision = self._limiter.try_consume(
            from_user_id, room_id, policy, moment, target_id=to_user_id, variant=appreciation_type
        )
        if not decision.allowed:
            template = _DENY_MESSAGES["appreciation"][decision.reason or "limit_reached"]
            raise LimitReachedError(template.format(limit=policy.limit))

        window = day_window(moment)
        publish_all(
            self.notifier,
            [
                AppreciationGiven(
                    room_id=room_id,
                    recipient_id=to_user_id,
                    from_user_id=from_user_id,
                    to_user_id=to_user_id,
                    appreciation_type=appreciation_type,
                    window_start=window.start,
                    window_end=window.end,
                )
            ],
        )
        logger.info(
            f"Appreciation ({appreciation_type}) given to {to_user_id}",
            extra={"room_id": room_id, "user_id": from_user_id, "event_type": "appreciation.given"},
        )
        return {
            "appreciation": decision.action.to_dict(),
            "stats": self.appreciation_stats(room_id, to_user_id, moment),
            "remaining": decision.remaining,
            **_window_dict(moment),
        }

    def remaining_appreciations(self, room_id: str, user_id: str, now: Optional[datetime] = None) -> dict:
        moment = now or utc_now()
        self._room_for_member(room_id, user_id)
        policy = appreciation_policy()
        remaining = self._limiter.remaining(user_id, room_id, policy, moment)
        return {
            "dailyLimit": policy.limit,
            "usedInWindow": policy.limit - remaining,
            "remaining": remaining,
            **_window_dict(moment),
        }

    def sent_appreciations(self, room_id: str, user_id: str, now: Optional[datetime] = None) -> dict:
        moment = now or utc_now()
        self._room_for_member(room_id, user_id)
        sent = self.store.find_actions("appreciation", room_id, day_window(moment), actor_id=user_id)
        return {"sent": [action.to_dict() for action in sent], **_window_dict(moment)}

    def received_appreciations(self, room_id: str, viewer_id: str, user_id: str, now: Optional[datetime] = None) -> dict:
        moment = now or utc_now()
        self._room_for_member(room_id, viewer_id)
        return {"stats": self.appreciation_stats(room_id, user_id, moment), **_window_dict(moment)}

    # Nudges -------------------------------------------------------------
    def _has_completed_today(self, room_id: str, user_id: str, moment: datetime) -> bool:
        window = day_window(moment)
        return bool(self.store.find_completions(room_id=room_id, user_id=user_id, start=window.start, end=window.end))

    def nudge_status(self, room_id: str, user_id: str, now: Optional[datetime] = None) -> dict:
        moment = as_utc(now) if now else utc_now()
        self._room_for_member(room_id, user_id)
        has_completed = self._has_completed_today(room_id, user_id, moment)
        remaining = self._limiter.remaining(user_id, room_id, nudge_policy(), moment)
        return {
            "canSend": has_completed and remaining > 0,
            "hasCompletedTask": has_completed,
            "alreadySentToday": remaining == 0,
        }

    def send_nudge(self, *, room_id: str, from_user_id: str, now: Optional[datetime] = None) -> dict:
        moment = as_utc(now) if now else utc_now()
        self._room_for_member(room_id, from_user_id)
        if not self._has_completed_today(room_id, from_user_id, moment):
            raise ValidationError("You must complete at least one task today before sending a nudge")

        policy = nudge_policy()
        decision = self._limiter.try_consume(from_user_id, room_id, policy, moment)
        if not decision.allowed:
            template = _DENY_MESSAGES["nudge"][decision.reason or "limit_reached"]
            raise LimitReachedError(template.format(limit=policy.limit))

        publish_all(
            self.notifier,
            [NudgeSent(room_id=room_id, recipient_id=None, from_user_id=from_user_id, message=NUDGE_MESSAGE)],
        )
        logger.info(
            "Nudge sent",
            extra={"room_id": room_id, "user_id": from_user_id, "event_type": "nudge.sent"},
        )
        return {"nudge": decision.action.to_dict(), "message": NUDGE_MESSAGE}


social_service = SocialService()
