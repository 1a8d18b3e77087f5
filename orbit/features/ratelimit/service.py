"""
Daily rate limiter.

"At most N actions of a kind per actor per scope (room) per UTC day", with an
optional rule that each (target, variant) pair is used at most once per day.
Windows are calendar UTC days: [00:00, next 00:00).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from orbit.core.config import settings
from orbit.core.store import ActivityStore, get_store
from orbit.features.timewindow.service import as_utc, day_window, utc_now
from orbit.models.social import RateLimitDecision, SocialAction, SocialKind

logger = logging.getLogger("orbit.ratelimit")


@dataclass(frozen=True)
class RatePolicy:
    kind: SocialKind
    limit: int
    unique_per_target: bool = False


def appreciation_policy() -> RatePolicy:
    return RatePolicy(kind="appreciation", limit=settings.APPRECIATION_DAILY_LIMIT, unique_per_target=True)


def nudge_policy() -> RatePolicy:
    return RatePolicy(kind="nudge", limit=settings.NUDGE_DAILY_LIMIT)


class DailyRateLimiter:
    def __init__(self, store: Optional[ActivityStore] = None):
        self._store = store

    @property
    def store(self) -> ActivityStore:
        return self._store or get_store()

    def remaining(self, actor_id: str, scope: str, policy: RatePolicy, now: Optional[datetime] = None) -> int:
        window = day_window(now or utc_now())
        used = self.store.count_actions(policy.kind, scope, actor_id, window)
        return max(0, policy.limit - used)

    def try_consume(
        self,
        actor_id: str,
        scope: str,
        policy: RatePolicy,
        now: Optional[datetime] = None,
        *,
        target_id: Optional[str] = None,
        variant: Optional[str] = None,
    ) -> RateLimitDecision:
        """Record one action if the window still has room.

        Count and insert happen as one conditional store operation, so two
        requests racing for the last slot cannot both be allowed.
        """
        moment = as_utc(now) if now else utc_now()
        window = day_window(moment)
        action = SocialAction(
            action_id=str(uuid.uuid4()),
            kind=policy.kind,
            room_id=scope,
            actor_id=actor_id,
            created_at=moment,
            target_id=target_id,
            variant=variant,
        )
        reason, used = self.store.insert_action_if_allowed(
            action,
            limit=policy.limit,
            window=window,
            unique_per_target=policy.unique_per_target,
        )
        remaining = max(0, policy.limit - used)
        if reason:
            logger.info(
                f"{policy.kind} denied: {reason}",
                extra={"user_id": actor_id, "room_id": scope, "event_type": f"{policy.kind}.denied"},
            )
            return RateLimitDecision(allowed=False, remaining=remaining, reason=reason)
        return RateLimitDecision(allowed=True, remaining=remaining, action=action)


rate_limiter = DailyRateLimiter()
