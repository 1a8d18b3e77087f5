"""
MVP Scoring Engine

Pure, deterministic computation of a member's daily MVP score.
No external calls, no randomness, no side effects.

Scoring rules:
- Base: 10 per valid task, at most 5 tasks count (max 50)
- Streak: +20 if the streak was maintained, -10 if nothing was completed
- Consistency: +5 per current streak day (max +25)
- Final score floored at 0
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from orbit.models.mvp import MemberDaySummary

POINTS_PER_TASK = 10
TASK_CAP = 5
STREAK_BONUS = 20
INACTIVITY_PENALTY = 10
CONSISTENCY_PER_DAY = 5
CONSISTENCY_MAX = 25

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def mvp_score(
    tasks_completed: int,
    valid_task_count: int,
    streak_maintained: bool,
    current_streak: int,
    task_cap: int = TASK_CAP,
) -> int:
    capped_tasks = min(max(valid_task_count, 0), task_cap)
    base = capped_tasks * POINTS_PER_TASK

    if streak_maintained:
        streak_adjustment = STREAK_BONUS
    elif tasks_completed == 0:
        streak_adjustment = -INACTIVITY_PENALTY
    else:
        streak_adjustment = 0

    consistency_bonus = min(max(current_streak, 0) * CONSISTENCY_PER_DAY, CONSISTENCY_MAX)
    return max(0, base + streak_adjustment + consistency_bonus)


def _rank_key(summary: MemberDaySummary):
    # Highest score first, then earliest first valid completion, then lowest id
    first = summary.first_valid_completion_at or _FAR_FUTURE
    return (-summary.mvp_score, first, summary.user_id)


def rank_members(summaries: Iterable[MemberDaySummary]) -> list:
    """Eligible members, best first. Order is total and reproducible."""
    return sorted((s for s in summaries if s.eligible), key=_rank_key)


def select_mvp(summaries: Iterable[MemberDaySummary]) -> Optional[MemberDaySummary]:
    ranked = rank_members(summaries)
    return ranked[0] if ranked else None
