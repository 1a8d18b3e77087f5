"""
Streak state machine.

Pure, deterministic transitions over StreakState. No storage, no clock.

States: cold (current_streak == 0) and active(n). Day arithmetic is on
calendar dates produced by the time-window calculator.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable

from orbit.models.streak import StreakState, StreakTransition


def advance(state: StreakState, day: date) -> StreakTransition:
    """Apply one valid completion dated `day`.

    Only the first valid completion of a day moves the streak; later ones
    the same day (or back-dated ones) leave it unchanged.
    """
    last = state.last_activity_date

    if last is None:
        after = state.with_values(
            current_streak=1,
            longest_streak=max(state.longest_streak, 1),
            last_activity_date=day,
        )
        return StreakTransition(before=state, after=after, outcome="started")

    gap_days = (day - last).days
    if gap_days <= 0:
        return StreakTransition(before=state, after=state, outcome="unchanged")

    if gap_days == 1:
        current = state.current_streak + 1
        outcome = "incremented"
    else:
        current = 1
        outcome = "restarted"

    after = state.with_values(
        current_streak=current,
        longest_streak=max(state.longest_streak, current),
        last_activity_date=day,
    )
    return StreakTransition(before=state, after=after, outcome=outcome)


def decay(state: StreakState, today: date) -> StreakTransition:
    """Reset the streak when the day before `today` had no activity.

    Idempotent: a decayed state decays to itself.
    """
    if state.current_streak <= 0:
        return StreakTransition(before=state, after=state, outcome="unchanged")

    yesterday = today - timedelta(days=1)
    last = state.last_activity_date
    if last is not None and last >= yesterday:
        return StreakTransition(before=state, after=state, outcome="unchanged")

    after = state.with_values(current_streak=0)
    return StreakTransition(before=state, after=after, outcome="decayed")


def rebuild(state: StreakState, active_days: Iterable[date]) -> StreakTransition:
    """Re-derive the streak from the days that still have a valid completion.

    Used when a completion is withdrawn. current_streak becomes the run of
    consecutive days ending at the latest remaining day; longest_streak is
    kept, so it never decreases.
    """
    days = sorted(set(active_days))
    if not days:
        after = state.with_values(current_streak=0, last_activity_date=None)
        return StreakTransition(before=state, after=after, outcome="rebuilt")

    run = 1
    for previous, current in zip(reversed(days[:-1]), reversed(days[1:])):
        if (current - previous).days != 1:
            break
        run += 1

    after = state.with_values(
        current_streak=run,
        longest_streak=max(state.longest_streak, run),
        last_activity_date=days[-1],
    )
    return StreakTransition(before=state, after=after, outcome="rebuilt")
