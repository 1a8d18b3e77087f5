"""
Task validity filter.

A completion earns streak/MVP credit only if the task existed before the start
of the completion's local day, or was created at least `min_hours_gap` hours
before completion. This blocks create-and-instantly-complete farming.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Optional

from orbit.features.timewindow.service import (
    DEFAULT_TIMEZONE,
    as_utc,
    local_date,
    local_day_bounds_for,
    local_day_start,
)
from orbit.models.room import TaskCompletion

DEFAULT_MIN_HOURS_GAP = 2.0


def is_valid_completion(
    task_created_at: Optional[datetime],
    completed_at: Optional[datetime],
    timezone: Optional[str] = DEFAULT_TIMEZONE,
    min_hours_gap: float = DEFAULT_MIN_HOURS_GAP,
) -> bool:
    if task_created_at is None or completed_at is None:
        return False

    created = as_utc(task_created_at)
    completed = as_utc(completed_at)
    tz_name = timezone or DEFAULT_TIMEZONE

    if created < local_day_start(completed, tz_name):
        return True

    hours = (completed - created).total_seconds() / 3600
    return hours >= min_hours_gap


def was_completed_on_date(
    completed_at: Optional[datetime],
    target: Optional[datetime],
    timezone: Optional[str] = DEFAULT_TIMEZONE,
) -> bool:
    if completed_at is None or target is None:
        return False
    return local_date(completed_at, timezone) == local_date(target, timezone)


def _valid_on(
    completions: Iterable[TaskCompletion],
    day: date,
    timezone: Optional[str],
    min_hours_gap: float,
) -> Iterable[TaskCompletion]:
    start, end = local_day_bounds_for(day, timezone)
    for completion in completions:
        if completion.completed_at is None:
            continue
        completed = as_utc(completion.completed_at)
        if not (start <= completed < end):
            continue
        if is_valid_completion(completion.task_created_at, completed, timezone, min_hours_gap):
            yield completion


def has_valid_completion_on(
    completions: Iterable[TaskCompletion],
    day: date,
    timezone: Optional[str] = DEFAULT_TIMEZONE,
    min_hours_gap: float = DEFAULT_MIN_HOURS_GAP,
) -> bool:
    return any(True for _ in _valid_on(completions, day, timezone, min_hours_gap))


def count_valid_completions_on(
    completions: Iterable[TaskCompletion],
    day: date,
    timezone: Optional[str] = DEFAULT_TIMEZONE,
    min_hours_gap: float = DEFAULT_MIN_HOURS_GAP,
) -> int:
    return sum(1 for _ in _valid_on(completions, day, timezone, min_hours_gap))


def valid_completions_on(
    completions: Iterable[TaskCompletion],
    day: date,
    timezone: Optional[str] = DEFAULT_TIMEZONE,
    min_hours_gap: float = DEFAULT_MIN_HOURS_GAP,
) -> list:
    return list(_valid_on(completions, day, timezone, min_hours_gap))
