from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Header, Query

from orbit.features.tasks.service import task_service

router = APIRouter(prefix="/v1/rooms")


@router.post("/{room_id}/tasks/{task_id}/complete", status_code=201)
def complete_task(
    room_id: str,
    task_id: str,
    user_id: Annotated[str, Header(alias="X-User-Id", min_length=1)],
    now: Optional[datetime] = Query(None, description="Optional ISO timestamp for deterministic testing"),
):
    """Mark a room task complete for today; returns points, streak effect and leaderboard."""
    return task_service.complete(room_id=room_id, task_id=task_id, user_id=user_id, now=now)


@router.delete("/{room_id}/tasks/{task_id}/complete")
def uncomplete_task(
    room_id: str,
    task_id: str,
    user_id: Annotated[str, Header(alias="X-User-Id", min_length=1)],
    now: Optional[datetime] = Query(None),
):
    return task_service.uncomplete(room_id=room_id, task_id=task_id, user_id=user_id, now=now)
