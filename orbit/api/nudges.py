from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Header, Query

from orbit.features.social.service import social_service

router = APIRouter(prefix="/v1/nudges")


@router.post("/{room_id}")
def send_nudge(
    room_id: str,
    user_id: Annotated[str, Header(alias="X-User-Id", min_length=1)],
    now: Optional[datetime] = Query(None),
):
    return social_service.send_nudge(room_id=room_id, from_user_id=user_id, now=now)


@router.get("/{room_id}/can-send")
def can_send_nudge(
    room_id: str,
    user_id: Annotated[str, Header(alias="X-User-Id", min_length=1)],
    now: Optional[datetime] = Query(None),
):
    return social_service.nudge_status(room_id, user_id, now)
