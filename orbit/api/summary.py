from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Header, Query

from orbit.core.errors import NotFoundError, PermissionError
from orbit.core.store import get_store
from orbit.features.mvp.service import mvp_service
from orbit.features.summary.service import summary_service
from orbit.models.mvp import MVPRecord

router = APIRouter(prefix="/v1/orbit-summary")


def _require_member(room_id: str, user_id: str):
    room = get_store().get_room(room_id)
    if room is None:
        raise NotFoundError(f"Room {room_id} not found")
    if not room.is_member(user_id):
        raise PermissionError("Not a member of this room")
    return room


def _with_member(record: MVPRecord, room) -> dict:
    payload = record.to_dict()
    member = room.members.get(record.user_id)
    payload["username"] = member.username if member else None
    payload["avatar"] = member.avatar if member else None
    return payload


@router.get("/{room_id}")
def orbit_summary(
    room_id: str,
    user_id: Annotated[str, Header(alias="X-User-Id", min_length=1)],
    now: Optional[datetime] = Query(None),
):
    """Yesterday's activity per member, room streak status and MVP."""
    return {"summary": summary_service.orbit_summary(room_id, user_id, now)}


@router.get("/{room_id}/mvp-history")
def mvp_history(
    room_id: str,
    user_id: Annotated[str, Header(alias="X-User-Id", min_length=1)],
    now: Optional[datetime] = Query(None),
):
    room = _require_member(room_id, user_id)
    return {"history": [_with_member(r, room) for r in mvp_service.history(room_id, now)]}


@router.get("/{room_id}/today-mvp")
def today_mvp(
    room_id: str,
    user_id: Annotated[str, Header(alias="X-User-Id", min_length=1)],
    now: Optional[datetime] = Query(None),
):
    room = _require_member(room_id, user_id)
    record = mvp_service.today_mvp(room_id, now)
    return {"mvp": _with_member(record, room) if record else None}
