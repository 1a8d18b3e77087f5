from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional

from fastapi import APIRouter, Header, Query
from pydantic import BaseModel, Field

from orbit.features.social.service import social_service

router = APIRouter(prefix="/v1/appreciations")


class AppreciationRequest(BaseModel):
    to_user_id: str = Field(..., min_length=1, alias="toUserId")
    type: Literal["star", "fire", "shield"]

    model_config = {"populate_by_name": True}


@router.post("/{room_id}")
def give_appreciation(
    room_id: str,
    body: AppreciationRequest,
    user_id: Annotated[str, Header(alias="X-User-Id", min_length=1)],
    now: Optional[datetime] = Query(None),
):
    return social_service.give_appreciation(
        room_id=room_id,
        from_user_id=user_id,
        to_user_id=body.to_user_id,
        appreciation_type=body.type,
        now=now,
    )


@router.get("/{room_id}/remaining")
def remaining_appreciations(
    room_id: str,
    user_id: Annotated[str, Header(alias="X-User-Id", min_length=1)],
    now: Optional[datetime] = Query(None),
):
    return social_service.remaining_appreciations(room_id, user_id, now)


@router.get("/{room_id}/sent")
def sent_appreciations(
    room_id: str,
    user_id: Annotated[str, Header(alias="X-User-Id", min_length=1)],
    now: Optional[datetime] = Query(None),
):
    """Appreciations the caller gave in this room in the current UTC day."""
    return social_service.sent_appreciations(room_id, user_id, now)


@router.get("/{room_id}/user/{target_user_id}")
def user_appreciation_stats(
    room_id: str,
    target_user_id: str,
    user_id: Annotated[str, Header(alias="X-User-Id", min_length=1)],
    now: Optional[datetime] = Query(None),
):
    return social_service.received_appreciations(room_id, user_id, target_user_id, now)
