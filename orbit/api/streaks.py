from __future__ import annotations

from fastapi import APIRouter

from orbit.core.errors import ValidationError
from orbit.features.streaks.service import streak_service
from orbit.models.streak import STREAK_SCOPES

router = APIRouter(prefix="/v1/streaks")


@router.get("/{scope}/{key}")
def get_streak(scope: str, key: str):
    """Current streak for a scope key: `user_room/{user}:{room}`, `user/{user}` or `room/{room}`."""
    if scope not in STREAK_SCOPES:
        raise ValidationError(f"Unknown streak scope: {scope}")
    return streak_service.get(scope, key).to_dict()
