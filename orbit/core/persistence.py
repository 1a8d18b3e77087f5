"""
orbit/core/persistence.py

SQL-backed activity store (PostgreSQL in production, SQLite in tests).

Maintains the same contract as InMemoryStore. Races are settled by the
database: unique constraints turn a lost check-then-act into IntegrityError,
which is mapped back to the store's "not applied" results.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import List, Optional, Tuple

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError

from orbit.core.database import (
    create_all_tables,
    get_db_session,
    mvp_records,
    room_members,
    room_tasks,
    rooms,
    social_actions,
    streak_states,
    task_completions,
    user_points,
)
from orbit.features.timewindow.service import as_utc
from orbit.models.mvp import MVPRecord
from orbit.models.room import Room, RoomMember, RoomTask, TaskCompletion
from orbit.models.social import RateLimitWindow, SocialAction
from orbit.models.streak import StreakScope, StreakState

logger = logging.getLogger("orbit.persistence")

# Attempts at claiming a quota slot before giving up on a contended key
MAX_SLOT_ATTEMPTS = 5


def _aware(moment: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    return as_utc(moment) if moment is not None else None


def _completion_from_row(row) -> TaskCompletion:
    return TaskCompletion(
        completion_id=row.completion_id,
        user_id=row.user_id,
        room_id=row.room_id,
        task_id=row.task_id,
        task_created_at=_aware(row.task_created_at),
        completed_at=_aware(row.completed_at),
        completion_date=row.completion_date,
        points_awarded=row.points_awarded,
        is_valid=bool(row.is_valid),
    )


def _action_from_row(row) -> SocialAction:
    return SocialAction(
        action_id=row.action_id,
        kind=row.kind,
        room_id=row.room_id,
        actor_id=row.actor_id,
        target_id=row.target_id,
        variant=row.variant,
        created_at=_aware(row.created_at),
    )


def _mvp_from_row(row) -> MVPRecord:
    return MVPRecord(
        room_id=row.room_id,
        date=row.date,
        user_id=row.user_id,
        mvp_score=row.mvp_score,
        tasks_completed=row.tasks_completed,
        created_at=_aware(row.created_at),
    )


class SqlStore:
    """
    SQLAlchemy Core implementation of the activity store.

    Every public method opens its own short session; nothing is held across
    calls.
    """

    def __init__(self, create_tables: bool = True):
        if create_tables:
            create_all_tables()

    # Rooms --------------------------------------------------------------
    def get_room(self, room_id: str) -> Optional[Room]:
        with get_db_session() as session:
            row = session.execute(select(rooms).where(rooms.c.room_id == room_id)).first()
            if not row:
                return None
            members = session.execute(
                select(room_members).where(room_members.c.room_id == room_id)
            ).all()
            tasks = session.execute(
                select(room_tasks).where(room_tasks.c.room_id == room_id)
            ).all()

        return Room(
            room_id=row.room_id,
            name=row.name,
            timezone=row.timezone or "UTC",
            members={
                m.user_id: RoomMember(user_id=m.user_id, username=m.username, points=m.points, avatar=m.avatar)
                for m in members
            },
            tasks={
                t.task_id: RoomTask(
                    task_id=t.task_id,
                    title=t.title,
                    points=t.points,
                    created_at=_aware(t.created_at),
                    is_active=bool(t.is_active),
                )
                for t in tasks
            },
        )

    def save_room(self, room: Room) -> None:
        with get_db_session() as session:
            session.execute(delete(room_tasks).where(room_tasks.c.room_id == room.room_id))
            session.execute(delete(room_members).where(room_members.c.room_id == room.room_id))
            session.execute(delete(rooms).where(rooms.c.room_id == room.room_id))
            session.execute(insert(rooms).values(room_id=room.room_id, name=room.name, timezone=room.timezone))
            for member in room.members.values():
                session.execute(
                    insert(room_members).values(
                        room_id=room.room_id,
                        user_id=member.user_id,
                        username=member.username,
                        avatar=member.avatar,
                        points=member.points,
                    )
                )
            for task in room.tasks.values():
                session.execute(
                    insert(room_tasks).values(
                        task_id=task.task_id,
                        room_id=room.room_id,
                        title=task.title,
                        points=task.points,
                        is_active=task.is_active,
                        created_at=task.created_at,
                    )
                )

    def list_room_ids(self) -> List[str]:
        with get_db_session() as session:
            return [r.room_id for r in session.execute(select(rooms.c.room_id).order_by(rooms.c.room_id)).all()]

    def add_points(self, room_id: str, user_id: str, delta: int) -> int:
        with get_db_session() as session:
            session.execute(
                update(room_members)
                .where(and_(room_members.c.room_id == room_id, room_members.c.user_id == user_id))
                .values(points=room_members.c.points + delta)
            )
            result = session.execute(
                update(user_points)
                .where(user_points.c.user_id == user_id)
                .values(total_points=user_points.c.total_points + delta)
            )
            if not result.rowcount:
                session.execute(insert(user_points).values(user_id=user_id, total_points=delta))
            total = session.execute(
                select(user_points.c.total_points).where(user_points.c.user_id == user_id)
            ).scalar()
        return int(total or 0)

    def get_user_points(self, user_id: str) -> int:
        with get_db_session() as session:
            total = session.execute(
                select(user_points.c.total_points).where(user_points.c.user_id == user_id)
            ).scalar()
        return int(total or 0)

    # Completions --------------------------------------------------------
    def add_completion(self, completion: TaskCompletion) -> bool:
        try:
            with get_db_session() as session:
                session.execute(
                    insert(task_completions).values(
                        completion_id=completion.completion_id,
                        user_id=completion.user_id,
                        room_id=completion.room_id,
                        task_id=completion.task_id,
                        task_created_at=completion.task_created_at,
                        completed_at=completion.completed_at,
                        completion_date=completion.completion_date,
                        points_awarded=completion.points_awarded,
                        is_valid=completion.is_valid,
                    )
                )
            return True
        except IntegrityError:
            # Same task already completed by this member today
            return False

    def find_completion(self, user_id: str, room_id: str, task_id: str, day: date) -> Optional[TaskCompletion]:
        with get_db_session() as session:
            row = session.execute(
                select(task_completions).where(
                    and_(
                        task_completions.c.user_id == user_id,
                        task_completions.c.room_id == room_id,
                        task_completions.c.task_id == task_id,
                        task_completions.c.completion_date == day,
                    )
                )
            ).first()
        return _completion_from_row(row) if row else None

    def delete_completion(self, completion_id: str) -> bool:
        with get_db_session() as session:
            result = session.execute(
                delete(task_completions).where(task_completions.c.completion_id == completion_id)
            )
        return bool(result.rowcount)

    def find_completions(
        self,
        *,
        room_id: Optional[str] = None,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        completion_date: Optional[date] = None,
    ) -> List[TaskCompletion]:
        clauses = []
        if room_id is not None:
            clauses.append(task_completions.c.room_id == room_id)
        if user_id is not None:
            clauses.append(task_completions.c.user_id == user_id)
        if completion_date is not None:
            clauses.append(task_completions.c.completion_date == completion_date)
        if start is not None:
            clauses.append(task_completions.c.completed_at >= start)
        if end is not None:
            clauses.append(task_completions.c.completed_at < end)

        stmt = select(task_completions).order_by(task_completions.c.completed_at)
        if clauses:
            stmt = stmt.where(and_(*clauses))
        with get_db_session() as session:
            rows = session.execute(stmt).all()
        return [_completion_from_row(r) for r in rows]

    # Streaks ------------------------------------------------------------
    def get_streak(self, scope: StreakScope, key: str) -> StreakState:
        with get_db_session() as session:
            row = session.execute(
                select(streak_states).where(and_(streak_states.c.scope == scope, streak_states.c.key == key))
            ).first()
        if not row:
            return StreakState(scope=scope, key=key)
        return StreakState(
            scope=row.scope,
            key=row.key,
            current_streak=row.current_streak,
            longest_streak=row.longest_streak,
            last_activity_date=row.last_activity_date,
        )

    def compare_and_set_streak(self, expected: StreakState, new: StreakState) -> bool:
        """Conditional upsert: applies `new` only if the row still equals `expected`."""
        values = dict(
            current_streak=new.current_streak,
            longest_streak=new.longest_streak,
            last_activity_date=new.last_activity_date,
        )
        try:
            with get_db_session() as session:
                if expected == StreakState(scope=expected.scope, key=expected.key):
                    exists = session.execute(
                        select(streak_states.c.key).where(
                            and_(streak_states.c.scope == expected.scope, streak_states.c.key == expected.key)
                        )
                    ).first()
                    if not exists:
                        session.execute(insert(streak_states).values(scope=new.scope, key=new.key, **values))
                        return True

                last_clause = (
                    streak_states.c.last_activity_date.is_(None)
                    if expected.last_activity_date is None
                    else streak_states.c.last_activity_date == expected.last_activity_date
                )
                result = session.execute(
                    update(streak_states)
                    .where(
                        and_(
                            streak_states.c.scope == expected.scope,
                            streak_states.c.key == expected.key,
                            streak_states.c.current_streak == expected.current_streak,
                            streak_states.c.longest_streak == expected.longest_streak,
                            last_clause,
                        )
                    )
                    .values(**values)
                )
                return bool(result.rowcount)
        except IntegrityError:
            # Another writer created the row first
            return False

    def list_active_streaks(self) -> List[StreakState]:
        with get_db_session() as session:
            rows = session.execute(
                select(streak_states).where(streak_states.c.current_streak > 0)
            ).all()
        return [
            StreakState(
                scope=r.scope,
                key=r.key,
                current_streak=r.current_streak,
                longest_streak=r.longest_streak,
                last_activity_date=r.last_activity_date,
            )
            for r in rows
        ]

    # Social actions -----------------------------------------------------
    def _window_clause(self, kind, room_id, window, actor_id=None, target_id=None):
        clauses = [
            social_actions.c.kind == kind,
            social_actions.c.room_id == room_id,
            social_actions.c.created_at >= window.start,
            social_actions.c.created_at < window.end,
        ]
        if actor_id is not None:
            clauses.append(social_actions.c.actor_id == actor_id)
        if target_id is not None:
            clauses.append(social_actions.c.target_id == target_id)
        return and_(*clauses)

    def count_actions(self, kind: str, room_id: str, actor_id: str, window: RateLimitWindow) -> int:
        with get_db_session() as session:
            count = session.execute(
                select(func.count()).select_from(social_actions).where(
                    self._window_clause(kind, room_id, window, actor_id=actor_id)
                )
            ).scalar()
        return int(count or 0)

    def find_actions(
        self,
        kind: str,
        room_id: str,
        window: RateLimitWindow,
        *,
        actor_id: Optional[str] = None,
        target_id: Optional[str] = None,
    ) -> List[SocialAction]:
        with get_db_session() as session:
            rows = session.execute(
                select(social_actions)
                .where(self._window_clause(kind, room_id, window, actor_id, target_id))
                .order_by(social_actions.c.created_at)
            ).all()
        return [_action_from_row(r) for r in rows]

    def _has_duplicate(self, action: SocialAction, window: RateLimitWindow) -> bool:
        clauses = [self._window_clause(action.kind, action.room_id, window, actor_id=action.actor_id)]
        clauses.append(
            social_actions.c.target_id.is_(None) if action.target_id is None else social_actions.c.target_id == action.target_id
        )
        clauses.append(
            social_actions.c.variant.is_(None) if action.variant is None else social_actions.c.variant == action.variant
        )
        with get_db_session() as session:
            return session.execute(select(social_actions.c.action_id).where(and_(*clauses))).first() is not None

    def insert_action_if_allowed(
        self,
        action: SocialAction,
        *,
        limit: int,
        window: RateLimitWindow,
        unique_per_target: bool,
    ) -> Tuple[Optional[str], int]:
        """
        Claim the next quota slot for (kind, room, actor, day).

        The slot number is the count of prior actions in the window; the
        unique slot constraint makes two concurrent claims of the same slot
        collide, and the loser re-counts.
        """
        slot_date = window.start.date()
        used = 0
        for _ in range(MAX_SLOT_ATTEMPTS):
            used = self.count_actions(action.kind, action.room_id, action.actor_id, window)
            if used >= limit:
                return "limit_reached", used
            if unique_per_target and self._has_duplicate(action, window):
                return "duplicate", used
            try:
                with get_db_session() as session:
                    session.execute(
                        insert(social_actions).values(
                            action_id=action.action_id,
                            kind=action.kind,
                            room_id=action.room_id,
                            actor_id=action.actor_id,
                            target_id=action.target_id,
                            variant=action.variant,
                            slot_date=slot_date,
                            slot=used,
                            created_at=action.created_at,
                        )
                    )
                return None, used + 1
            except IntegrityError:
                logger.info(
                    "social action slot contended",
                    extra={"room_id": action.room_id, "user_id": action.actor_id, "event_type": action.kind},
                )
                continue
        return "limit_reached", used

    # MVP ----------------------------------------------------------------
    def get_mvp(self, room_id: str, day: str) -> Optional[MVPRecord]:
        with get_db_session() as session:
            row = session.execute(
                select(mvp_records).where(and_(mvp_records.c.room_id == room_id, mvp_records.c.date == day))
            ).first()
        return _mvp_from_row(row) if row else None

    def create_mvp_if_absent(self, record: MVPRecord) -> Tuple[MVPRecord, bool]:
        try:
            with get_db_session() as session:
                session.execute(
                    insert(mvp_records).values(
                        room_id=record.room_id,
                        date=record.date,
                        user_id=record.user_id,
                        mvp_score=record.mvp_score,
                        tasks_completed=record.tasks_completed,
                        created_at=record.created_at,
                    )
                )
            return record, True
        except IntegrityError:
            existing = self.get_mvp(record.room_id, record.date)
            if existing is None:
                raise
            return existing, False

    def list_mvps(self, room_id: str, since: str) -> List[MVPRecord]:
        with get_db_session() as session:
            rows = session.execute(
                select(mvp_records)
                .where(and_(mvp_records.c.room_id == room_id, mvp_records.c.date >= since))
                .order_by(mvp_records.c.date.desc())
            ).all()
        return [_mvp_from_row(r) for r in rows]
