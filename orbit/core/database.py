"""
SQL backing for the activity store: engine lifecycle, sessions, and the
table definitions SqlStore reads and writes.

Idempotency lives in the schema. A completion is unique per member, task and
room-local day; a social action claims a numbered daily slot; an MVP row is
keyed by (room, date). Writers rely on IntegrityError instead of
check-then-insert.
"""
import logging
import os
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import Boolean, Column, Date, DateTime, Index, Integer, MetaData, PrimaryKeyConstraint, String, Table, Text, UniqueConstraint, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func

from orbit.core.config import settings

logger = logging.getLogger("orbit.database")

metadata = MetaData()

POOL_SIZE = 5
MAX_OVERFLOW = 10
POOL_RECYCLE_SECONDS = 1800

_engine: Optional[Engine] = None
_session_factory = None


def get_database_url() -> Optional[str]:
    """TEST_DATABASE_URL wins over DATABASE_URL, so test runs never touch the app database."""
    return os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None) -> Engine:
    global _engine, _session_factory

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not set; the in-memory store is used instead of SQL")

    if url.startswith("sqlite"):
        # one shared connection keeps sqlite:// alive between sessions
        _engine = create_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_recycle=POOL_RECYCLE_SECONDS,
            pool_pre_ping=True,
        )
    _session_factory = sessionmaker(bind=_engine, autoflush=False)
    logger.info(f"SQL store engine ready ({_engine.dialect.name})")
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


@contextmanager
def get_db_session():
    """One transaction: commits on clean exit, rolls back on any exception."""
    if _session_factory is None:
        init_engine()
    session = _session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    metadata.create_all(bind=get_engine())


def drop_all_tables() -> None:
    """Destructive. Tests and local resets only."""
    metadata.drop_all(bind=get_engine())


def check_connection() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning("database connection check failed", exc_info=True)
        return False
    return True


# Rooms
rooms = Table(
    'rooms',
    metadata,
    Column('room_id', String(100), primary_key=True),
    Column('name', Text, nullable=False),
    Column('timezone', String(64), nullable=False, server_default='UTC'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Room membership and per-room points
room_members = Table(
    'room_members',
    metadata,
    Column('room_id', String(100), nullable=False),
    Column('user_id', String(100), nullable=False),
    Column('username', String(200), nullable=False),
    Column('avatar', Text, nullable=True),
    Column('points', Integer, nullable=False, server_default='0'),
    Column('joined_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    PrimaryKeyConstraint('room_id', 'user_id', name='pk_room_members'),
    Index('idx_room_members_user', 'user_id'),
)

# Recurring room tasks
room_tasks = Table(
    'room_tasks',
    metadata,
    Column('task_id', String(100), primary_key=True),
    Column('room_id', String(100), nullable=False, index=True),
    Column('title', Text, nullable=False),
    Column('points', Integer, nullable=False, server_default='0'),
    Column('is_active', Boolean, nullable=False, server_default='true'),
    Column('created_at', DateTime(timezone=True), nullable=False),
)

# Lifetime points per user
user_points = Table(
    'user_points',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('total_points', Integer, nullable=False, server_default='0'),
)

# Task completions
task_completions = Table(
    'task_completions',
    metadata,
    Column('completion_id', String(100), primary_key=True),
    Column('user_id', String(100), nullable=False),
    Column('room_id', String(100), nullable=False),
    Column('task_id', String(100), nullable=False),
    Column('task_created_at', DateTime(timezone=True), nullable=True),
    Column('completed_at', DateTime(timezone=True), nullable=True),
    Column('completion_date', Date, nullable=False),
    Column('points_awarded', Integer, nullable=False, server_default='0'),
    Column('is_valid', Boolean, nullable=False, server_default='false'),
    # A task can be completed once per member per room-local day
    UniqueConstraint('user_id', 'room_id', 'task_id', 'completion_date', name='uq_task_completions_daily'),
    Index('idx_task_completions_room_date', 'room_id', 'completion_date'),
    Index('idx_task_completions_user_completed', 'user_id', 'completed_at'),
)

# Streak state per (scope, key): scope is user_room, user or room
streak_states = Table(
    'streak_states',
    metadata,
    Column('scope', String(20), nullable=False),
    Column('key', String(220), nullable=False),
    Column('current_streak', Integer, nullable=False, server_default='0'),
    Column('longest_streak', Integer, nullable=False, server_default='0'),
    Column('last_activity_date', Date, nullable=True),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    PrimaryKeyConstraint('scope', 'key', name='pk_streak_states'),
    Index('idx_streak_states_current', 'current_streak'),
)

# Rate-limited social actions (appreciations, nudges)
social_actions = Table(
    'social_actions',
    metadata,
    Column('action_id', String(100), primary_key=True),
    Column('kind', String(20), nullable=False),
    Column('room_id', String(100), nullable=False),
    Column('actor_id', String(100), nullable=False),
    Column('target_id', String(100), nullable=True),
    Column('variant', String(20), nullable=True),
    Column('slot_date', Date, nullable=False),
    Column('slot', Integer, nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False),
    # Quota slot: two requests racing for the last slot cannot both insert
    UniqueConstraint('kind', 'room_id', 'actor_id', 'slot_date', 'slot', name='uq_social_actions_slot'),
    # Each (target, variant) once per actor per day
    UniqueConstraint('kind', 'room_id', 'actor_id', 'target_id', 'variant', 'slot_date', name='uq_social_actions_target'),
    Index('idx_social_actions_room_created', 'room_id', 'created_at'),
)

# Room MVP history, one row per room per UTC day
mvp_records = Table(
    'mvp_records',
    metadata,
    Column('room_id', String(100), nullable=False),
    Column('date', String(10), nullable=False),
    Column('user_id', String(100), nullable=False),
    Column('mvp_score', Integer, nullable=False),
    Column('tasks_completed', Integer, nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False),
    PrimaryKeyConstraint('room_id', 'date', name='pk_mvp_records'),
)
