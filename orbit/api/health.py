"""
Liveness and readiness checks.
"""

import logging

from fastapi import APIRouter

from orbit.core.database import check_connection, get_database_url
from orbit.core.errors import PersistenceError
from orbit.realtime.hub import hub

logger = logging.getLogger("orbit.health")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Process is up. Touches nothing else."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    sql = bool(get_database_url())
    if sql and not check_connection():
        logger.error("readiness failed: database unreachable")
        raise PersistenceError("Database unreachable")
    return {"status": "ok", "store": "sql" if sql else "memory", "hub": hub.running}
