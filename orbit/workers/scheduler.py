"""APScheduler wiring for the streak decay and MVP jobs (UTC cron)."""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from orbit.core.config import Settings, settings
from orbit.workers.mvp_job import decide_mvps
from orbit.workers.streak_decay import decay_streaks

logger = logging.getLogger("orbit.workers")


def build_scheduler(cfg: Optional[Settings] = None) -> AsyncIOScheduler:
    cfg = cfg or settings
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        decay_streaks,
        CronTrigger(hour=cfg.DECAY_CRON_HOUR, minute=cfg.DECAY_CRON_MINUTE, timezone="UTC"),
        id="streak_decay",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=3600,
    )
    scheduler.add_job(
        decide_mvps,
        CronTrigger(hour=cfg.MVP_CRON_HOUR, minute=cfg.MVP_CRON_MINUTE, timezone="UTC"),
        id="mvp_decide",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=3600,
    )
    return scheduler


def _when(hour: Optional[int], minute: int) -> str:
    if hour is None:
        return f"hourly at :{minute:02d}"
    return f"daily at {hour:02d}:{minute:02d} UTC"


def start_scheduler(cfg: Optional[Settings] = None) -> Optional[AsyncIOScheduler]:
    cfg = cfg or settings
    if not cfg.SCHEDULER_ENABLED:
        logger.info("scheduler disabled")
        return None
    scheduler = build_scheduler(cfg)
    scheduler.start()
    logger.info(
        f"scheduler started (decay {_when(cfg.DECAY_CRON_HOUR, cfg.DECAY_CRON_MINUTE)}, "
        f"mvp {_when(cfg.MVP_CRON_HOUR, cfg.MVP_CRON_MINUTE)})"
    )
    return scheduler


def stop_scheduler(scheduler: Optional[AsyncIOScheduler]) -> None:
    if scheduler is None:
        return
    try:
        scheduler.shutdown(wait=False)
    except Exception:
        logger.warning("scheduler shutdown failed", exc_info=True)
