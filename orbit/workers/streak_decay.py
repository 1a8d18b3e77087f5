"""Streak decay sweep: resets streaks whose owners missed their last local day."""
import logging
from datetime import date, datetime
from typing import Optional

from orbit.core.store import ActivityStore
from orbit.features.streaks.service import run_decay_sweep
from orbit.features.timewindow.service import as_utc, utc_now
from orbit.realtime.notifier import get_notifier

logger = logging.getLogger("orbit.workers.streak_decay")


def decay_streaks(
    *,
    store: Optional[ActivityStore] = None,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> dict:
    moment = as_utc(now) if now else utc_now()
    result = run_decay_sweep(store=store, today=today, notifier=get_notifier(), now=moment)
    logger.info("[decay] streak sweep", extra={"event_type": "streak.decay_sweep", **result})
    return {"ran_at": moment.isoformat(), **result}


if __name__ == "__main__":
    from orbit.core.config import settings
    from orbit.core.logging import configure_logging

    configure_logging(settings.ENV)
    print(decay_streaks())
