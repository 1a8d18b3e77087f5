"""MVP job: records each room's MVP once its local day has ended."""
import logging
from datetime import datetime
from typing import Optional

from orbit.core.store import ActivityStore
from orbit.features.mvp.service import run_mvp_job
from orbit.features.timewindow.service import as_utc, utc_now
from orbit.realtime.notifier import get_notifier

logger = logging.getLogger("orbit.workers.mvp")


def decide_mvps(
    *,
    store: Optional[ActivityStore] = None,
    day: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    moment = as_utc(now) if now else utc_now()
    result = run_mvp_job(store=store, day=day, notifier=get_notifier(), now=moment)
    logger.info("[mvp] job run", extra={"event_type": "mvp.job", **result})
    return {"ran_at": moment.isoformat(), "day": day, **result}


if __name__ == "__main__":
    from orbit.core.config import settings
    from orbit.core.logging import configure_logging

    configure_logging(settings.ENV)
    print(decide_mvps())
