import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database (in-memory store when unset)
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Social action quotas, per actor per room per UTC day
    APPRECIATION_DAILY_LIMIT: int = 3
    NUDGE_DAILY_LIMIT: int = 1

    # Anti-gaming rule for streak/MVP credit
    MIN_HOURS_GAP: float = 2.0

    # Streaks and MVP
    STREAK_MILESTONE_INTERVAL: int = 7
    MVP_HISTORY_DAYS: int = 7
    MVP_TASK_CAP: int = 5

    # Background jobs (UTC). An unset hour runs the job every hour, so each
    # room is handled shortly after its own local midnight.
    SCHEDULER_ENABLED: bool = False
    DECAY_CRON_HOUR: Optional[int] = None
    DECAY_CRON_MINUTE: int = 5
    MVP_CRON_HOUR: Optional[int] = None
    MVP_CRON_MINUTE: int = 10

    # Room hub keep-alive
    WS_KEEPALIVE_SECONDS: int = 30
    WS_STALE_AFTER_SECONDS: int = 90

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate configuration values.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("orbit")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    problems = []
    for key in ("APPRECIATION_DAILY_LIMIT", "NUDGE_DAILY_LIMIT", "STREAK_MILESTONE_INTERVAL", "MVP_HISTORY_DAYS", "MVP_TASK_CAP"):
        if getattr(cfg, key, 0) < 1:
            problems.append(key)
    if cfg.MIN_HOURS_GAP < 0:
        problems.append("MIN_HOURS_GAP")
    if any(hour is not None and not 0 <= hour < 24 for hour in (cfg.DECAY_CRON_HOUR, cfg.MVP_CRON_HOUR)):
        problems.append("CRON_HOUR")
    if not (0 <= cfg.DECAY_CRON_MINUTE < 60 and 0 <= cfg.MVP_CRON_MINUTE < 60):
        problems.append("CRON_MINUTE")
    if cfg.WS_STALE_AFTER_SECONDS <= cfg.WS_KEEPALIVE_SECONDS:
        problems.append("WS_STALE_AFTER_SECONDS")

    if problems:
        message = f"Invalid configuration: {', '.join(problems)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)
        return False

    if not cfg.DATABASE_URL:
        log.warning("DATABASE_URL not set, using in-memory store")

    return True
