import logging

import pytest

from orbit.core.config import Settings, validate_config


def test_defaults():
    cfg = Settings(_env_file=None)
    assert cfg.APPRECIATION_DAILY_LIMIT == 3
    assert cfg.NUDGE_DAILY_LIMIT == 1
    assert cfg.MIN_HOURS_GAP == 2.0
    assert cfg.STREAK_MILESTONE_INTERVAL == 7
    assert cfg.SCHEDULER_ENABLED is False


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("APPRECIATION_DAILY_LIMIT", "5")
    monkeypatch.setenv("MIN_HOURS_GAP", "1.5")
    cfg = Settings(_env_file=None)
    assert cfg.APPRECIATION_DAILY_LIMIT == 5
    assert cfg.MIN_HOURS_GAP == 1.5


def test_invalid_values_warn_in_lenient_mode(caplog):
    cfg = Settings(_env_file=None, NUDGE_DAILY_LIMIT=0)
    with caplog.at_level(logging.WARNING):
        assert validate_config(strict=False, settings_obj=cfg, logger=logging.getLogger("config-check")) is False
    assert "NUDGE_DAILY_LIMIT" in caplog.text


def test_invalid_values_raise_in_strict_mode():
    cfg = Settings(_env_file=None, DECAY_CRON_HOUR=25, WS_STALE_AFTER_SECONDS=10)
    with pytest.raises(RuntimeError) as exc:
        validate_config(strict=True, settings_obj=cfg)
    assert "CRON_HOUR" in str(exc.value)
    assert "WS_STALE_AFTER_SECONDS" in str(exc.value)


def test_valid_config_passes():
    cfg = Settings(_env_file=None, DATABASE_URL="sqlite://")
    assert validate_config(strict=True, settings_obj=cfg) is True
