"""
Logging for the Orbit backend.

Every module logs through a child of the "orbit" logger. Records carry the
request id of the HTTP request or socket that produced them, plus the room
and user they concern, so one request's trail can be followed across the
completion, streak and notification steps.

Production writes one JSON object per line; other environments write a
readable single line with the same context appended.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional, Tuple

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

ROOT_LOGGER = "orbit"

# Record attributes that are part of the log line when set
CONTEXT_FIELDS = (
    "room_id",
    "user_id",
    "event_type",
    "scope",
    "error_code",
    "status",
    "method",
    "path",
    "latency_bucket",
)

# (upper bound in ms, label); the last bucket is open-ended
_LATENCY_BUCKETS = (
    (10, "<10ms"),
    (100, "10-100ms"),
    (500, "100-500ms"),
    (1000, "500-1000ms"),
)

_MAX_EXTRA_CHARS = 500


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return default if rid is None else rid


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    """Coarse latency label, so request logs group without high-cardinality values."""
    if latency_ms is None:
        return "unknown"
    for bound, label in _LATENCY_BUCKETS:
        if latency_ms < bound:
            return label
    return ">=1000ms"


def _utc_stamp(record: logging.LogRecord) -> str:
    stamp = datetime.fromtimestamp(record.created, timezone.utc)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _context(record: logging.LogRecord) -> Iterator[Tuple[str, object]]:
    for name in CONTEXT_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            yield name, value


class RequestIdFilter(logging.Filter):
    """Stamp records with the active request id unless the caller passed one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = {
            "ts": _utc_stamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        line.update(_context(record))
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        head = f"{_utc_stamp(record)} {record.levelname:<7} {record.name}"
        rid = getattr(record, "request_id", None)
        if rid:
            head += f" rid={rid}"
        context = " ".join(f"{k}={v}" for k, v in _context(record))
        line = f"{head} | {record.getMessage()}"
        if context:
            line += f" ({context})"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(env: str = "development", level: int = logging.INFO) -> None:
    """Install the stdout handler on the "orbit" logger. Safe to call again."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())
    logger.handlers = [handler]
    # pytest's caplog listens on the root logger
    logger.propagate = True

    # Scheduler chatter is noisy at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def _clip(value: object) -> str:
    try:
        text = str(value)
    except Exception:
        return "<unprintable>"
    if len(text) > _MAX_EXTRA_CHARS:
        return text[:_MAX_EXTRA_CHARS] + "...<clipped>"
    return text


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    room_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """Log one structured event on the "orbit" logger.

    Free-form `extra` values are stringified and clipped so a large payload
    cannot blow up a log line.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"))

    fields: Dict[str, object] = {
        "request_id": request_id or get_request_id(),
        "user_id": user_id,
        "room_id": room_id,
        "event_type": event_type,
        "error_code": error_code,
    }
    for key, value in (extra or {}).items():
        fields[key] = _clip(value)

    getattr(logger, level, logger.info)(msg, extra=fields)
