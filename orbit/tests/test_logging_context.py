"""Structured logging and request_id propagation."""

import json
import logging

from fastapi.testclient import TestClient

from orbit.core.logging import JsonFormatter, RequestIdFilter, latency_bucket_ms, request_id_ctx_var
from orbit.main import app


def test_request_id_in_response_and_logs(caplog):
    client = TestClient(app)
    with caplog.at_level(logging.INFO, logger="orbit"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records
    assert records[-1].path == "/healthz"


def test_incoming_request_id_is_kept():
    response = TestClient(app).get("/healthz", headers={"x-request-id": "abc-123"})
    assert response.headers["x-request-id"] == "abc-123"


def test_json_formatter_includes_context_fields():
    record = logging.LogRecord("orbit.tasks", logging.INFO, __file__, 1, "Task completed", None, None)
    record.room_id = "r1"
    record.user_id = "alice"
    token = request_id_ctx_var.set("rid-1")
    try:
        RequestIdFilter().filter(record)
    finally:
        request_id_ctx_var.reset(token)

    line = json.loads(JsonFormatter().format(record))
    assert line["request_id"] == "rid-1"
    assert line["room_id"] == "r1"
    assert line["user_id"] == "alice"
    assert line["logger"] == "orbit.tasks"


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(2500) == ">=1000ms"
