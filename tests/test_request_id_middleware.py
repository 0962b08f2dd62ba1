from __future__ import annotations

import logging

from fastapi.testclient import TestClient

from sql_ratelimiter.main import app


client = TestClient(app)


def test_preserves_incoming_request_id_header():
    incoming_id = "limiter-request-7"
    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers["X-Request-ID"] == incoming_id


def test_generates_request_id_and_duration_when_missing():
    resp = client.get("/")

    assert resp.status_code == 200
    assert resp.headers["X-Request-ID"]
    assert float(resp.headers["X-Request-Duration-ms"]) >= 0


def test_each_request_writes_one_access_log_line(caplog):
    caplog.set_level(logging.INFO, logger="sql_ratelimiter.core.middleware")

    client.get("/health", headers={"X-Request-ID": "access-log-1"})

    records = [r for r in caplog.records if r.getMessage() == "http.request"]
    assert len(records) == 1
    record = records[0]
    assert record.request_method == "GET"
    assert record.request_path == "/health"
    assert record.status_code == 200
    assert record.duration_ms >= 0
