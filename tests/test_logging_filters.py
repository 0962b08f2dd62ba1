"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

from sql_ratelimiter.core.logging import JsonFormatter, SensitiveDataFilter, hash_key


def _capture(name: str) -> tuple[logging.Logger, StringIO]:
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger, stream


def test_sensitive_filter_redacts_store_credentials():
    """Ensure the database URL and auth token never reach the log."""

    logger, stream = _capture("test_redaction")

    logger.info(
        "store_event",
        extra={
            "auth_token": "iam-secret-123",
            "url": "libsql://user:pw@db.example.com",
            "table_name": "rate_limits",
        },
    )

    output = stream.getvalue()

    assert "iam-secret-123" not in output
    assert "db.example.com" not in output
    assert "[REDACTED]" in output
    assert "rate_limits" in output


def test_sensitive_filter_redacts_client_addresses():
    """Ensure client IP fields are redacted."""

    logger, stream = _capture("test_ip_redaction")

    logger.info(
        "http_event",
        extra={
            "client_ip": "203.0.113.7",
            "X-Forwarded-For": "198.51.100.1",
            "quota": "minute",
        },
    )

    output = stream.getvalue()

    assert "203.0.113.7" not in output
    assert "198.51.100.1" not in output
    assert "minute" in output


def test_sensitive_filter_allows_safe_fields():
    """Verify safe fields pass through unmodified."""

    logger, stream = _capture("test_safe_fields")

    logger.info(
        "rate_limit.allowed",
        extra={
            "request_id": "req-123",
            "algorithm": "sliding",
            "remaining": 4,
            "duration_ms": 150.5,
        },
    )

    payload = json.loads(stream.getvalue())

    assert payload["request_id"] == "req-123"
    assert payload["algorithm"] == "sliding"
    assert payload["remaining"] == 4
    assert "[REDACTED]" not in stream.getvalue()


def test_sensitive_filter_redacts_nested_dicts():
    """Ensure nested sensitive fields are redacted."""

    logger, stream = _capture("test_nested")

    logger.info(
        "nested_event",
        extra={
            "headers": {
                "authorization": "Bearer secret-key",
                "user-agent": "pytest",
            },
            "limits": [{"token": "inner-secret", "limit": 5}],
        },
    )

    output = stream.getvalue()

    assert "secret-key" not in output
    assert "inner-secret" not in output
    assert "[REDACTED]" in output
    assert "pytest" in output


def test_hash_key_is_stable_and_opaque():
    hashed = hash_key("ratelimit:ip:203.0.113.7:minute")

    assert hashed == hash_key("ratelimit:ip:203.0.113.7:minute")
    assert hashed != hash_key("ratelimit:ip:203.0.113.8:minute")
    assert len(hashed) == 16
    assert "ratelimit" not in hashed
