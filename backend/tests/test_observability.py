import json
import logging
from uuid import UUID

from fastapi.testclient import TestClient

from studyplan.generation import RAW_RESPONSE_LOG_CHARS, log_raw_response
from studyplan.main import app
from studyplan.observability import (
    JsonFormatter,
    RequestIdFilter,
    TextFormatter,
    reset_request_id,
    sanitize_for_logging,
    set_request_id,
)


def test_request_id_header_is_generated_when_missing() -> None:
    with TestClient(app) as client:
        response = client.get("/health")
    assert response.status_code == 200
    request_id = response.headers.get("X-Request-ID")
    assert request_id is not None
    UUID(request_id)


def test_request_id_header_is_preserved_when_provided() -> None:
    with TestClient(app) as client:
        response = client.get("/health", headers={"X-Request-ID": "demo-request-123"})
    assert response.status_code == 200
    assert response.headers.get("X-Request-ID") == "demo-request-123"


def test_malformed_request_id_is_replaced() -> None:
    with TestClient(app) as client:
        response = client.get("/health", headers={"X-Request-ID": "bad id with spaces"})
    UUID(response.headers["X-Request-ID"])


def test_request_started_log_redacts_sensitive_query_values(caplog) -> None:
    with TestClient(app) as client:
        with caplog.at_level(logging.INFO, logger="studyplan.api"):
            response = client.get("/health?token=supersecret&email=user@example.org&q=public")
    assert response.status_code == 200

    request_started_logs = [
        record for record in caplog.records if getattr(record, "event", None) == "request_started"
    ]
    assert request_started_logs
    query = request_started_logs[-1].query
    assert query["token"] == "[REDACTED]"
    assert query["email"] == "[REDACTED]"
    assert query["q"] == "public"


def test_sanitize_for_logging_redacts_common_sensitive_patterns() -> None:
    aws_access_key = "AKIA" "ABCDEFGHIJKLMNOP"
    payload = {
        "notes": (
            "Contact user@example.org, token Bearer abc123, "
            f"key {aws_access_key}, "
            "url https://bucket.s3.amazonaws.com/k?X-Amz-Credential=abc&X-Amz-Signature=deadbeef&x=1"
        ),
        "api_key": "plain-value",
        "nested": [{"password": "hunter2", "subject": "Algorithms"}],
        "blob": b"\x00\x01\x02",
    }

    sanitized = sanitize_for_logging(payload, max_string_length=2000)
    notes = sanitized["notes"]
    assert "user@example.org" not in notes
    assert "[REDACTED_EMAIL]" in notes
    assert "Bearer [REDACTED]" in notes
    assert "[REDACTED_AWS_ACCESS_KEY]" in notes
    assert "X-Amz-Signature=[REDACTED]" in notes
    assert "X-Amz-Credential=[REDACTED]" in notes
    assert "deadbeef" not in notes
    assert sanitized["api_key"] == "[REDACTED]"
    assert sanitized["nested"] == [{"password": "[REDACTED]", "subject": "Algorithms"}]
    assert sanitized["blob"] == "[3 bytes]"


def test_sanitize_for_logging_truncates_long_strings() -> None:
    sanitized = sanitize_for_logging("x" * 300, max_string_length=10)
    assert sanitized == "xxxxxxxxxx...[truncated]"


def test_json_formatter_emits_extra_fields_with_request_id() -> None:
    record = logging.LogRecord(
        name="studyplan.reconciler",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="reconcile_completed",
        args=(),
        exc_info=None,
    )
    record.event = "reconcile_completed"
    record.subject = "자료구조"

    token = set_request_id("req-42")
    try:
        RequestIdFilter().filter(record)
    finally:
        reset_request_id(token)

    payload = json.loads(JsonFormatter().format(record))
    assert payload["logger"] == "studyplan.reconciler"
    assert payload["message"] == "reconcile_completed"
    assert payload["request_id"] == "req-42"
    assert payload["event"] == "reconcile_completed"
    assert payload["subject"] == "자료구조"
    assert "lineno" not in payload


def test_raw_response_log_keeps_its_own_clipping_limit(caplog) -> None:
    with caplog.at_level(logging.DEBUG, logger="studyplan.generation"):
        log_raw_response({"arguments": {"summary": "y" * 3000}})

    record = [record for record in caplog.records if getattr(record, "event", None) == "structured_raw_response"][-1]
    RequestIdFilter().filter(record)

    payload = json.loads(JsonFormatter().format(record))
    assert len(payload["payload"]) == RAW_RESPONSE_LOG_CHARS + len("...[truncated]")
    assert "log_max_string_length" not in payload

    line = TextFormatter().format(record)
    assert "structured_raw_response" in line
    extras = json.loads(line[line.index("{") :])
    assert extras["payload"] == payload["payload"]
    assert extras["event"] == "structured_raw_response"


def test_other_records_use_the_default_clipping_limit() -> None:
    record = logging.makeLogRecord({"name": "studyplan.corpus", "msg": "corpus_file_skipped", "error": "e" * 1000})

    payload = json.loads(JsonFormatter().format(record))

    assert payload["error"] == "e" * 240 + "...[truncated]"
