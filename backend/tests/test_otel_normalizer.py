from __future__ import annotations

from typing import Any

from agent_trace.services.normalization.otel import NO_LOG_RECORDS_ERROR, normalize_otel_export

INGESTED_AT = "2026-02-23T10:15:00.000Z"


def _attr(key: str, value: str) -> dict[str, Any]:
    return {"key": key, "value": {"stringValue": value}}


def _record(*attributes: dict[str, Any], **fields: Any) -> dict[str, Any]:
    record: dict[str, Any] = {"timeUnixNano": "1771841400123456789", "attributes": list(attributes)}
    record.update(fields)
    return record


def _export(*records: Any) -> dict[str, Any]:
    return {"resourceLogs": [{"scopeLogs": [{"logRecords": list(records)}]}]}


def test_log_record_becomes_otel_envelope() -> None:
    payload = _export(
        _record(
            _attr("session.id", "sess_otel_1"),
            _attr("event.name", "api_request"),
            _attr("prompt.id", "prompt_9"),
            _attr("model", "claude-sonnet"),
            severityText="INFO",
            severityNumber=9,
        )
    )

    result = normalize_otel_export(payload, privacy_tier=1, ingested_at=INGESTED_AT)

    assert result.ok is True
    assert result.dropped_records == 0
    assert len(result.events) == 1
    event = result.events[0]
    assert event.source == "otel"
    assert event.source_version == "otlp-log-v1"
    assert event.session_id == "sess_otel_1"
    assert event.event_type == "api_request"
    assert event.prompt_id == "prompt_9"
    assert event.event_timestamp == "2026-02-23T10:10:00.123Z"
    assert event.ingested_at == INGESTED_AT
    assert event.privacy_tier == 1
    assert event.payload["model"] == "claude-sonnet"
    assert event.payload["severity_text"] == "INFO"
    assert event.payload["severity_number"] == 9
    assert len(event.event_id) == 64


def test_event_ids_are_stable_across_identical_exports() -> None:
    payload = _export(_record(_attr("session_id", "sess_a"), _attr("event_type", "tool_result")))

    first = normalize_otel_export(payload, privacy_tier=0, ingested_at=INGESTED_AT)
    second = normalize_otel_export(payload, privacy_tier=0, ingested_at=INGESTED_AT)

    assert first.events[0].event_id == second.events[0].event_id


def test_records_in_one_batch_get_distinct_ids() -> None:
    record = _record(_attr("session_id", "sess_a"), _attr("event_type", "tool_result"))

    result = normalize_otel_export(_export(record, dict(record)), privacy_tier=1, ingested_at=INGESTED_AT)

    assert len(result.events) == 2
    assert result.events[0].event_id != result.events[1].event_id


def test_json_body_supplies_defaults_and_attributes_win() -> None:
    body = '{"session_id": "sess_from_body", "event_type": "api_error", "status_code": 529}'
    payload = _export(_record(_attr("session_id", "sess_from_attr"), body={"stringValue": body}))

    result = normalize_otel_export(payload, privacy_tier=2, ingested_at=INGESTED_AT)

    event = result.events[0]
    assert event.session_id == "sess_from_attr"
    assert event.event_type == "api_error"
    assert event.payload["status_code"] == 529
    assert event.payload["body"] == body


def test_non_json_body_is_kept_verbatim() -> None:
    payload = _export(
        _record(_attr("session_id", "sess_a"), _attr("event_type", "log"), body={"stringValue": "plain text"})
    )

    result = normalize_otel_export(payload, privacy_tier=1, ingested_at=INGESTED_AT)

    assert result.events[0].payload["body"] == "plain text"


def test_missing_fields_fall_back_to_placeholders() -> None:
    payload = _export(
        _record(_attr("session_id", "sess_only")),
        _record(_attr("event.name", "tool_decision")),
    )

    result = normalize_otel_export(payload, privacy_tier=1, ingested_at=INGESTED_AT)

    assert result.ok is True
    assert [event.event_type for event in result.events] == ["otel_log", "tool_decision"]
    assert [event.session_id for event in result.events] == ["sess_only", "unknown_session"]


def test_unusable_records_are_dropped_and_reported() -> None:
    payload = _export(
        _record(_attr("session_id", "sess_a"), _attr("event_type", "tool_result")),
        "not-a-record",
        _record(_attr("unrelated", "value")),
    )

    result = normalize_otel_export(payload, privacy_tier=1, ingested_at=INGESTED_AT)

    assert result.ok is False
    assert len(result.events) == 1
    assert result.dropped_records == 2
    assert result.errors == (
        "log record 2: must be an object",
        "log record 3: missing session id and event type",
    )


def test_only_string_attribute_values_are_read() -> None:
    payload = _export(
        _record(
            _attr("session_id", "sess_a"),
            _attr("event_type", "api_request"),
            {"key": "duration_ms", "value": {"intValue": "250"}},
        )
    )

    result = normalize_otel_export(payload, privacy_tier=1, ingested_at=INGESTED_AT)

    assert "duration_ms" not in result.events[0].payload


def test_bad_timestamps_fall_back_to_ingested_at() -> None:
    payload = _export(
        _record(_attr("session_id", "sess_a"), _attr("event_type", "x"), timeUnixNano="soon"),
        _record(_attr("session_id", "sess_b"), _attr("event_type", "y"), timeUnixNano=None),
    )

    result = normalize_otel_export(payload, privacy_tier=1, ingested_at=INGESTED_AT)

    assert [event.event_timestamp for event in result.events] == [INGESTED_AT, INGESTED_AT]


def test_legacy_instrumentation_library_logs_are_read() -> None:
    payload = {
        "resourceLogs": [
            {
                "instrumentationLibraryLogs": [
                    {"logRecords": [_record(_attr("session_id", "sess_legacy"), _attr("event_type", "x"))]}
                ]
            }
        ]
    }

    result = normalize_otel_export(payload, privacy_tier=1, ingested_at=INGESTED_AT)

    assert result.ok is True
    assert result.events[0].session_id == "sess_legacy"


def test_malformed_groups_are_reported_but_good_records_survive() -> None:
    payload = {
        "resourceLogs": [
            "junk",
            {"scopeLogs": [{"logRecords": "nope"}]},
            {"scopeLogs": [{"logRecords": [_record(_attr("session_id", "sess_a"), _attr("event_type", "x"))]}]},
        ]
    }

    result = normalize_otel_export(payload, privacy_tier=1, ingested_at=INGESTED_AT)

    assert result.ok is False
    assert len(result.events) == 1
    assert result.dropped_records == 0
    assert "resourceLogs[0]: must be an object" in result.errors
    assert "resourceLogs[1].scopeLogs[0].logRecords: must be an array" in result.errors


def test_exports_without_records_fail() -> None:
    for payload in (None, [], {}, {"resourceLogs": []}, {"resourceLogs": "x"}, _export()):
        result = normalize_otel_export(payload, privacy_tier=1, ingested_at=INGESTED_AT)
        assert result.ok is False
        assert result.events == ()
        assert result.errors == (NO_LOG_RECORDS_ERROR,)


def test_ingested_at_defaults_to_now() -> None:
    payload = _export(_record(_attr("session_id", "sess_a"), _attr("event_type", "x")))

    result = normalize_otel_export(payload, privacy_tier=1)

    assert result.events[0].ingested_at.endswith("Z")
