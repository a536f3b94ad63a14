from __future__ import annotations

import hashlib
from collections.abc import Iterator, Mapping
from typing import Any

import orjson

from agent_trace.core.clock import unix_nano_to_iso, utc_now_iso
from agent_trace.core.contracts import validate_event_envelope
from agent_trace.models.events import OTEL_SOURCE_VERSION, SCHEMA_VERSION, EventEnvelope
from agent_trace.models.payloads import OtelEventPayload
from agent_trace.models.results import OtelNormalizeResult, ValidationFailure

NO_LOG_RECORDS_ERROR = "payload does not contain OTEL log records"

_SESSION_ID_KEYS = ("session_id", "session.id", "sessionId")
_EVENT_TYPE_KEYS = ("event_type", "event.name", "event.type")
_PROMPT_ID_KEYS = ("prompt_id", "prompt.id", "promptId")
_SCOPE_GROUP_KEYS = ("scopeLogs", "instrumentationLibraryLogs")

UNKNOWN_SESSION_ID = "unknown_session"
DEFAULT_EVENT_TYPE = "otel_log"


def normalize_otel_export(
    payload: Any,
    *,
    privacy_tier: int,
    ingested_at: str | None = None,
) -> OtelNormalizeResult:
    """Convert an OTLP JSON log export into canonical envelopes.

    A batch with no log records at all is a fatal failure. Otherwise each
    record is normalized independently; malformed groups and dropped records
    are reported in ``errors`` while the surviving events are still returned.
    """
    errors: list[str] = []
    records = list(_collect_log_records(payload, errors))
    if not records:
        return OtelNormalizeResult(errors=(NO_LOG_RECORDS_ERROR,))

    resolved_ingested_at = ingested_at or utc_now_iso()
    events: list[EventEnvelope] = []
    dropped = 0
    for position, record in enumerate(records, start=1):
        event, problem = _normalize_log_record(
            record,
            position=position,
            privacy_tier=privacy_tier,
            ingested_at=resolved_ingested_at,
        )
        if event is None:
            dropped += 1
            errors.append(f"log record {position}: {problem}")
            continue
        events.append(event)

    return OtelNormalizeResult(events=tuple(events), dropped_records=dropped, errors=tuple(errors))


def _collect_log_records(payload: Any, errors: list[str]) -> Iterator[Any]:
    if not isinstance(payload, Mapping):
        return
    resource_logs = payload.get("resourceLogs")
    if not isinstance(resource_logs, list):
        return

    for resource_idx, resource_log in enumerate(resource_logs):
        if not isinstance(resource_log, Mapping):
            errors.append(f"resourceLogs[{resource_idx}]: must be an object")
            continue
        for group_key in _SCOPE_GROUP_KEYS:
            scope_logs = resource_log.get(group_key)
            if scope_logs is None:
                continue
            if not isinstance(scope_logs, list):
                errors.append(f"resourceLogs[{resource_idx}].{group_key}: must be an array")
                continue
            for scope_idx, scope_log in enumerate(scope_logs):
                path = f"resourceLogs[{resource_idx}].{group_key}[{scope_idx}]"
                if not isinstance(scope_log, Mapping):
                    errors.append(f"{path}: must be an object")
                    continue
                log_records = scope_log.get("logRecords", [])
                if not isinstance(log_records, list):
                    errors.append(f"{path}.logRecords: must be an array")
                    continue
                yield from log_records


def _normalize_log_record(
    record: Any,
    *,
    position: int,
    privacy_tier: int,
    ingested_at: str,
) -> tuple[EventEnvelope | None, str]:
    if not isinstance(record, Mapping):
        return None, "must be an object"

    attributes = _attributes_to_payload(record.get("attributes"))
    payload: dict[str, Any] = {}

    body = _string_value(record.get("body"))
    if body is not None:
        payload["body"] = body
        # Body fields are defaults; explicit attributes override them.
        payload.update(_parse_json_object(body))
    payload.update(attributes)
    payload.update(_severity_fields(record))

    session_id = _pick_string(payload, _SESSION_ID_KEYS)
    event_type = _pick_string(payload, _EVENT_TYPE_KEYS)
    if session_id is None and event_type is None:
        return None, "missing session id and event type"

    session_id = session_id or UNKNOWN_SESSION_ID
    event_type = event_type or DEFAULT_EVENT_TYPE
    event_timestamp = unix_nano_to_iso(record.get("timeUnixNano"), ingested_at)

    candidate: dict[str, Any] = {
        "schemaVersion": SCHEMA_VERSION,
        "source": "otel",
        "sourceVersion": OTEL_SOURCE_VERSION,
        "eventId": _build_event_id(session_id, event_timestamp, event_type, position),
        "sessionId": session_id,
        "eventType": event_type,
        "eventTimestamp": event_timestamp,
        "ingestedAt": ingested_at,
        "privacyTier": privacy_tier,
        "payload": dict(payload),
    }
    prompt_id = _pick_string(payload, _PROMPT_ID_KEYS)
    if prompt_id is not None:
        candidate["promptId"] = prompt_id

    validation = validate_event_envelope(candidate)
    if isinstance(validation, ValidationFailure):
        return None, "; ".join(validation.errors)
    return validation.value, ""


def _severity_fields(record: Mapping[str, Any]) -> OtelEventPayload:
    fields: OtelEventPayload = {}
    severity_text = record.get("severityText")
    if isinstance(severity_text, str) and severity_text:
        fields["severity_text"] = severity_text
    severity_number = record.get("severityNumber")
    if isinstance(severity_number, (int, float)) and not isinstance(severity_number, bool):
        fields["severity_number"] = severity_number
    return fields


def _attributes_to_payload(attributes: Any) -> dict[str, str]:
    values: dict[str, str] = {}
    if not isinstance(attributes, list):
        return values
    for entry in attributes:
        if not isinstance(entry, Mapping):
            continue
        key = entry.get("key")
        value = _string_value(entry.get("value"))
        if isinstance(key, str) and key and value is not None:
            values[key] = value
    return values


def _string_value(any_value: Any) -> str | None:
    """Read the ``stringValue`` variant of an OTLP AnyValue."""
    if isinstance(any_value, Mapping):
        value = any_value.get("stringValue")
        if isinstance(value, str):
            return value
    return None


def _parse_json_object(text: str) -> dict[str, Any]:
    if not text.lstrip().startswith("{"):
        return {}
    try:
        parsed = orjson.loads(text)
    except orjson.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _pick_string(values: Mapping[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = values.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _build_event_id(session_id: str, event_timestamp: str, event_type: str, position: int) -> str:
    digest = hashlib.sha256(f"{session_id}:{event_timestamp}:{event_type}:{position}".encode())
    return digest.hexdigest()
