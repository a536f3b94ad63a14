from __future__ import annotations

import hashlib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import orjson

from agent_trace.core.clock import utc_now_iso
from agent_trace.core.contracts import validate_event_envelope
from agent_trace.models.events import SCHEMA_VERSION, TRANSCRIPT_SOURCE_VERSION, EventEnvelope
from agent_trace.models.payloads import TranscriptEventPayload
from agent_trace.models.results import TranscriptParseResult, ValidationFailure

MISSING_FILE_ERROR = "transcript file does not exist"

_TIMESTAMP_KEYS = ("timestamp", "time", "created_at", "createdAt")


class _SkippedLine(Exception):
    """Raised inside line conversion; carries the reason the line was skipped."""


def parse_transcript_jsonl(
    file_path: str | Path,
    *,
    privacy_tier: int,
    ingested_at: str | None = None,
    session_id_fallback: str | None = None,
) -> TranscriptParseResult:
    """Read a JSONL session transcript into canonical envelopes.

    Lines are handled independently: a bad line is counted in
    ``skipped_lines`` with a ``line <n>: <reason>`` error and the scan goes on.
    Blank lines are ignored. A missing file short-circuits with a single error.
    """
    path = Path(file_path)
    if not path.is_file():
        return TranscriptParseResult(file_path=str(path), errors=(MISSING_FILE_ERROR,))

    resolved_ingested_at = ingested_at or utc_now_iso()
    events: list[EventEnvelope] = []
    errors: list[str] = []
    skipped = 0

    with path.open("rb") as handle:
        for line_number, raw_line in enumerate(handle, start=1):
            line = raw_line.strip()
            if not line:
                continue
            try:
                events.append(
                    _line_to_event(
                        line,
                        line_number=line_number,
                        file_path=str(path),
                        privacy_tier=privacy_tier,
                        ingested_at=resolved_ingested_at,
                        session_id_fallback=session_id_fallback,
                    )
                )
            except _SkippedLine as skip:
                skipped += 1
                errors.append(f"line {line_number}: {skip}")

    return TranscriptParseResult(
        file_path=str(path),
        parsed_events=tuple(events),
        skipped_lines=skipped,
        errors=tuple(errors),
    )


def _line_to_event(
    line: bytes,
    *,
    line_number: int,
    file_path: str,
    privacy_tier: int,
    ingested_at: str,
    session_id_fallback: str | None,
) -> EventEnvelope:
    try:
        record = orjson.loads(line)
    except orjson.JSONDecodeError as exc:
        raise _SkippedLine("invalid JSON") from exc
    if not isinstance(record, dict):
        raise _SkippedLine("entry must be an object")

    if "event" in record:
        event_type, prompt_id, payload = _hook_style(record)
        session_id = _read_string(record, "session_id", "sessionId")
    elif record.get("type") in ("user", "assistant") and isinstance(record.get("message"), dict):
        event_type, prompt_id, payload = _claude_style(record)
        session_id = _read_string(record, "sessionId", "session_id")
    else:
        raise _SkippedLine("unrecognized transcript entry")

    session_id = session_id or session_id_fallback
    if session_id is None:
        raise _SkippedLine("missing session id")

    candidate: dict[str, Any] = {
        "schemaVersion": SCHEMA_VERSION,
        "source": "transcript",
        "sourceVersion": TRANSCRIPT_SOURCE_VERSION,
        "eventId": hashlib.sha256(f"{file_path}:{line_number}:".encode() + line).hexdigest(),
        "sessionId": session_id,
        "eventType": event_type,
        "eventTimestamp": _read_string(record, *_TIMESTAMP_KEYS) or ingested_at,
        "ingestedAt": ingested_at,
        "privacyTier": privacy_tier,
        "payload": dict(payload),
        "attributes": {
            "transcript_file": file_path,
            "transcript_line": str(line_number),
        },
    }
    if prompt_id is not None:
        candidate["promptId"] = prompt_id

    validation = validate_event_envelope(candidate)
    if isinstance(validation, ValidationFailure):
        raise _SkippedLine("; ".join(validation.errors))
    return validation.value


def _hook_style(record: dict[str, Any]) -> tuple[Any, str | None, dict[str, Any]]:
    # Hook lines already carry their detail bag at the top level.
    return record["event"], _read_string(record, "prompt_id", "promptId"), dict(record)


def _claude_style(record: dict[str, Any]) -> tuple[str, str | None, TranscriptEventPayload]:
    message: dict[str, Any] = record["message"]
    payload: TranscriptEventPayload = {}

    for source_key, target_key in (
        ("uuid", "uuid"),
        ("cwd", "project_path"),
        ("gitBranch", "git_branch"),
        ("requestId", "request_id"),
    ):
        value = _read_string(record, source_key)
        if value is not None:
            payload[target_key] = value

    if record["type"] == "user":
        content = message.get("content")
        prompt_text = content if isinstance(content, str) and content else _first_text_block(content)
        if prompt_text is not None:
            payload["prompt_text"] = prompt_text
        return "user_prompt", _read_string(record, "uuid"), payload

    usage = message.get("usage")
    usage = usage if isinstance(usage, dict) else {}
    input_tokens = _read_number(usage, "input_tokens")
    if input_tokens is not None:
        payload["input_tokens"] = input_tokens
    output_tokens = _read_number(usage, "output_tokens")
    if output_tokens is not None:
        payload["output_tokens"] = output_tokens

    model = _read_string(message, "model")
    if model is not None:
        payload["model"] = model

    prompt_id = _read_string(record, "prompt_id", "promptId")
    tool_use = _find_block(message.get("content"), "tool_use")
    if tool_use is not None:
        _read_tool_use(tool_use, payload)
        return "api_tool_use", prompt_id, payload

    cache_read_tokens = _read_number(usage, "cache_read_input_tokens")
    if cache_read_tokens is not None:
        payload["cache_read_tokens"] = cache_read_tokens
    response_text = _first_text_block(message.get("content"))
    if response_text is not None:
        payload["response_text"] = response_text
    return "api_response", prompt_id, payload


def _read_tool_use(block: dict[str, Any], payload: TranscriptEventPayload) -> None:
    tool_name = _read_string(block, "name")
    if tool_name is not None:
        payload["tool_name"] = tool_name
    tool_use_id = _read_string(block, "id", "tool_use_id")
    if tool_use_id is not None:
        payload["tool_use_id"] = tool_use_id

    tool_input = block.get("input")
    if not isinstance(tool_input, dict):
        return
    payload["tool_input"] = tool_input
    file_path = _read_string(tool_input, "file_path", "filePath")
    if file_path is not None:
        payload["file_path"] = file_path
    command = _read_string(tool_input, "command", "cmd")
    if command is not None:
        payload["command"] = command


def _find_block(content: Any, block_type: str) -> dict[str, Any] | None:
    if not isinstance(content, list):
        return None
    for block in content:
        if isinstance(block, dict) and block.get("type") == block_type:
            return block
    return None


def _first_text_block(content: Any) -> str | None:
    if not isinstance(content, list):
        return None
    for block in content:
        if isinstance(block, dict):
            text = _read_string(block, "text")
            if text is not None:
                return text
    return None


def _read_number(source: Mapping[str, Any], key: str) -> int | float | None:
    value = source.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value) if "." in value else int(value)
        except ValueError:
            return None
    return None


def _read_string(record: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value:
            return value
    return None
