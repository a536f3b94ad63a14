"""Well-known payload keys per producer.

Envelope payloads stay open string-keyed maps; these declarations only name the
keys each normalizer is known to write so consumers can read them with some
type safety. Any other key may still be present.
"""

from __future__ import annotations

from typing import Any, TypedDict


class OtelEventPayload(TypedDict, total=False):
    body: str
    severity_text: str
    severity_number: int | float
    session_id: str
    prompt_id: str
    event_type: str


class TranscriptEventPayload(TypedDict, total=False):
    prompt_text: str
    response_text: str
    model: str
    input_tokens: int | float
    output_tokens: int | float
    cache_read_tokens: int | float
    tool_name: str
    tool_use_id: str
    tool_input: dict[str, Any]
    file_path: str
    command: str
    uuid: str
    project_path: str
    git_branch: str
    request_id: str
