from __future__ import annotations

import os
from collections.abc import Callable, Sequence

from agent_trace.core.logging import logger
from agent_trace.models.collector import TranscriptIngestionSink
from agent_trace.models.events import EventEnvelope
from agent_trace.services.normalization.transcript import parse_transcript_jsonl

TRANSCRIPT_TRIGGER_EVENT_TYPES = frozenset(
    {"session_end", "sessionend", "stop", "task_completed", "taskcompleted"}
)
_HOME_PREFIXES = ("~/", "$HOME/", "${HOME}/")


def should_ingest_transcript(event_type: str) -> bool:
    return event_type.lower() in TRANSCRIPT_TRIGGER_EVENT_TYPES


def resolve_transcript_path(file_path: str) -> str:
    home = os.path.expanduser("~")
    if file_path == "~":
        return home
    for prefix in _HOME_PREFIXES:
        if file_path.startswith(prefix):
            return os.path.join(home, file_path[len(prefix) :])
    return file_path


class TranscriptIngestionProcessor:
    """Parses the session transcript when a session-ending hook event arrives."""

    def __init__(
        self,
        *,
        sink: TranscriptIngestionSink,
        on_parse_errors: Callable[[Sequence[str]], None] | None = None,
    ) -> None:
        self._sink = sink
        self._on_parse_errors = on_parse_errors

    async def process_accepted_event(self, event: EventEnvelope) -> None:
        if event.source == "transcript" or not should_ingest_transcript(event.event_type):
            return

        transcript_path = event.payload.get("transcript_path") or event.payload.get("transcriptPath")
        if not isinstance(transcript_path, str) or not transcript_path:
            return

        result = parse_transcript_jsonl(
            resolve_transcript_path(transcript_path),
            privacy_tier=event.privacy_tier,
            ingested_at=event.ingested_at,
            session_id_fallback=event.session_id,
        )
        if not result.ok:
            logger.warning(
                "transcript_parse_errors",
                session_id=event.session_id,
                file_path=result.file_path,
                skipped_lines=result.skipped_lines,
                errors=list(result.errors[:5]),
            )
            if self._on_parse_errors is not None:
                self._on_parse_errors(result.errors)

        if result.parsed_events:
            await self._sink.ingest_transcript_events(result.parsed_events)
