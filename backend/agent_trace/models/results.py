from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, Literal, TypeVar

from agent_trace.models.events import EventEnvelope

ValueT = TypeVar("ValueT")


@dataclass(frozen=True)
class ValidationSuccess(Generic[ValueT]):
    value: ValueT
    ok: Literal[True] = field(default=True, init=False)
    errors: tuple[str, ...] = field(default=(), init=False)


@dataclass(frozen=True)
class ValidationFailure:
    errors: tuple[str, ...]
    ok: Literal[False] = field(default=False, init=False)


ValidationResult = ValidationSuccess[ValueT] | ValidationFailure


@dataclass(frozen=True)
class OtelNormalizeResult:
    """Outcome of one OTLP export batch.

    ``events`` holds every record that normalized cleanly, even when ``ok`` is
    false; callers ingest them regardless and report ``errors`` separately.
    """

    events: tuple[EventEnvelope, ...] = ()
    dropped_records: int = 0
    errors: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class TranscriptParseResult:
    file_path: str
    parsed_events: tuple[EventEnvelope, ...] = ()
    skipped_lines: int = 0
    errors: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors
