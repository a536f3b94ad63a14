from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

from agent_trace.models.events import EventEnvelope
from agent_trace.models.results import ValidationResult

EventT = TypeVar("EventT")
EventT_contra = TypeVar("EventT_contra", contravariant=True)

SUPPORTED_METHODS = frozenset({"GET", "POST"})


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CollectorRequest:
    method: str
    url: str
    body: Any = None


@dataclass(frozen=True)
class RawCollectorRequest:
    method: str
    url: str
    raw_body: str | None = None


@dataclass(frozen=True)
class CollectorResponse:
    status_code: int
    payload: dict[str, Any]


@dataclass(frozen=True)
class IngestResult:
    accepted: bool
    deduped: bool


@dataclass(frozen=True)
class CollectorStats:
    stored_events: int
    deduped_events: int

    def to_wire(self) -> dict[str, int]:
        return {"storedEvents": self.stored_events, "dedupedEvents": self.deduped_events}


@dataclass(frozen=True)
class ProcessingStats:
    accepted_events: int
    processing_failures: int
    last_processing_failure: str | None = None

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {
            "acceptedEvents": self.accepted_events,
            "processingFailures": self.processing_failures,
        }
        if self.last_processing_failure is not None:
            wire["lastProcessingFailure"] = self.last_processing_failure
        return wire


class CollectorEventStore(Protocol[EventT]):
    """Dedup store capability keyed by event id."""

    def has(self, event_id: str) -> bool: ...

    def put(self, event: EventT, event_id: str) -> None: ...

    def ingest(self, event: EventT, event_id: str) -> IngestResult: ...

    def get_stats(self) -> CollectorStats: ...

    def clear(self) -> None: ...


class AcceptedEventProcessor(Protocol[EventT_contra]):
    def process_accepted_event(self, event: EventT_contra) -> Awaitable[None]: ...


class TranscriptIngestionSink(Protocol):
    def ingest_transcript_events(self, events: Sequence[EventEnvelope]) -> Awaitable[Any]: ...


class OtelIngestionSink(Protocol):
    def ingest_otel_events(self, events: Sequence[EventEnvelope]) -> Awaitable[Any]: ...


@dataclass(frozen=True)
class CollectorHandlerDependencies(Generic[EventT]):
    """Capabilities injected into the request handler.

    ``on_accepted_event`` runs only for first-seen events, after the response
    value is built. It must not block; exceptions it raises are logged and
    dropped.
    """

    validate_event: Callable[[Any], ValidationResult[EventT]]
    get_event_id: Callable[[EventT], str]
    store: CollectorEventStore[EventT]
    started_at_ms: int
    on_accepted_event: Callable[[EventT], Any] | None = None
    clock_ms: Callable[[], int] = now_ms
