from __future__ import annotations

from threading import RLock
from typing import Generic, TypeVar

from agent_trace.models.collector import CollectorStats, IngestResult

EventT = TypeVar("EventT")


class InMemoryCollectorStore(Generic[EventT]):
    """Thread-safe in-memory dedup store keyed by event id.

    ``ingest`` holds the lock across the seen-check and the insert, so two
    concurrent deliveries of one id yield exactly one acceptance.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._events: dict[str, EventT] = {}
        self._deduped_events = 0

    def has(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self._events

    def put(self, event: EventT, event_id: str) -> None:
        with self._lock:
            self._events[event_id] = event

    def get(self, event_id: str) -> EventT | None:
        with self._lock:
            return self._events.get(event_id)

    def ingest(self, event: EventT, event_id: str) -> IngestResult:
        with self._lock:
            if self.has(event_id):
                self._deduped_events += 1
                return IngestResult(accepted=False, deduped=True)
            self.put(event, event_id)
            return IngestResult(accepted=True, deduped=False)

    @property
    def stored_events(self) -> int:
        with self._lock:
            return len(self._events)

    @property
    def deduped_events(self) -> int:
        with self._lock:
            return self._deduped_events

    def get_stats(self) -> CollectorStats:
        with self._lock:
            return CollectorStats(stored_events=len(self._events), deduped_events=self._deduped_events)

    def list_events(self) -> list[EventT]:
        with self._lock:
            return list(self._events.values())

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._deduped_events = 0
