from __future__ import annotations

import asyncio
import inspect
from dataclasses import replace
from threading import Lock
from typing import Any, Generic, TypeVar

from agent_trace.core.logging import logger
from agent_trace.models.collector import (
    AcceptedEventProcessor,
    CollectorHandlerDependencies,
    CollectorRequest,
    CollectorResponse,
    IngestResult,
    ProcessingStats,
    RawCollectorRequest,
)
from agent_trace.services.collector.dispatch import AcceptedEventDispatcher, DispatcherClosedError
from agent_trace.services.collector.handler import handle_collector_request, handle_raw_collector_request

EventT = TypeVar("EventT")


class CollectorService(Generic[EventT]):
    """Request handler plus asynchronous hand-off of first-seen events.

    Every first-seen acceptance is counted and dispatched to the caller's
    ``on_accepted_event`` hook and the processor concurrently. Failures are
    counted and logged; they never reach the request path.
    """

    def __init__(
        self,
        *,
        dependencies: CollectorHandlerDependencies[EventT],
        processor: AcceptedEventProcessor[EventT] | None = None,
    ) -> None:
        self._base_on_accepted_event = dependencies.on_accepted_event
        self._processor = processor
        self._lock = Lock()
        self._accepted_events = 0
        self._processing_failures = 0
        self._last_processing_failure: str | None = None
        self._dispatcher = AcceptedEventDispatcher(on_failure=self._record_failure)
        self.dependencies = replace(dependencies, on_accepted_event=self._on_accepted_event)

    def handle(self, request: CollectorRequest) -> CollectorResponse:
        return handle_collector_request(request, self.dependencies)

    def handle_raw(self, request: RawCollectorRequest) -> CollectorResponse:
        return handle_raw_collector_request(request, self.dependencies)

    def ingest_event(self, event: EventT) -> IngestResult:
        """Ingest an already-validated event, bypassing request parsing."""
        ingest = self.dependencies.store.ingest(event, self.dependencies.get_event_id(event))
        if ingest.accepted:
            self._on_accepted_event(event)
        return ingest

    def get_processing_stats(self) -> ProcessingStats:
        with self._lock:
            return ProcessingStats(
                accepted_events=self._accepted_events,
                processing_failures=self._processing_failures,
                last_processing_failure=self._last_processing_failure,
            )

    def wait_for_processing(self, timeout: float | None = None) -> bool:
        return self._dispatcher.wait_idle(timeout)

    def close(self, timeout: float | None = None) -> None:
        self._dispatcher.close(timeout)

    def _on_accepted_event(self, event: EventT) -> None:
        try:
            self._dispatcher.submit(lambda: self._process(event))
        except DispatcherClosedError as exc:
            self._record_failure(exc)
            return
        with self._lock:
            self._accepted_events += 1

    async def _process(self, event: EventT) -> None:
        jobs = []
        if self._base_on_accepted_event is not None:
            jobs.append(_as_awaitable(self._base_on_accepted_event, event))
        if self._processor is not None:
            jobs.append(_as_awaitable(self._processor.process_accepted_event, event))
        outcomes = await asyncio.gather(*jobs, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                self._record_failure(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome

    def _record_failure(self, error: BaseException) -> None:
        description = f"{type(error).__name__}: {error}"
        with self._lock:
            self._processing_failures += 1
            self._last_processing_failure = description
        logger.warning(
            "collector_processing_failed",
            error_type=type(error).__name__,
            error_message=str(error),
        )


async def _as_awaitable(callback: Any, event: Any) -> None:
    result = callback(event)
    if inspect.isawaitable(result):
        await result
