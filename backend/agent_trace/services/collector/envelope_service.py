from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

from agent_trace.core.config import settings
from agent_trace.core.contracts import validate_event_envelope
from agent_trace.core.logging import logger
from agent_trace.models.collector import (
    AcceptedEventProcessor,
    CollectorHandlerDependencies,
    CollectorRequest,
    CollectorResponse,
    IngestResult,
    OtelIngestionSink,
    ProcessingStats,
    RawCollectorRequest,
    TranscriptIngestionSink,
    now_ms,
)
from agent_trace.models.events import EventEnvelope
from agent_trace.models.results import OtelNormalizeResult, ValidationFailure, ValidationResult, ValidationSuccess
from agent_trace.services.collector.service import CollectorService
from agent_trace.services.collector.store import InMemoryCollectorStore
from agent_trace.services.collector.transcript_ingestion import TranscriptIngestionProcessor
from agent_trace.services.normalization.git import enrich_with_git_metadata
from agent_trace.services.normalization.otel import normalize_otel_export


class _SequentialProcessor:
    def __init__(self, processors: Sequence[AcceptedEventProcessor[EventEnvelope]]) -> None:
        self._processors = list(processors)

    async def process_accepted_event(self, event: EventEnvelope) -> None:
        for processor in self._processors:
            await processor.process_accepted_event(event)


class _OtelSink:
    def __init__(self, owner: EnvelopeCollectorService) -> None:
        self._owner = owner

    async def ingest_otel_events(self, events: Sequence[EventEnvelope]) -> list[IngestResult]:
        return await self._owner.ingest_events(events)


class _TranscriptSink:
    def __init__(self, owner: EnvelopeCollectorService) -> None:
        self._owner = owner

    async def ingest_transcript_events(self, events: Sequence[EventEnvelope]) -> list[IngestResult]:
        return await self._owner.ingest_events(events)


class EnvelopeCollectorService:
    """Collector wired for canonical event envelopes from all three producers."""

    def __init__(
        self,
        *,
        started_at_ms: int | None = None,
        on_accepted_event: Callable[[EventEnvelope], Any] | None = None,
        processor: AcceptedEventProcessor[EventEnvelope] | None = None,
        enable_transcript_ingestion: bool = True,
        default_privacy_tier: int | None = None,
    ) -> None:
        self.store: InMemoryCollectorStore[EventEnvelope] = InMemoryCollectorStore()
        self.otel_sink: OtelIngestionSink = _OtelSink(self)
        self.transcript_sink: TranscriptIngestionSink = _TranscriptSink(self)
        self._default_privacy_tier = (
            settings.default_privacy_tier if default_privacy_tier is None else default_privacy_tier
        )

        processors: list[AcceptedEventProcessor[EventEnvelope]] = []
        if enable_transcript_ingestion:
            processors.append(TranscriptIngestionProcessor(sink=self.transcript_sink))
        if processor is not None:
            processors.append(processor)

        dependencies = CollectorHandlerDependencies(
            validate_event=_validate_hook_event,
            get_event_id=_event_id,
            store=self.store,
            started_at_ms=now_ms() if started_at_ms is None else started_at_ms,
            on_accepted_event=on_accepted_event,
        )
        self._service = CollectorService(
            dependencies=dependencies,
            processor=_SequentialProcessor(processors) if processors else None,
        )

    @property
    def dependencies(self) -> CollectorHandlerDependencies[EventEnvelope]:
        return self._service.dependencies

    def handle(self, request: CollectorRequest) -> CollectorResponse:
        return self._service.handle(request)

    def handle_raw(self, request: RawCollectorRequest) -> CollectorResponse:
        return self._service.handle_raw(request)

    async def ingest_events(self, events: Sequence[EventEnvelope]) -> list[IngestResult]:
        return [self._service.ingest_event(event) for event in events]

    async def ingest_otel_export(
        self,
        payload: Any,
        *,
        privacy_tier: int | None = None,
        ingested_at: str | None = None,
    ) -> tuple[OtelNormalizeResult, list[IngestResult]]:
        result = normalize_otel_export(
            payload,
            privacy_tier=self._default_privacy_tier if privacy_tier is None else privacy_tier,
            ingested_at=ingested_at,
        )
        if not result.ok:
            logger.warning(
                "otel_export_partially_rejected",
                dropped_records=result.dropped_records,
                accepted_records=len(result.events),
                errors=list(result.errors[:5]),
            )
        ingested = await self.otel_sink.ingest_otel_events(result.events)
        return result, ingested

    def get_processing_stats(self) -> ProcessingStats:
        return self._service.get_processing_stats()

    def wait_for_processing(self, timeout: float | None = None) -> bool:
        return self._service.wait_for_processing(timeout)

    def close(self, timeout: float | None = None) -> None:
        self._service.close(timeout)


def _event_id(event: EventEnvelope) -> str:
    return event.event_id


def _validate_hook_event(payload: Any) -> ValidationResult[EventEnvelope]:
    validation = validate_event_envelope(payload)
    if isinstance(validation, ValidationFailure):
        return validation
    return ValidationSuccess(enrich_with_git_metadata(validation.value))
