from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException

from agent_trace.api.collector import collector_http_exception_handler
from agent_trace.api.collector import router as collector_router
from agent_trace.core.config import settings
from agent_trace.core.logging import configure_logging, logger
from agent_trace.models.collector import AcceptedEventProcessor
from agent_trace.models.events import EventEnvelope
from agent_trace.services.collector.envelope_service import EnvelopeCollectorService

configure_logging()


def create_application(
    *,
    processor: AcceptedEventProcessor[EventEnvelope] | None = None,
    on_accepted_event: Callable[[EventEnvelope], Any] | None = None,
    enable_transcript_ingestion: bool | None = None,
    default_privacy_tier: int | None = None,
) -> FastAPI:
    collector = EnvelopeCollectorService(
        processor=processor,
        on_accepted_event=on_accepted_event,
        enable_transcript_ingestion=(
            settings.enable_transcript_ingestion
            if enable_transcript_ingestion is None
            else enable_transcript_ingestion
        ),
        default_privacy_tier=default_privacy_tier,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "collector_started",
            http_address=settings.http_address,
            otel_grpc_address=settings.otel_grpc_address,
        )
        yield
        drained = await asyncio.to_thread(
            collector.wait_for_processing, settings.processing_drain_timeout_seconds
        )
        await asyncio.to_thread(collector.close, settings.processing_drain_timeout_seconds)
        logger.info(
            "collector_stopped",
            drained=drained,
            processing=collector.get_processing_stats().to_wire(),
        )

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.collector = collector
    app.include_router(collector_router)
    app.add_exception_handler(StarletteHTTPException, collector_http_exception_handler)
    return app


app = create_application()
