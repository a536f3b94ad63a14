from __future__ import annotations

import orjson
from fastapi import APIRouter, Request, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from agent_trace.models.collector import RawCollectorRequest
from agent_trace.services.collector.envelope_service import EnvelopeCollectorService

router = APIRouter(tags=["collector"])

_FORWARDED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "CONNECT"]


def _collector(request: Request) -> EnvelopeCollectorService:
    return request.app.state.collector


@router.post("/v1/logs")
async def export_otel_logs(request: Request) -> JSONResponse:
    """OTLP/HTTP JSON log export."""
    try:
        payload = orjson.loads(await request.body())
    except orjson.JSONDecodeError:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"status": "error", "message": "invalid JSON body"},
        )

    result, ingested = await _collector(request).ingest_otel_export(payload)
    if not result.events and not result.ok:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"status": "error", "message": result.errors[0], "errors": list(result.errors)},
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "partialSuccess": {
                "rejectedLogRecords": result.dropped_records,
                "errorMessage": "; ".join(result.errors),
            },
            "acceptedEvents": sum(1 for item in ingested if item.accepted),
            "dedupedEvents": sum(1 for item in ingested if item.deduped),
        },
    )


@router.api_route("/{path:path}", methods=_FORWARDED_METHODS)
async def forward_to_collector(path: str, request: Request) -> JSONResponse:
    del path
    raw_body = (await request.body()).decode("utf-8", errors="replace") if request.method == "POST" else None
    url = request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"

    response = _collector(request).handle_raw(
        RawCollectorRequest(method=request.method, url=url, raw_body=raw_body)
    )
    return JSONResponse(status_code=response.status_code, content=response.payload)


async def collector_http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    """Let the collector answer verbs no route declares."""
    if exc.status_code != status.HTTP_405_METHOD_NOT_ALLOWED:
        return await http_exception_handler(request, exc)

    response = _collector(request).handle_raw(RawCollectorRequest(method=request.method, url=request.url.path))
    return JSONResponse(status_code=response.status_code, content=response.payload)
