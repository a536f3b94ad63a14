from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable
from functools import partial
from threading import Thread
from typing import Any, TypeVar
from urllib.parse import urlsplit

import orjson

from agent_trace.core.logging import logger
from agent_trace.models.collector import (
    SUPPORTED_METHODS,
    CollectorHandlerDependencies,
    CollectorRequest,
    CollectorResponse,
    RawCollectorRequest,
)
from agent_trace.models.results import ValidationFailure

EventT = TypeVar("EventT")

HEALTH_PATH = "/health"
HOOKS_PATH = "/v1/hooks"
HOOK_STATS_PATH = "/v1/hooks/stats"

_hook_tasks: set[asyncio.Task[None]] = set()


def _error_payload(message: str, errors: tuple[str, ...] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"status": "error", "message": message}
    if errors is not None:
        payload["errors"] = list(errors)
    return payload


def _health_payload(dependencies: CollectorHandlerDependencies[Any]) -> dict[str, Any]:
    uptime_ms = max(dependencies.clock_ms() - dependencies.started_at_ms, 0)
    return {"status": "ok", "service": "collector", "uptimeSec": uptime_ms // 1000}


def handle_collector_request(
    request: CollectorRequest,
    dependencies: CollectorHandlerDependencies[EventT],
) -> CollectorResponse:
    if request.method == "GET" and request.url == HEALTH_PATH:
        return CollectorResponse(200, _health_payload(dependencies))

    if request.method == "GET" and request.url == HOOK_STATS_PATH:
        stats = dependencies.store.get_stats()
        return CollectorResponse(200, {"status": "ok", "stats": stats.to_wire()})

    if request.method == "POST" and request.url == HOOKS_PATH:
        return _ingest_hook_event(request.body, dependencies)

    return CollectorResponse(404, _error_payload("not found"))


def _ingest_hook_event(body: Any, dependencies: CollectorHandlerDependencies[EventT]) -> CollectorResponse:
    validation = dependencies.validate_event(body)
    if isinstance(validation, ValidationFailure):
        return CollectorResponse(400, _error_payload("invalid event payload", validation.errors))

    event = validation.value
    event_id = dependencies.get_event_id(event)
    ingest = dependencies.store.ingest(event, event_id)
    response = CollectorResponse(
        202,
        {"status": "accepted", "accepted": ingest.accepted, "deduped": ingest.deduped},
    )

    if ingest.accepted and dependencies.on_accepted_event is not None:
        try:
            outcome = dependencies.on_accepted_event(event)
        except Exception as exc:
            _log_hook_failure(event_id, exc)
        else:
            if inspect.isawaitable(outcome):
                _schedule_hook(outcome, event_id)
    return response


def _schedule_hook(outcome: Awaitable[Any], event_id: str) -> None:
    """Run an async accept hook without waiting for it.

    Inside a running loop it becomes a task on that loop; otherwise it runs on
    its own loop in a daemon thread.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        Thread(target=_run_detached, args=(outcome, event_id), daemon=True).start()
        return

    task = loop.create_task(_await(outcome))
    _hook_tasks.add(task)
    task.add_done_callback(partial(_on_hook_done, event_id))


async def _await(outcome: Awaitable[Any]) -> None:
    await outcome


def _run_detached(outcome: Awaitable[Any], event_id: str) -> None:
    try:
        asyncio.run(_await(outcome))
    except Exception as exc:
        _log_hook_failure(event_id, exc)


def _on_hook_done(event_id: str, task: asyncio.Task[None]) -> None:
    _hook_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if isinstance(error, Exception):
        _log_hook_failure(event_id, error)


def _log_hook_failure(event_id: str, error: Exception) -> None:
    logger.warning(
        "collector_accepted_hook_failed",
        event_id=event_id,
        error_type=type(error).__name__,
        error_message=str(error),
    )


def handle_raw_collector_request(
    request: RawCollectorRequest,
    dependencies: CollectorHandlerDependencies[EventT],
) -> CollectorResponse:
    """Gate the verb, parse the JSON body, then delegate to the handler."""
    method = request.method.upper()
    if method not in SUPPORTED_METHODS:
        return CollectorResponse(405, _error_payload("method not allowed"))

    path = urlsplit(request.url).path or request.url
    if method == "POST" and path == HOOKS_PATH:
        raw_body = request.raw_body or ""
        body: Any = None
        if raw_body.strip():
            try:
                body = orjson.loads(raw_body)
            except orjson.JSONDecodeError:
                return CollectorResponse(400, _error_payload("invalid JSON body"))
        return handle_collector_request(CollectorRequest(method, path, body), dependencies)

    return handle_collector_request(CollectorRequest(method, path), dependencies)
