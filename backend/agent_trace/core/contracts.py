from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from agent_trace.models.events import EventEnvelope, SessionTrace
from agent_trace.models.results import ValidationFailure, ValidationResult, ValidationSuccess

ModelT = TypeVar("ModelT", bound=BaseModel)


def validate_event_envelope(payload: Any) -> ValidationResult[EventEnvelope]:
    """Validate an untrusted producer payload as a canonical event envelope.

    Never raises. On failure every violation is reported, one
    ``<fieldPath>: <problem>`` string each.
    """
    return _validate(EventEnvelope, payload, root="event")


def validate_session_trace(payload: Any) -> ValidationResult[SessionTrace]:
    return _validate(SessionTrace, payload, root="sessionTrace")


def _validate(model: type[ModelT], payload: Any, *, root: str) -> ValidationResult[ModelT]:
    if not isinstance(payload, Mapping):
        return ValidationFailure(errors=(f"{root}: must be an object",))

    try:
        value = model.model_validate(dict(payload))
    except ValidationError as exc:
        return ValidationFailure(errors=tuple(_format_error(error, root) for error in exc.errors()))
    return ValidationSuccess(value)


def _format_error(error: Mapping[str, Any], root: str) -> str:
    message = error["msg"]
    if error["type"] == "missing":
        message = "is required"
    return f"{_field_path(error['loc']) or root}: {message}"


def _field_path(loc: tuple[int | str, ...]) -> str:
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        elif path:
            path += f".{part}"
        else:
            path = str(part)
    return path
