from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

from agent_trace.core.clock import parse_instant

SCHEMA_VERSION = "1.0"
OTEL_SOURCE_VERSION = "otlp-log-v1"
TRANSCRIPT_SOURCE_VERSION = "claude-jsonl-v1"

EventSource = Literal["hook", "otel", "transcript"]
PrivacyTier = Annotated[int, Field(strict=True, ge=0, le=2)]


def _require_text(value: str) -> str:
    if not value.strip():
        raise PydanticCustomError("empty_string", "must be a non-empty string")
    return value


def _require_instant(value: str) -> str:
    if parse_instant(value) is None:
        raise PydanticCustomError("invalid_timestamp", "must be a valid ISO-8601 timestamp")
    return value


NonEmptyStr = Annotated[str, AfterValidator(_require_text)]
IsoTimestamp = Annotated[str, AfterValidator(_require_instant)]
NonNegativeInt = Annotated[int, Field(ge=0)]
NonNegativeFloat = Annotated[float, Field(ge=0)]


class WireModel(BaseModel):
    """Immutable value parsed from untrusted producer input.

    Fields are snake_case in Python and camelCase on the wire. Strict mode keeps
    producers from smuggling numbers in as strings (and vice versa).
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        strict=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class EventEnvelope(WireModel):
    schema_version: NonEmptyStr = SCHEMA_VERSION
    source: EventSource
    source_version: NonEmptyStr | None = None
    event_id: NonEmptyStr
    session_id: NonEmptyStr
    prompt_id: NonEmptyStr | None = None
    event_type: NonEmptyStr
    event_timestamp: IsoTimestamp
    ingested_at: IsoTimestamp
    privacy_tier: PrivacyTier
    payload: dict[str, Any]
    attributes: dict[str, NonEmptyStr] | None = None


class TimelineTokens(WireModel):
    input: NonNegativeInt
    output: NonNegativeInt
    cache_read: NonNegativeInt | None = None
    cache_write: NonNegativeInt | None = None


class TimelineEvent(WireModel):
    id: NonEmptyStr
    type: NonEmptyStr
    timestamp: IsoTimestamp
    prompt_id: NonEmptyStr | None = None
    group: NonEmptyStr | None = None
    status: NonEmptyStr | None = None
    cost_usd: NonNegativeFloat | None = None
    tokens: TimelineTokens | None = None
    details: dict[str, Any] | None = None


class SessionMetrics(WireModel):
    prompt_count: NonNegativeInt
    api_call_count: NonNegativeInt = 0
    tool_call_count: NonNegativeInt
    total_cost_usd: NonNegativeFloat
    total_input_tokens: NonNegativeInt = 0
    total_output_tokens: NonNegativeInt = 0
    total_cache_read_tokens: NonNegativeInt = 0
    total_cache_write_tokens: NonNegativeInt = 0
    lines_added: NonNegativeInt = 0
    lines_removed: NonNegativeInt = 0
    files_touched: list[NonEmptyStr]
    models_used: list[NonEmptyStr] = Field(default_factory=list)
    tools_used: list[NonEmptyStr] = Field(default_factory=list)


class CommitInfo(WireModel):
    sha: NonEmptyStr
    prompt_id: NonEmptyStr | None = None
    message: NonEmptyStr | None = None
    lines_added: NonNegativeInt | None = None
    lines_removed: NonNegativeInt | None = None
    committed_at: IsoTimestamp | None = None


class PullRequestInfo(WireModel):
    repo: NonEmptyStr
    pr_number: Annotated[int, Field(gt=0)]
    state: NonEmptyStr
    merged_at: IsoTimestamp | None = None
    url: NonEmptyStr | None = None


class SessionGit(WireModel):
    repo: NonEmptyStr | None = None
    branch: NonEmptyStr | None = None
    commits: list[CommitInfo] = Field(default_factory=list)
    pull_requests: list[PullRequestInfo]


class SessionTrace(WireModel):
    session_id: NonEmptyStr
    agent_type: NonEmptyStr = "claude_code"
    started_at: IsoTimestamp | None = None
    ended_at: IsoTimestamp | None = None
    active_duration_ms: NonNegativeInt = 0
    git: SessionGit
    metrics: SessionMetrics
    timeline: list[TimelineEvent]
