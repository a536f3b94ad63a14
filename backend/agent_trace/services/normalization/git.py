from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from agent_trace.models.events import EventEnvelope

GIT_ENRICHED_ATTRIBUTE = "git_enriched"

_COMMAND_KEYS = ("command", "bash_command", "bashCommand")
_STDOUT_KEYS = ("stdout", "output")
_TOOL_NAME_KEYS = ("tool_name", "toolName")
_GIT_METADATA_KEYS = ("commit_sha", "commitSha", "commit_message", "commitMessage", "git_branch", "gitBranch")

_COMMIT_MESSAGE_RE = re.compile(r"""(?:^|\s)-m\s+["']([^"']+)["']""")
_COMMIT_SHA_RE = re.compile(r"\b[0-9a-f]{7,40}\b", re.IGNORECASE)
_NEW_BRANCH_RES = (
    re.compile(r"git\s+checkout\s+-b\s+(\S+)"),
    re.compile(r"git\s+switch\s+-c\s+(\S+)"),
)


def enrich_with_git_metadata(event: EventEnvelope) -> EventEnvelope:
    """Infer commit sha, commit message and new branch from a Bash git hook event.

    Only hook events for the Bash tool whose command starts with ``git `` are
    considered, and only when the payload carries no git fields yet. The
    event is returned unchanged when nothing can be inferred.
    """
    if event.source != "hook":
        return event

    payload = event.payload
    tool_name = _read_string(payload, *_TOOL_NAME_KEYS)
    if tool_name is None or tool_name.lower() != "bash":
        return event

    command = _pick_command(payload)
    if command is None or not command.strip().startswith("git "):
        return event
    if _read_string(payload, *_GIT_METADATA_KEYS) is not None:
        return event

    inferred: dict[str, str] = {}
    sha = _COMMIT_SHA_RE.search(_read_string(payload, *_STDOUT_KEYS) or "")
    if sha is not None:
        inferred["commit_sha"] = sha.group(0).lower()
    message = _COMMIT_MESSAGE_RE.search(command)
    if message is not None:
        inferred["commit_message"] = message.group(1)
    branch = _parse_branch(command)
    if branch is not None:
        inferred["git_branch"] = branch

    if not inferred:
        return event
    return event.model_copy(
        update={
            "payload": {**payload, **inferred},
            "attributes": {**(event.attributes or {}), GIT_ENRICHED_ATTRIBUTE: "1"},
        }
    )


def _pick_command(payload: Mapping[str, Any]) -> str | None:
    command = _read_string(payload, *_COMMAND_KEYS)
    if command is not None:
        return command
    tool_input = payload.get("tool_input")
    if isinstance(tool_input, Mapping):
        return _read_string(tool_input, "command")
    return None


def _parse_branch(command: str) -> str | None:
    for pattern in _NEW_BRANCH_RES:
        match = pattern.search(command)
        if match is not None:
            return match.group(1)
    return None


def _read_string(values: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = values.get(key)
        if isinstance(value, str) and value:
            return value
    return None
