from __future__ import annotations

from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient

from agent_trace.main import create_application
from agent_trace.models.collector import CollectorRequest
from tests.helpers.envelopes import make_envelope, write_transcript


def _otel_record(session_id: str | None, event_type: str | None) -> dict[str, Any]:
    attributes = []
    if session_id is not None:
        attributes.append({"key": "session.id", "value": {"stringValue": session_id}})
    if event_type is not None:
        attributes.append({"key": "event.name", "value": {"stringValue": event_type}})
    return {"timeUnixNano": "1771841400000000000", "attributes": attributes}


def _otel_export(*records: dict[str, Any]) -> dict[str, Any]:
    return {"resourceLogs": [{"scopeLogs": [{"logRecords": list(records)}]}]}


def test_post_hook_event_then_read_stats(client: TestClient) -> None:
    first = client.post("/v1/hooks", json=make_envelope())
    repeat = client.post("/v1/hooks", json=make_envelope())
    stats = client.get("/v1/hooks/stats")

    assert first.status_code == 202
    assert first.json() == {"status": "accepted", "accepted": True, "deduped": False}
    assert repeat.json() == {"status": "accepted", "accepted": False, "deduped": True}
    assert stats.status_code == 200
    assert stats.json() == {"status": "ok", "stats": {"storedEvents": 1, "dedupedEvents": 1}}


def test_invalid_hook_event_returns_field_errors(client: TestClient) -> None:
    response = client.post("/v1/hooks", json=make_envelope(eventTimestamp="not-a-time", privacyTier="1"))

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "invalid event payload"
    assert any(error.startswith("eventTimestamp:") for error in body["errors"])
    assert any(error.startswith("privacyTier:") for error in body["errors"])


def test_malformed_json_body_is_rejected(client: TestClient) -> None:
    response = client.post(
        "/v1/hooks",
        content=b'{"eventId": "evt_001",',
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"status": "error", "message": "invalid JSON body"}


def test_unsupported_method_and_unknown_path(client: TestClient) -> None:
    put = client.put("/v1/hooks", json=make_envelope())
    missing = client.get("/v1/sessions")

    assert put.status_code == 405
    assert put.json()["message"] == "method not allowed"
    for method in ("TRACE", "PROPFIND"):
        response = client.request(method, "/v1/hooks")
        assert response.status_code == 405
        assert response.json() == {"status": "error", "message": "method not allowed"}
    assert client.head("/health").status_code == 405
    assert missing.status_code == 404
    assert missing.json() == {"status": "error", "message": "not found"}


def test_otel_logs_export_reports_partial_success(client: TestClient) -> None:
    payload = _otel_export(
        _otel_record("sess_otel", "api_request"),
        _otel_record(None, None),
    )

    response = client.post("/v1/logs", json=payload)
    repeat = client.post("/v1/logs", json=payload)

    assert response.status_code == 200
    body = response.json()
    assert body["acceptedEvents"] == 1
    assert body["dedupedEvents"] == 0
    assert body["partialSuccess"] == {
        "rejectedLogRecords": 1,
        "errorMessage": "log record 2: missing session id and event type",
    }
    assert repeat.json()["dedupedEvents"] == 1


def test_otel_logs_without_records_are_rejected(client: TestClient) -> None:
    response = client.post("/v1/logs", json={"resourceLogs": []})
    malformed = client.post("/v1/logs", content=b"{", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert response.json()["message"] == "payload does not contain OTEL log records"
    assert malformed.status_code == 400
    assert malformed.json()["message"] == "invalid JSON body"


def test_session_end_pulls_in_the_transcript(client: TestClient, tmp_path: Path) -> None:
    transcript = write_transcript(
        tmp_path / "session.jsonl",
        {"type": "user", "uuid": "u-1", "message": {"role": "user", "content": "ship it"}},
        {
            "type": "assistant",
            "uuid": "a-1",
            "message": {"role": "assistant", "content": [{"type": "text", "text": "Shipped."}]},
        },
    )

    response = client.post(
        "/v1/hooks",
        json=make_envelope(eventType="SessionEnd", payload={"transcript_path": str(transcript)}),
    )
    collector = client.app.state.collector
    assert collector.wait_for_processing(timeout=5.0) is True

    assert response.status_code == 202
    assert client.get("/v1/hooks/stats").json()["stats"]["storedEvents"] == 3
    assert collector.get_processing_stats().accepted_events == 3


def test_shutdown_drains_and_closes_the_collector() -> None:
    app = create_application(enable_transcript_ingestion=False)
    with TestClient(app) as test_client:
        assert test_client.post("/v1/hooks", json=make_envelope()).status_code == 202
    collector = app.state.collector

    assert collector.get_processing_stats().accepted_events == 1
    collector.handle(CollectorRequest("POST", "/v1/hooks", make_envelope(eventId="evt_late")))
    assert collector.get_processing_stats().last_processing_failure == (
        "DispatcherClosedError: dispatcher is closed"
    )


def test_bash_git_hook_events_are_stored_enriched(client: TestClient) -> None:
    envelope = make_envelope(
        payload={
            "tool_name": "Bash",
            "command": 'git commit -m "feat: add login"',
            "stdout": "[main 9f8e7d6] feat: add login",
        }
    )

    assert client.post("/v1/hooks", json=envelope).status_code == 202

    stored = client.app.state.collector.store.get("evt_001")
    assert stored.payload["commit_sha"] == "9f8e7d6"
    assert stored.payload["commit_message"] == "feat: add login"
    assert stored.attributes == {"git_enriched": "1"}
