from fastapi.testclient import TestClient


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.json()["service"] == "collector"
    assert resp.json()["uptimeSec"] >= 0


def test_health_ignores_query_string(client: TestClient) -> None:
    resp = client.get("/health?probe=liveness")
    assert resp.status_code == 200
