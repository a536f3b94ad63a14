from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from agent_trace.main import create_application
from agent_trace.services.collector.envelope_service import EnvelopeCollectorService


@pytest.fixture()
def client() -> Iterator[TestClient]:
    app = create_application(enable_transcript_ingestion=True, default_privacy_tier=1)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def envelope_service() -> Iterator[EnvelopeCollectorService]:
    service = EnvelopeCollectorService()
    yield service
    service.close(timeout=2.0)
