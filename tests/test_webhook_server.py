"""Tests for webhooks/server.py using FastAPI's TestClient."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from hubcore.webhooks.ingestor import WebhookIngestor
from hubcore.webhooks.server import create_webhook_app

from tests.webhook_helpers import SECRET, delivery


@pytest.fixture
def handler() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def client(handler: AsyncMock) -> TestClient:
    ingestor = WebhookIngestor(SECRET, handlers={"issues": handler})
    return TestClient(create_webhook_app(ingestor))


class TestWebhookEndpoint:
    def test_processed_then_duplicate(self, client: TestClient, handler: AsyncMock) -> None:
        body, headers = delivery("issues")

        response = client.post("/webhooks/github", content=body, headers=headers)
        assert response.status_code == 200
        assert response.json() == {"status": "processed"}

        response = client.post("/webhooks/github", content=body, headers=headers)
        assert response.status_code == 200
        assert response.json() == {"status": "duplicate"}
        assert handler.await_count == 1

    def test_ignored_event(self, client: TestClient) -> None:
        body, headers = delivery("fork", {"forkee": {"id": 1}})
        response = client.post("/webhooks/github", content=body, headers=headers)
        assert response.json() == {"status": "ignored"}

    def test_bad_signature_is_401(self, client: TestClient, handler: AsyncMock) -> None:
        body, headers = delivery("issues", secret="wrong-secret-value")
        response = client.post("/webhooks/github", content=body, headers=headers)
        assert response.status_code == 401
        handler.assert_not_awaited()

    def test_bad_delivery_id_is_400(self, client: TestClient) -> None:
        body, headers = delivery("issues", delivery_id="not-a-uuid")
        response = client.post("/webhooks/github", content=body, headers=headers)
        assert response.status_code == 400

    def test_empty_body_is_400(self, client: TestClient) -> None:
        _, headers = delivery("issues")
        response = client.post("/webhooks/github", content=b"", headers=headers)
        assert response.status_code == 400

    def test_handler_failure_is_500(self, client: TestClient, handler: AsyncMock) -> None:
        handler.side_effect = RuntimeError("boom")
        body, headers = delivery("issues")
        response = client.post("/webhooks/github", content=body, headers=headers)
        assert response.status_code == 500
        assert "Handler for issues event failed" in response.json()["detail"]


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["registered_events"] == ["issues"]
        assert data["processed_count"] == 0
