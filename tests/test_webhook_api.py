"""Tests for the webhook receiver."""

import sys
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))

from marketplace_connector import WebhookProcessor, WebhookVerifier
from marketplace_connector.webhooks import PROCESSED, InMemoryIdempotencyStore
from server.webhook_api import create_app

SECRET = "whsec_receiver_secret"
PAYLOAD = '{"status":"complete"}'


@pytest.fixture
def processor():
    return WebhookProcessor(WebhookVerifier(SECRET), InMemoryIdempotencyStore(), processing_wait=0.01)


@pytest.fixture
def client(processor):
    return TestClient(create_app(processor))


def signed(payload: str = PAYLOAD, timestamp: int | None = None, nonce: str = "n-1"):
    """Body and headers for a correctly signed order event."""
    ts = int(time.time()) if timestamp is None else timestamp
    body = {
        "event_id": "evt-100",
        "order_id": "order-7",
        "type": "order.completed",
        "payload": payload,
    }
    headers = {
        "X-Marketplace-Signature": WebhookVerifier(SECRET).compute_signature(payload, ts, nonce),
        "X-Marketplace-Nonce": nonce,
        "X-Marketplace-Timestamp": str(ts),
    }
    return body, headers


class TestHealth:
    """Health endpoint."""

    def test_health(self, client):
        """Health reports the configured secret."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["checks"]["webhook_secret"] == "ok"


class TestOrderWebhook:
    """POST /v1/webhooks/orders."""

    def test_processes_event(self, client, processor):
        """A signed event reaches its handler."""
        seen = []

        async def handler(event):
            seen.append(event.resource_id)

        processor.register("order.completed", handler)
        body, headers = signed()

        response = client.post("/v1/webhooks/orders", json=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": PROCESSED, "duplicate": False}
        assert seen == ["order-7"]

    def test_replay_is_duplicate(self, client, processor):
        """Redelivery is acknowledged without reprocessing."""
        calls = []

        async def handler(event):
            calls.append(event)

        processor.register("order.completed", handler)
        body, headers = signed()

        client.post("/v1/webhooks/orders", json=body, headers=headers)
        response = client.post("/v1/webhooks/orders", json=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["duplicate"] is True
        assert len(calls) == 1

    def test_object_payload(self, client):
        """Object payloads are verified in compact JSON form."""
        body, headers = signed()
        body["payload"] = {"status": "complete"}

        response = client.post("/v1/webhooks/orders", json=body, headers=headers)

        assert response.status_code == 200

    def test_bad_signature(self, client):
        """A wrong signature is rejected with 401."""
        body, headers = signed()
        headers["X-Marketplace-Signature"] = "0" * 64

        response = client.post("/v1/webhooks/orders", json=body, headers=headers)

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "invalid_request"

    def test_stale_timestamp(self, client):
        """Old events are rejected with 400."""
        body, headers = signed(timestamp=int(time.time()) - 3600)

        response = client.post("/v1/webhooks/orders", json=body, headers=headers)

        assert response.status_code == 400

    @pytest.mark.parametrize(
        "content",
        [b"not json", b"[1, 2]", b'{"event_id": "evt-1"}'],
    )
    def test_malformed(self, client, content):
        """Unparseable or incomplete bodies get 400."""
        response = client.post(
            "/v1/webhooks/orders", content=content, headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "malformed_event"

    def test_not_configured(self, monkeypatch):
        """Without a secret the endpoint answers 503."""
        monkeypatch.delenv("MARKETPLACE_WEBHOOK_SECRET", raising=False)
        client = TestClient(create_app())

        body, headers = signed()
        response = client.post("/v1/webhooks/orders", json=body, headers=headers)

        assert response.status_code == 503
        assert client.get("/health").json()["checks"]["webhook_secret"] == "missing"
