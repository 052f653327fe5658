"""
Tests for the HTTP and WebSocket surface.

Tests cover:
- GET /messages default, backward and forward pages
- Query validation (422)
- POST /messages
- Live events on /subscriptions/{channel}
- Health, metrics and request id header
- A WindowReconciler fed over HTTP
"""

import logging
from datetime import datetime

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from chatfeed.broker import MESSAGE_ADDED, MESSAGE_UPDATED
from chatfeed.client import HttpPageSource
from chatfeed.main import create_app
from chatfeed.reconciler import WindowReconciler


@pytest.fixture
def api_settings(settings):
    """Real clock, with lifecycle delays short enough to wait on."""
    return settings.model_copy(update={
        "SENT_DELAY_MS": 10,
        "READ_DELAY_MS": 20,
        "RESPONSE_DELAY_MS": 0,
    })


@pytest.fixture(scope="function")
def client(api_settings):
    """Create test client with a fresh message log for each test."""
    app = create_app(api_settings)
    with TestClient(app) as test_client:
        yield test_client


def parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def cursors(data) -> list[str]:
    return [edge["cursor"] for edge in data["edges"]]


class TestMessagesPage:
    """Test GET /messages."""

    def test_default_window(self, client):
        """No arguments returns the newest 10 messages."""
        response = client.get("/messages")

        assert response.status_code == 200
        data = response.json()
        assert cursors(data) == [str(i) for i in range(20, 30)]
        assert data["pageInfo"] == {
            "hasNextPage": False,
            "hasPreviousPage": True,
            "startCursor": "20",
            "endCursor": "29",
        }

    def test_backward_page(self, client):
        response = client.get("/messages", params={"last": 10, "before": "20"})

        assert response.status_code == 200
        data = response.json()
        assert cursors(data) == [str(i) for i in range(10, 20)]
        assert data["pageInfo"]["hasPreviousPage"] is True
        assert data["pageInfo"]["hasNextPage"] is True

    def test_forward_page(self, client):
        response = client.get("/messages", params={"first": 3, "after": "4"})

        data = response.json()
        assert cursors(data) == ["5", "6", "7"]
        assert data["pageInfo"]["hasPreviousPage"] is True

    def test_message_fields(self, client):
        """Nodes are serialised with camelCase field names."""
        node = client.get("/messages", params={"first": 1}).json()["edges"][0]["node"]

        assert node["id"] == "0"
        assert node["text"] == "Message number 0"
        assert node["sender"] == "Customer"
        assert node["status"] == "Read"
        assert "updatedAt" in node

    def test_unknown_cursor_is_not_an_error(self, client):
        response = client.get("/messages", params={"last": 5, "before": "does-not-exist"})

        assert response.status_code == 200
        assert cursors(response.json()) == ["25", "26", "27", "28", "29"]

    def test_negative_count_rejected(self, client):
        assert client.get("/messages", params={"first": -1}).status_code == 422
        assert client.get("/messages", params={"last": -1}).status_code == 422

    def test_zero_count(self, client):
        data = client.get("/messages", params={"last": 0}).json()

        assert data["edges"] == []
        assert data["pageInfo"]["startCursor"] is None
        assert data["pageInfo"]["hasPreviousPage"] is True
        assert data["pageInfo"]["hasNextPage"] is False


class TestSendMessage:
    """Test POST /messages."""

    def test_send_returns_sending_message(self, client):
        response = client.post("/messages", json={"text": "hi"})

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == "31"
        assert data["text"] == "hi"
        assert data["status"] == "Sending"
        assert data["sender"] == "Admin"

    def test_sent_message_appears_in_page(self, client):
        client.post("/messages", json={"text": "hi"})
        data = client.get("/messages").json()

        assert cursors(data)[-1] == "31"
        assert data["edges"][-1]["node"]["text"] == "hi"

    def test_empty_text_rejected(self, client):
        assert client.post("/messages", json={"text": ""}).status_code == 422

    def test_missing_text_rejected(self, client):
        assert client.post("/messages", json={}).status_code == 422


class TestSubscriptions:
    """Test the live event channels."""

    def test_added_event(self, client):
        with client.websocket_connect("/subscriptions/messageAdded") as ws:
            client.post("/messages", json={"text": "hi"})
            event = ws.receive_json()

        assert event["id"] == "31"
        assert event["status"] == "Sending"
        assert "updatedAt" in event

    def test_updated_events_progress(self, client):
        with client.websocket_connect("/subscriptions/messageUpdated") as ws:
            client.post("/messages", json={"text": "hi"})
            sent = ws.receive_json()
            read = ws.receive_json()

        assert (sent["id"], sent["status"]) == ("31", "Sent")
        assert (read["id"], read["status"]) == ("31", "Read")
        assert parse_ts(read["updatedAt"]) > parse_ts(sent["updatedAt"])

        # the log itself reflects the final status
        node = client.get("/messages").json()["edges"][-1]["node"]
        assert node["status"] == "Read"

    def test_unknown_channel_rejected(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/subscriptions/messageDeleted"):
                pass

        assert exc_info.value.code == 1008

    def test_disconnect_releases_subscription(self, client):
        broker = client.app.state.chat.broker
        with client.websocket_connect("/subscriptions/messageAdded"):
            assert broker.subscriber_count(MESSAGE_ADDED) == 1

        assert broker.subscriber_count(MESSAGE_ADDED) == 0

    def test_disconnect_after_events_releases_subscription(self, client):
        broker = client.app.state.chat.broker
        with client.websocket_connect("/subscriptions/messageUpdated") as ws:
            client.post("/messages", json={"text": "hi"})
            ws.receive_json()

        assert broker.subscriber_count(MESSAGE_UPDATED) == 0

    def test_rejected_channel_leaves_no_subscription(self, client):
        broker = client.app.state.chat.broker
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/subscriptions/messageDeleted"):
                pass

        assert broker.subscriber_count(MESSAGE_ADDED) == 0
        assert broker.subscriber_count(MESSAGE_UPDATED) == 0


class TestServiceEndpoints:
    """Test health, metrics and request logging."""

    def test_health_live(self, client):
        assert client.get("/health/live").json() == {"status": "ok", "reason": None}

    def test_health_ready_after_startup(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_health_not_ready_before_startup(self, api_settings):
        # no context manager: lifespan never runs
        client = TestClient(create_app(api_settings))
        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

    def test_request_id_header(self, client):
        response = client.get("/messages")
        assert response.headers.get("X-Request-ID")

    def test_page_request_log_fields(self, client, caplog):
        """A page request logs its size and result, never a message id."""
        caplog.set_level(logging.INFO, logger="chatfeed.requests")
        client.get("/messages", params={"last": 3})

        record = [r for r in caplog.records if r.name == "chatfeed.requests"][-1]
        assert record.result == "page"
        assert record.page_size == 3
        assert not hasattr(record, "message_id")

    def test_send_request_log_fields(self, client, caplog):
        caplog.set_level(logging.INFO, logger="chatfeed.requests")
        client.post("/messages", json={"text": "hi"})

        record = [r for r in caplog.records if r.name == "chatfeed.requests"][-1]
        assert record.result == "sent"
        assert record.message_id == "31"

    def test_metrics_exposed(self, client):
        client.post("/messages", json={"text": "hi"})
        response = client.get("/metrics")

        assert response.status_code == 200
        body = response.text
        assert "events_published_total" in body
        assert "messages_created_total" in body
        assert "http_requests_total" in body


class TestWindowOverHttp:
    """Test the reconciler against the HTTP page source."""

    @pytest.mark.asyncio
    async def test_load_and_extend_window(self, api_settings):
        app = create_app(api_settings)
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            source = HttpPageSource(http)
            window = WindowReconciler(source)

            await window.load_initial()
            assert window.ids == [str(i) for i in range(20, 30)]

            await window.on_top_state_change(True)
            assert await window.on_top_state_change(True) == 10
            assert window.first_item_index == -10

            message = await source.send_message("hi")
            assert window.apply_added(message) is True
            assert window.ids[-1] == "31"

        await app.state.chat.shutdown()
