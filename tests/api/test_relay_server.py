"""Tests for the HTTP relay endpoints."""

import json

import pytest
from fastapi.testclient import TestClient

from campaign_relay.api import server
from campaign_relay.api.server import create_app
from campaign_relay.llm.completion import ScriptedCompletionSource
from campaign_relay.relay.service import CampaignChatService


def parse_sse(body: str) -> list[dict]:
    """Decode a server-sent event body into its JSON payloads."""
    events = []
    for frame in body.split("\n\n"):
        if frame.startswith("data: "):
            events.append(json.loads(frame[len("data: "):]))
    return events


@pytest.fixture
def client_for(small_store):
    def build(source):
        service = CampaignChatService(store=small_store, source=source)
        return TestClient(create_app(service))
    yield build
    server._service = None


class TestStartChat:
    """POST /api/campaign-chat/start"""

    def test_creates_session(self, client_for, small_store, scenario_source):
        client = client_for(scenario_source)

        response = client.post("/api/campaign-chat/start")

        assert response.status_code == 200
        body = response.json()
        assert body["sessionId"] and body["chatId"]
        assert body["sessionId"] in small_store._sessions

    def test_uninitialized_service(self, monkeypatch):
        monkeypatch.setattr(server, "_service", None)
        client = TestClient(server.app)

        assert client.post("/api/campaign-chat/start").status_code == 503
        assert client.get("/health").json() == {"status": "ok", "ready": False}


class TestCampaignChat:
    """POST /api/campaign-chat"""

    def test_streams_turn_events(self, client_for, small_store, scenario_source):
        client = client_for(scenario_source)
        session_id = client.post("/api/campaign-chat/start").json()["sessionId"]

        response = client.post(
            "/api/campaign-chat",
            json={"sessionId": session_id, "message": "Fast shipping, buy now"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        events = parse_sse(response.text)
        assert [e["type"] for e in events] == ["text", "state", "text", "state", "text", "complete"]
        assert "".join(e["delta"] for e in events if e["type"] == "text") == "Sure, here:  and call to action !"
        assert events[-1]["data"] == {"valueProp": "Fast shipping", "cta": "Buy now"}

    def test_upstream_failure_ends_with_error_event(self, client_for):
        client = client_for(ScriptedCompletionSource(["Hello", " there"], fail_after=1))

        response = client.post("/api/campaign-chat", json={"sessionId": "abc", "message": "hi"})

        events = parse_sse(response.text)
        assert [e["type"] for e in events] == ["text", "error"]

    @pytest.mark.parametrize("payload", [
        {"message": "hi"},
        {"sessionId": "", "message": "hi"},
        {"sessionId": "abc"},
        {"sessionId": "abc", "message": ""},
    ])
    def test_rejects_invalid_input(self, client_for, scenario_source, payload):
        client = client_for(scenario_source)

        response = client.post("/api/campaign-chat", json=payload)

        assert response.status_code == 422
        assert scenario_source.requests == []


def test_health(client_for, scenario_source):
    client = client_for(scenario_source)

    assert client.get("/health").json() == {"status": "ok", "ready": True}
