"""Tests for the FastAPI webhook surface."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from unittest.mock import AsyncMock
from xml.etree.ElementTree import fromstring

import pytest
from fastapi.testclient import TestClient

from receptionist.app import create_app


@pytest.fixture
def client(config, controller):
    app = create_app(config, controller=controller)
    with TestClient(app) as client:
        yield client


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestTwilioWebhooks:
    def test_incoming_call_gathers(self, client):
        resp = client.post("/twilio/voice", data={"CallSid": "CA1", "From": "+61400111222"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/xml")
        gather = fromstring(resp.text).find("Gather")
        assert gather.get("action") == "/twilio/continue?turn=2"
        assert "Harbour Physio" in gather.find("Say").text

    def test_continue_answers_question(self, client):
        client.post("/twilio/voice", data={"CallSid": "CA1", "From": "+61400111222"})
        resp = client.post(
            "/twilio/continue?turn=2",
            data={"CallSid": "CA1", "From": "+61400111222", "SpeechResult": "where are you located"},
        )
        gather = fromstring(resp.text).find("Gather")
        assert "12 Wharf Street" in gather.find("Say").text
        assert gather.get("action") == "/twilio/continue?turn=3"

    def test_goodbye_hangs_up(self, client):
        client.post("/twilio/voice", data={"CallSid": "CA1", "From": "+61400111222"})
        resp = client.post("/twilio/continue?turn=2", data={"CallSid": "CA1", "SpeechResult": "no thanks, bye"})
        root = fromstring(resp.text)
        assert root.find("Gather") is None
        assert root.find("Hangup") is not None

    def test_keypad_digits_are_passed(self, client, backend):
        client.post("/twilio/voice", data={"CallSid": "CA1", "From": "+61400111222"})
        client.post("/twilio/continue?turn=2", data={"CallSid": "CA1", "SpeechResult": "what are your hours"})
        resp = client.post("/twilio/continue?turn=3", data={"CallSid": "CA1", "Digits": "1"})
        assert "what can I help you with" in fromstring(resp.text).find("Gather").find("Say").text

    def test_missing_call_sid(self, client):
        resp = client.post("/twilio/voice", data={"From": "+61400111222"})
        assert resp.status_code == 400

    def test_status_callback_retires_state(self, client, controller):
        client.post("/twilio/voice", data={"CallSid": "CA1", "From": "+61400111222"})
        assert len(controller._store) == 1
        resp = client.post("/twilio/status", data={"CallSid": "CA1", "CallStatus": "completed"})
        assert resp.json() == {"ok": True}
        assert len(controller._store) == 0

    def test_non_terminal_status_keeps_state(self, client, controller):
        client.post("/twilio/voice", data={"CallSid": "CA1", "From": "+61400111222"})
        client.post("/twilio/status", data={"CallSid": "CA1", "CallStatus": "in-progress"})
        assert len(controller._store) == 1


class TestLifespan:
    def test_shutdown_closes_clients(self, config, controller):
        controller.aclose = AsyncMock()
        with TestClient(create_app(config, controller=controller)) as client:
            client.get("/health")
            controller.aclose.assert_not_awaited()
        controller.aclose.assert_awaited_once()
