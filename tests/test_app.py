import pytest
from fastapi.testclient import TestClient

from docbot.app import create_app
from docbot.session_store import Mode

from conftest import Harness


@pytest.fixture()
def wired():
    harness = Harness()
    return harness, TestClient(create_app(engine=harness.engine))


def _text_event(text, user_id="U-alice-0001", token="rt-1"):
    return {
        "type": "message",
        "replyToken": token,
        "source": {"type": "user", "userId": user_id},
        "message": {"id": "m-1", "type": "text", "text": text},
    }


def test_healthz(wired):
    _harness, client = wired
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_webhook_processes_events_in_order(wired):
    harness, client = wired
    body = {"destination": "bot", "events": [_text_event("START_UPLOAD"), _text_event("A0123", token="rt-2")]}
    response = client.post("/webhook", json=body)
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert [token for token, _text in harness.replier.replies] == ["rt-1", "rt-2"]
    assert harness.session().employee_code == "A0123"


def test_webhook_acknowledges_malformed_json(wired):
    harness, client = wired
    response = client.post("/webhook", content=b"{not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert harness.replier.replies == []


def test_webhook_skips_non_message_and_anonymous_events(wired):
    harness, client = wired
    follow = {"type": "follow", "replyToken": "rt-f", "source": {"type": "user", "userId": "U1"}}
    anonymous = _text_event("START_UPLOAD")
    anonymous["source"] = {"type": "group"}
    response = client.post("/webhook", json={"events": [follow, anonymous]})
    assert response.status_code == 200
    assert harness.replier.replies == []


def test_webhook_acknowledges_engine_crash(wired, monkeypatch):
    harness, client = wired

    def boom(event):
        raise RuntimeError("bug")

    monkeypatch.setattr(harness.engine, "handle_event", boom)
    response = client.post("/webhook", json={"events": [_text_event("START_UPLOAD")]})
    assert response.status_code == 200
    assert harness.session().mode is Mode.IDLE


def test_image_event_maps_media_id(wired):
    harness, client = wired
    event = _text_event("")
    event["message"] = {"id": "img-9", "type": "image"}
    client.post("/webhook", json={"events": [_text_event("START_UPLOAD"), _text_event("A0001"), event]})
    assert harness.media.fetched == ["img-9"]
