from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from checkin_backend.config import Settings
from checkin_backend.errors import InternalError
from checkin_backend.main import create_app

from conftest import seed


@pytest.fixture
def app(tmp_path):
    return create_app(Settings(database_url=f"sqlite:///{tmp_path / 'api.db'}"))


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        seed(app.state.store)
        yield client


def read_until_ready(ws):
    frames = []
    while True:
        frame = ws.receive_json()
        frames.append(frame)
        if frame["msg"] == "ready":
            return frames


def test_health(client):
    body = client.get("/").json()

    assert body["status"] == "online"
    assert body["live_subscriptions"] == 0
    assert body["database"]["total_people"] == 3


def test_check_in_and_out_over_rest(client):
    response = client.post("/people/P1/check-in")
    assert response.status_code == 200
    assert response.json()["success"] is True

    response = client.post("/people/P1/check-out")
    assert response.status_code == 200

    response = client.post("/people/P1/check-out")
    assert response.status_code == 409
    assert response.json() == {
        "success": False,
        "error": "InvalidState",
        "reason": "already-checked-out",
        "message": "This person has already checked out",
    }


def test_method_call_style(client):
    response = client.post("/methods/people.checkIn", json={"params": ["P2"]})

    assert response.status_code == 200
    assert response.json()["timestamp"]


@pytest.mark.parametrize("params", [[42], [None], [""], []])
def test_method_call_rejects_bad_ids(client, params):
    response = client.post("/methods/people.checkOut", json={"params": params})

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidArgument"


def test_unknown_method(client):
    response = client.post("/methods/people.teleport", json={"params": ["P1"]})

    assert response.status_code == 404


def test_unknown_person(client):
    response = client.post("/people/unknown-id/check-out")

    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


def test_check_out_before_check_in(client):
    response = client.post("/people/P1/check-out")

    assert response.status_code == 409
    assert response.json()["reason"] == "not-checked-in"


def test_reads(client):
    communities = client.get("/communities").json()
    assert communities["count"] == 2

    people = client.get("/communities/C1/people").json()
    assert [p["firstName"] for p in people["people"]] == ["Bruno", "Ana"]

    assert client.get("/communities/C404/people").status_code == 404


def test_summary_and_stats(client):
    client.post("/people/P1/check-in")

    summary = client.get("/communities/C1/summary").json()["summary"]
    assert summary["present"] == 1
    assert summary["companiesPresent"] == {"Acme": 1}
    assert summary["notCheckedIn"] == 1
    assert client.get("/communities/C404/summary").status_code == 404

    stats = client.get("/stats").json()["stats"]
    assert stats["present_people"] == 1


def test_live_people_subscription_sees_check_in(client):
    with client.websocket_connect("/live") as ws:
        ws.send_json({"msg": "sub", "id": "s1", "name": "people", "params": ["C1"]})
        frames = read_until_ready(ws)

        assert [(f["msg"], f.get("id")) for f in frames] == [
            ("added", "P2"),
            ("added", "P1"),
            ("ready", None),
        ]
        assert frames[-1]["subs"] == ["s1"]
        assert frames[1]["fields"]["checkInDate"] is None

        assert client.post("/people/P1/check-in").status_code == 200

        frame = ws.receive_json()
        assert frame["msg"] == "changed"
        assert frame["sub"] == "s1"
        assert frame["collection"] == "people"
        assert frame["id"] == "P1"
        assert frame["fields"]["checkInDate"] is not None
        assert frame["fields"]["checkOutDate"] is None


@pytest.mark.parametrize("params", [[42], [None], [""], []])
def test_live_people_invalid_filter_is_empty(client, params):
    with client.websocket_connect("/live") as ws:
        ws.send_json({"msg": "sub", "id": "s1", "name": "people", "params": params})

        assert ws.receive_json() == {"msg": "ready", "subs": ["s1"]}


def test_live_communities_and_unsub(client, app):
    with client.websocket_connect("/live") as ws:
        ws.send_json({"msg": "sub", "id": "c", "name": "communities"})
        frames = read_until_ready(ws)
        assert [f["fields"]["name"] for f in frames[:-1]] == ["Launch", "Meetup"]
        assert client.get("/").json()["live_subscriptions"] == 1

        ws.send_json({"msg": "unsub", "id": "c"})
        assert ws.receive_json() == {"msg": "nosub", "id": "c"}
        assert app.state.router.active_count == 0


def test_live_protocol_errors(client):
    with client.websocket_connect("/live") as ws:
        ws.send_json({"msg": "sub", "id": "x", "name": "everything"})
        frame = ws.receive_json()
        assert frame["msg"] == "nosub"
        assert "everything" in frame["error"]

        ws.send_text("not json")
        assert ws.receive_json()["msg"] == "error"

        ws.send_json(["sub"])
        assert ws.receive_json()["msg"] == "error"

        ws.send_json({"msg": "ping"})
        assert ws.receive_json() == {"msg": "pong"}


def test_disconnect_releases_subscriptions(client, app):
    with client.websocket_connect("/live") as ws:
        ws.send_json({"msg": "sub", "id": "s1", "name": "people", "params": ["C1"]})
        read_until_ready(ws)

    # The server cancels on disconnect; a later write must not fail
    assert client.post("/people/P2/check-in").status_code == 200
    assert app.state.router.active_count == 0


def test_checkout_cooldown_setting(tmp_path):
    app = create_app(Settings(
        database_url=f"sqlite:///{tmp_path / 'cooldown.db'}",
        checkout_cooldown_seconds=3600
    ))
    with TestClient(app) as client:
        seed(app.state.store)
        client.post("/people/P1/check-in")

        response = client.post("/people/P1/check-out")

        assert response.status_code == 409
        assert response.json()["reason"] == "checkout-too-soon"


def test_live_binary_frame_is_rejected_and_session_continues(client):
    with client.websocket_connect("/live") as ws:
        ws.send_bytes(b"\x00\x01")
        assert ws.receive_json() == {"msg": "error", "reason": "Frames must be JSON objects"}

        ws.send_json({"msg": "ping"})
        assert ws.receive_json() == {"msg": "pong"}


def test_live_failed_initial_scan_reports_nosub(client, app, monkeypatch):
    def failing_subscribe(name, *params, listener=None):
        raise InternalError("Storage failure during people scan")

    monkeypatch.setattr(app.state.router, "subscribe", failing_subscribe)

    with client.websocket_connect("/live") as ws:
        ws.send_json({"msg": "sub", "id": "s1", "name": "people", "params": ["C1"]})
        assert ws.receive_json() == {
            "msg": "nosub",
            "id": "s1",
            "error": "Storage failure during people scan",
        }

        ws.send_json({"msg": "ping"})
        assert ws.receive_json() == {"msg": "pong"}


def test_live_subscribe_after_router_closed_reports_nosub(client, app):
    app.state.router.close()

    with client.websocket_connect("/live") as ws:
        ws.send_json({"msg": "sub", "id": "c", "name": "communities"})
        frame = ws.receive_json()

        assert frame["msg"] == "nosub"
        assert frame["id"] == "c"
        assert "closed" in frame["error"]
