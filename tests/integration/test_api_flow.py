from __future__ import annotations

import re

import pytest
from fastapi.testclient import TestClient

from espa.adapters.iothub import DirectMethodResult
from espa.apps.api.server import create_app


@pytest.fixture()
def client(ctx):
    with TestClient(create_app(ctx)) as test_client:
        yield test_client


def _enroll(client, mailer, email: str, pin: str = "1234") -> dict:
    assert client.post("/auth/send-otp", json={"email": email}).json() == {"ok": True, "message": "OTP sent"}
    code = re.search(r"\d{6}", mailer.outbox[-1][2]).group(0)
    verified = client.post("/auth/verify-otp", json={"email": email, "code": code})
    assert verified.status_code == 200
    response = client.post("/auth/set-pin", json={"pin": pin, "setupToken": verified.json()["setupToken"]})
    assert response.status_code == 200
    return response.json()


def _auth(session: dict) -> dict:
    return {"Authorization": f"Bearer {session['token']}"}


def test_health(client):
    assert client.get("/health").json()["ok"] is True


def test_enrollment_and_login(client, mailer):
    assert client.post("/auth/lookup", json={"email": "a@x.fi"}).json() == {"exists": False}
    session = _enroll(client, mailer, "a@x.fi")
    assert session["ok"] is True and session["isAdmin"] is True and session["email"] == "a@x.fi"
    assert client.post("/auth/lookup", json={"email": "A@X.FI"}).json() == {"exists": True, "isAdmin": True}

    login = client.post("/auth/login", json={"email": "a@x.fi", "pin": "1234"})
    assert login.status_code == 200
    assert client.get("/devices", headers=_auth(login.json())).json() == []


def test_error_envelope_and_lockout_headers(client, mailer):
    _enroll(client, mailer, "a@x.fi")
    assert client.post("/auth/login", json={"email": "a@x.fi", "pin": "0000"}).status_code == 401
    assert client.post("/auth/login", json={"email": "a@x.fi", "pin": "0000"}).status_code == 401
    locked = client.post("/auth/login", json={"email": "a@x.fi", "pin": "0000"})
    assert locked.status_code == 429
    assert locked.json()["code"] == "account_locked"
    assert locked.json()["retryAfter"] == 900
    assert locked.headers["Retry-After"] == "900"

    missing = client.post("/auth/login", json={"email": "nobody@x.fi", "pin": "1234"})
    assert missing.status_code == 404
    assert missing.json() == {"error": "User not found", "code": "user_not_found"}


def test_bad_requests_are_400(client):
    assert client.post("/auth/lookup", json={}).status_code == 400
    assert client.post("/auth/lookup", content=b"not json", headers={"Content-Type": "application/json"}).status_code == 400
    assert client.post("/auth/set-pin", json={"pin": "12", "setupToken": "x"}).status_code == 400


def test_protected_routes_need_session(client):
    assert client.get("/devices").status_code == 401
    assert client.get("/devices", headers={"Authorization": "Bearer junk"}).status_code == 401


def test_end_to_end_sharing_scenario(client, mailer):
    alice = _enroll(client, mailer, "a@x.fi")
    bob = _enroll(client, mailer, "b@x.fi")
    assert bob["isAdmin"] is False

    assert client.post("/devices/claim", json={"deviceId": "pi-1", "friendlyName": "Lobby"}, headers=_auth(alice)).json() == {
        "ok": True,
        "deviceId": "pi-1",
    }
    assert client.post("/devices/pi-1/share", json={"email": "b@x.fi"}, headers=_auth(alice)).json() == {"ok": True}

    posted = client.post("/entry", json={"key": "pi-1", "value1": "https://video/1", "value2": "Goal"}, headers=_auth(bob))
    assert posted.status_code == 201
    assert posted.json()["ok"] is True

    denied = client.delete("/devices/pi-1/share/b@x.fi", headers=_auth(bob))
    assert denied.status_code == 403
    assert denied.json()["code"] == "not_master"
    assert client.patch("/devices/pi-1", json={"friendlyName": "Mine"}, headers=_auth(bob)).status_code == 403
    assert client.delete("/devices/pi-1", headers=_auth(bob)).status_code == 403

    shares = client.get("/devices/pi-1/shares", headers=_auth(alice)).json()
    assert {share["email"] for share in shares} == {"a@x.fi", "b@x.fi"}

    assert client.delete("/devices/pi-1/share/b@x.fi", headers=_auth(alice)).json() == {"ok": True}
    again = client.post("/entry", json={"key": "pi-1", "value1": "https://video/2"}, headers=_auth(bob))
    assert again.status_code == 403

    entries = client.get("/entries/pi-1", headers=_auth(alice)).json()
    assert [entry["value2"] for entry in entries] == ["Goal"]

    assert client.patch("/devices/pi-1", json={"friendlyName": "Cafe"}, headers=_auth(alice)).json() == {"ok": True}
    assert client.delete("/devices/pi-1", headers=_auth(alice)).json() == {"ok": True}
    assert client.get("/devices", headers=_auth(alice)).json() == []


def test_commands_rate_limit_and_transfer(client, mailer, transport):
    # the first enrollment becomes admin and would bypass mastership checks
    _enroll(client, mailer, "root@x.fi")
    alice = _enroll(client, mailer, "a@x.fi")
    carol = _enroll(client, mailer, "c@x.fi")
    announced = client.post("/devices/announce", json={"deviceId": "pi-1", "email": "a@x.fi", "friendlyName": "ESPA-Pi-1"})
    assert announced.json()["status"] == "registered"
    assert announced.json()["deviceToken"]

    transport.connect("pi-1", lambda method, payload: DirectMethodResult(status=200, payload={"done": method}))
    first = client.post("/devices/pi-1/commands/play", json={"track": 3}, headers=_auth(alice))
    assert first.status_code == 200
    assert first.json()["mode"] == "direct"
    assert first.json()["payload"] == {"track": 3}
    assert first.json()["sent"] is True

    transport.disconnect("pi-1")
    queued = client.post("/devices/pi-1/commands/pause", headers=_auth(alice))
    assert queued.json()["mode"] == "c2d"

    assert client.post("/devices/pi-1/commands/dance", headers=_auth(alice)).status_code == 400

    for _ in range(3):
        assert client.post("/devices/pi-1/commands/status", headers=_auth(alice)).status_code == 200
    limited = client.post("/devices/pi-1/commands/status", headers=_auth(alice))
    assert limited.status_code == 429
    assert limited.json()["code"] == "rate_limited"
    assert 0 < int(limited.headers["Retry-After"]) <= 60

    moved = client.post("/devices/announce", json={"deviceId": "pi-1", "email": "c@x.fi", "friendlyName": "ESPA-Pi-1"})
    assert moved.json()["status"] == "transferred"
    assert client.post("/devices/pi-1/commands/play", headers=_auth(alice)).status_code == 403
    assert client.post("/devices/pi-1/commands/play", headers=_auth(carol)).status_code == 200


def test_dispatch_registration_endpoints(client, mailer):
    alice = _enroll(client, mailer, "a@x.fi")
    device_token = client.post(
        "/devices/announce", json={"deviceId": "pi-1", "email": "a@x.fi", "friendlyName": "ESPA-Pi-1"}
    ).json()["deviceToken"]

    assert client.get("/devices/pi-1/iot-status", headers=_auth(alice)).status_code == 404
    registered = client.post("/devices/pi-1/register-iot", headers=_auth(alice)).json()
    assert registered["ok"] is True and registered["mock"] is True
    assert client.get("/devices/pi-1/iot-status", headers=_auth(alice)).json()["iotHubStatus"] == "enabled"

    assert client.get("/devices/pi-1/iot-connection").status_code == 400
    assert client.get("/devices/pi-1/iot-connection", params={"token": "junk"}).status_code == 403
    connection = client.get("/devices/pi-1/iot-connection", params={"token": device_token})
    assert connection.status_code == 200
    assert connection.json()["sasToken"].startswith("SharedAccessSignature ")
