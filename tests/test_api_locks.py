"""
HTTP contract for edit locks: 423 with remaining seconds, 409 on expired refresh.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import WebSocketDisconnect

from src.core.locks import lock_manager

ADMIN_A = {"X-User-Id": "adminA", "X-User-Role": "admin"}
ADMIN_B = {"X-User-Id": "adminB", "X-User-Role": "admin"}
FACULTY = {"X-User-Id": "f1", "X-User-Role": "faculty"}


class SteppingClock:
    def __init__(self):
        self.now = datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock(monkeypatch):
    clock = SteppingClock()
    monkeypatch.setattr(lock_manager, "clock", clock)
    return clock


def test_missing_identity_is_401(client):
    response = client.post("/locks/memo-1")
    assert response.status_code == 401


def test_acquire_then_locked_for_others(client, clock):
    response = client.post("/locks/memo-1", headers=ADMIN_A)
    assert response.status_code == 200
    assert response.json() == {"ok": True, "ttl": 30}

    clock.advance(10)
    response = client.post("/locks/memo-1", headers=ADMIN_B)

    assert response.status_code == 423
    body = response.json()
    assert body["locked"] is True
    assert body["remaining"] == 20


def test_refresh_after_expiry_is_409(client, clock):
    client.post("/locks/memo-1", headers=ADMIN_A)
    clock.advance(31)

    response = client.post("/locks/memo-1/refresh", headers=ADMIN_A)

    assert response.status_code == 409
    assert response.json() == {"expired": True}


def test_refresh_and_release(client, clock):
    client.post("/locks/memo-1", headers=ADMIN_A)
    clock.advance(20)
    assert client.post("/locks/memo-1/refresh", headers=ADMIN_A).json() == {"ok": True, "ttl": 30}

    assert client.post("/locks/memo-1/release", headers=ADMIN_B).status_code == 423
    assert client.post("/locks/memo-1/release", headers=ADMIN_A).json()["ok"] is True
    assert client.get("/locks/memo-1", headers=ADMIN_B).json() == {
        "locked": False, "lockedBy": None, "remaining": 0,
    }


def test_batch_status(client, clock):
    client.post("/locks/memo-1", headers=ADMIN_A)

    response = client.post("/locks/batch", json={"resource_ids": ["memo-1", "memo-2"]}, headers=ADMIN_B)

    assert response.status_code == 200
    body = response.json()
    assert body["memo-1"] == {"locked": True, "lockedBy": "adminA", "remaining": 30}
    assert body["memo-2"]["locked"] is False


def test_batch_requires_ids(client):
    response = client.post("/locks/batch", json={"resource_ids": []}, headers=ADMIN_A)
    assert response.status_code == 400


def test_non_admin_only_sees_own_locks(client, clock):
    client.post("/locks/memo-1", headers=ADMIN_A)
    client.post("/locks/f1", headers=FACULTY)

    mine = client.get("/locks", headers=FACULTY).json()
    everything = client.get("/locks", headers=ADMIN_B).json()

    assert [lock["resource_id"] for lock in mine] == ["f1"]
    assert {lock["resource_id"] for lock in everything} == {"memo-1", "f1"}


def test_force_release_is_admin_only(client, clock):
    client.post("/locks/memo-1", headers=ADMIN_A)

    assert client.delete("/locks/memo-1", headers=FACULTY).status_code == 403
    response = client.delete("/locks/memo-1", headers=ADMIN_B)
    assert response.json()["previous_holder"] == "adminA"


def test_lock_stream(client):
    with client.websocket_connect("/locks/ws/memo-1", headers=ADMIN_B) as websocket:
        assert websocket.receive_json() == {
            "type": "lock_status", "resource_id": "memo-1",
            "locked": False, "lockedBy": None, "remaining": 0,
        }

        client.post("/locks/memo-1", headers=ADMIN_A)
        event = websocket.receive_json()

    assert event["type"] == "lock_acquired"
    assert event["resource_id"] == "memo-1"
    assert event["by"] == "adminA"


def test_lock_stream_requires_identity(client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/locks/ws/memo-1"):
            pass

    assert exc_info.value.code == 1008
