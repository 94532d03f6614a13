"""
HTTP contract for the memo workflow.
"""

import pytest

from src.core.dao import find_copies, get_memo
from src.core.fanout import DeliveryFanout

ADMIN = {"X-User-Id": "admin1", "X-User-Role": "admin"}
SECRETARY = {"X-User-Id": "sec1", "X-User-Role": "secretary"}


def _faculty(user_id):
    return {"X-User-Id": user_id, "X-User-Role": "faculty"}


@pytest.fixture
def pending(client, directory):
    response = client.post("/memos", json={
        "subject": "Faculty meeting",
        "content": "Room 204 at noon",
        "departments": ["X"],
    }, headers=SECRETARY)
    assert response.status_code == 201
    return response.json()


def test_submit_creates_pending_memo(pending):
    assert pending["status"] == "pending"
    assert pending["kind"] == "memo"
    assert pending["sender_id"] == "sec1"


@pytest.mark.parametrize("body", [
    {"content": "no subject", "recipients": ["f1"]},
    {"subject": "  ", "recipients": ["f1"]},
    {"subject": "No audience"},
    {"subject": "Bad priority", "recipients": ["f1"], "priority": "whenever"},
])
def test_submit_missing_fields_is_400(client, directory, body):
    assert client.post("/memos", json=body, headers=SECRETARY).status_code == 400


def test_draft_then_submit(client, directory):
    draft = client.post("/memos", json={"subject": "Draft", "draft": True}, headers=SECRETARY).json()
    assert draft["status"] == "draft"

    client.patch(f"/memos/{draft['id']}", json={"recipients": ["f1"], "version": draft["updated_at"]},
                 headers=SECRETARY)
    submitted = client.post(f"/memos/{draft['id']}/submit", headers=SECRETARY)

    assert submitted.status_code == 200
    assert submitted.json()["status"] == "pending"


def test_approve_requires_admin(client, pending):
    assert client.post(f"/memos/{pending['id']}/approve", headers=SECRETARY).status_code == 403


def test_approve_fans_out(client, pending):
    response = client.post(f"/memos/{pending['id']}/approve", headers=ADMIN)

    assert response.status_code == 200
    body = response.json()
    assert body["memo"]["status"] == "approved"
    assert len(body["copies"]) == 3
    assert body["rollback_entry_id"]

    copies = client.get(f"/memos/{pending['id']}/copies", headers=SECRETARY).json()
    assert sorted(c["recipient_id"] for c in copies) == ["f1", "f2", "f3"]


def test_second_approve_is_409(client, pending):
    client.post(f"/memos/{pending['id']}/approve", headers=ADMIN)
    response = client.post(f"/memos/{pending['id']}/approve", headers=ADMIN)

    assert response.status_code == 409
    assert response.json()["current"] == "approved"


def test_approval_failure_is_500_with_rollback(client, pending, monkeypatch):
    original = DeliveryFanout.create_copy
    calls = {"n": 0}

    def flaky(self, *args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("disk full")
        return original(self, *args, **kwargs)

    monkeypatch.setattr(DeliveryFanout, "create_copy", flaky)

    response = client.post(f"/memos/{pending['id']}/approve", headers=ADMIN)

    assert response.status_code == 500
    body = response.json()
    assert body["rolled_back"] is True
    assert body["rollback_entry_id"]
    assert find_copies(pending["id"]) == []
    assert get_memo(pending["id"]).status.value == "pending"


def test_reject_with_and_without_reason(client, directory):
    first = client.post("/memos", json={"subject": "A", "recipients": ["f1"]}, headers=SECRETARY).json()
    second = client.post("/memos", json={"subject": "B", "recipients": ["f1"]}, headers=SECRETARY).json()

    with_reason = client.post(f"/memos/{first['id']}/reject", json={"reason": "typo"}, headers=ADMIN)
    bare = client.post(f"/memos/{second['id']}/reject", headers=ADMIN)

    assert with_reason.status_code == 200
    assert with_reason.json()["memo"]["history"][-1]["reason"] == "typo"
    assert bare.json()["memo"]["status"] == "rejected"


def test_acknowledge_copy(client, pending):
    approval = client.post(f"/memos/{pending['id']}/approve", headers=ADMIN).json()
    copy = next(c for c in find_copies(pending["id"]) if c.recipient_id == "f2")
    assert copy.id in approval["copies"]

    assert client.post(f"/memos/{copy.id}/acknowledge", headers=_faculty("f1")).status_code == 403
    response = client.post(f"/memos/{copy.id}/acknowledge", headers=_faculty("f2"))
    assert response.status_code == 200
    assert response.json()["is_read"] is True

    assert client.post(f"/memos/{copy.id}/acknowledge", headers=_faculty("f2")).status_code == 409

    merged = client.get(f"/memos/{pending['id']}", headers=SECRETARY).json()
    assert [ack["userId"] for ack in merged["acknowledgments"]] == ["f2"]


def test_unknown_memo_is_404(client, directory):
    assert client.post("/memos/nope/acknowledge", headers=_faculty("f1")).status_code == 404


def test_stale_edit_is_409(client, pending):
    version = pending["updated_at"]
    first = client.patch(f"/memos/{pending['id']}", json={"content": "Room 210", "version": version},
                         headers=SECRETARY)
    assert first.status_code == 200

    second = client.patch(f"/memos/{pending['id']}", json={"content": "Room 305", "version": version},
                          headers=ADMIN)
    assert second.status_code == 409
    assert second.json()["conflict"] is True


def test_edit_while_locked_is_423(client, pending):
    client.post(f"/locks/{pending['id']}", headers=ADMIN)

    response = client.patch(f"/memos/{pending['id']}", json={"content": "x"}, headers=SECRETARY)

    assert response.status_code == 423
    assert response.json()["locked"] is True


def test_delete_then_archive(client, directory):
    memo = client.post("/memos", json={"subject": "Old", "recipients": ["f1"]}, headers=SECRETARY).json()
    client.post(f"/memos/{memo['id']}/reject", headers=ADMIN)

    archived = client.post(f"/memos/{memo['id']}/archive", headers=SECRETARY)
    assert archived.json()["status"] == "archived"

    deleted = client.delete(f"/memos/{memo['id']}", headers=SECRETARY)
    assert deleted.status_code == 200
    assert deleted.json()["memo"]["status"] == "deleted"
