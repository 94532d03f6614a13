"""
HTTP contract for the rollback ledger views and manual rollback.
"""

import pytest

from src.core.dao import find_copies

ADMIN = {"X-User-Id": "admin1", "X-User-Role": "admin"}
SECRETARY = {"X-User-Id": "sec1", "X-User-Role": "secretary"}


@pytest.fixture
def approval(client, directory):
    memo = client.post("/memos", json={"subject": "Exam rooms", "departments": ["X"]}, headers=SECRETARY).json()
    result = client.post(f"/memos/{memo['id']}/approve", headers=ADMIN).json()
    return memo["id"], result["rollback_entry_id"]


def test_views_are_admin_only(client, approval):
    assert client.get("/rollback/logs", headers=SECRETARY).status_code == 403


def test_list_and_get(client, approval):
    memo_id, entry_id = approval

    listing = client.get("/rollback/logs", params={"operation_type": "memo_approval"}, headers=ADMIN).json()
    assert listing["total"] == 1
    assert listing["entries"][0]["id"] == entry_id
    assert listing["entries"][0]["status"] == "completed"

    entry = client.get(f"/rollback/logs/{entry_id}", headers=ADMIN).json()
    assert entry["payload"]["memoId"] == memo_id
    assert len(entry["payload"]["copyIds"]) == 3

    available = client.get("/rollback/available", headers=ADMIN).json()
    assert [e["id"] for e in available["entries"]] == [entry_id]


def test_invalid_status_filter(client, approval):
    assert client.get("/rollback/logs", params={"status": "done"}, headers=ADMIN).status_code == 400


def test_unknown_entry(client, directory):
    assert client.get("/rollback/logs/missing", headers=ADMIN).status_code == 404
    assert client.post("/rollback/missing", headers=ADMIN).status_code == 400


def test_manual_rollback_then_repeat(client, approval):
    memo_id, entry_id = approval

    response = client.post(f"/rollback/{entry_id}", json={"reason": "wrong audience"}, headers=ADMIN)

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["result"]["copies_removed"] == 3
    assert find_copies(memo_id) == []
    assert client.get(f"/memos/{memo_id}", headers=SECRETARY).json()["status"] == "pending"

    again = client.post(f"/rollback/{entry_id}", headers=ADMIN)
    assert again.status_code == 400

    entry = client.get(f"/rollback/logs/{entry_id}", headers=ADMIN).json()
    assert entry["status"] == "rolled_back"
    assert entry["rollback_reason"] == "wrong audience"
