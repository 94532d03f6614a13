"""
HTTP contract for guarded profile edits.
"""

ADMIN_A = {"X-User-Id": "adminA", "X-User-Role": "admin"}
ADMIN_B = {"X-User-Id": "adminB", "X-User-Role": "admin"}


def _create(client, user_id="u1"):
    response = client.post("/users", json={"id": user_id, "email": f"{user_id}@example.edu",
                                           "department": "X"}, headers=ADMIN_A)
    assert response.status_code == 201
    return response.json()


def test_create_requires_admin(client):
    response = client.post("/users", json={"id": "u1", "email": "u1@example.edu"},
                           headers={"X-User-Id": "u9"})
    assert response.status_code == 403


def test_create_missing_email_is_400(client):
    assert client.post("/users", json={"id": "u1"}, headers=ADMIN_A).status_code == 400


def test_duplicate_user_is_400(client):
    _create(client)
    response = client.post("/users", json={"id": "u1", "email": "again@example.edu"}, headers=ADMIN_A)
    assert response.status_code == 400


def test_get_unknown_user_is_404(client):
    assert client.get("/users/nobody", headers=ADMIN_A).status_code == 404


def test_concurrent_admin_edits(client):
    """Admin A holds the lock; Admin B is turned away, then loses on version after the lock expires."""
    user = _create(client)
    version = user["updated_at"]

    assert client.post("/locks/u1", headers=ADMIN_A).status_code == 200

    blocked = client.put("/users/u1", json={"department": "Z", "version": version}, headers=ADMIN_B)
    assert blocked.status_code == 423
    assert blocked.json()["locked"] is True
    assert 0 < blocked.json()["remaining"] <= 30

    saved = client.put("/users/u1", json={"department": "Y", "version": version}, headers=ADMIN_A)
    assert saved.status_code == 200
    assert saved.json()["department"] == "Y"
    client.post("/locks/u1/release", headers=ADMIN_A)

    stale = client.put("/users/u1", json={"department": "Z", "version": version}, headers=ADMIN_B)
    assert stale.status_code == 409
    body = stale.json()
    assert body["conflict"] is True
    assert body["updated_by"] == "adminA"
    assert client.get("/users/u1", headers=ADMIN_B).json()["department"] == "Y"


def test_self_edit_and_forbidden_fields(client):
    user = _create(client)
    me = {"X-User-Id": "u1", "X-User-Role": "faculty"}

    ok = client.put("/users/u1", json={"last_name": "Ng", "version": user["updated_at"]}, headers=me)
    assert ok.status_code == 200

    assert client.put("/users/u1", json={"role": "admin"}, headers=me).status_code == 403
    assert client.put("/users/u1", json={"password": "x"}, headers=me).status_code == 400
    assert client.put("/users/adminA", json={"last_name": "X"}, headers=me).status_code == 403
