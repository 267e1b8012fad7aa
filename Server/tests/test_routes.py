"""
Tests for the VaultSync Server HTTP API

Runs the FastAPI app in-process against the test database and blob store.
"""

from datetime import timedelta

import pytest

from checksums import ComputeContentHash
import version_store


@pytest.fixture
def alice(user, login):
    return login("alice", "alice-password")


@pytest.fixture
def bob(other_user, login):
    return login("bob", "bob-password")


@pytest.fixture
def admin(db_manager, login):
    db_manager.CreateUser("root", "root-password", "Admin")
    return login("root", "root-password")


def _Init(client, headers, device_id="device-a", cursor=None):
    response = client.post("/sync/init", json={"device_id": device_id, "cursor": cursor}, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


def _Submit(client, headers, session_id, content, file_id=None, parent_version_id=None,
            name="notes.txt", content_hash=None):
    data = {"session_id": session_id}
    if file_id is not None:
        data["file_id"] = str(file_id)
    if parent_version_id is not None:
        data["parent_version_id"] = str(parent_version_id)
    if content_hash is not None:
        data["content_hash"] = content_hash
    return client.put(
        "/sync/submit", data=data, files={"file": (name, content, "application/octet-stream")},
        headers=headers
    )


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["database"] == "ok"


def test_login_rejects_bad_password(client, user):
    response = client.post("/auth/login", json={"username": "alice", "password": "wrong"})

    assert response.status_code == 401


def test_sync_requires_authentication(client):
    response = client.post("/sync/init", json={"device_id": "device-a"})

    assert response.status_code in (401, 403)


def test_full_sync_flow(client, alice):
    """Test init, submit, changes, ack, checksums, verification and download"""
    session = _Init(client, alice)
    assert session["state"] == "created"
    assert session["full_resync_required"] is False

    content = b"hello from device a"
    digest = ComputeContentHash(content)
    response = _Submit(client, alice, session["session_id"], content, content_hash=digest)
    assert response.status_code == 200, response.text
    submitted = response.json()
    assert submitted["status"] == "committed"
    assert submitted["version"]["version_id"] == 1
    assert submitted["version"]["content_hash"] == digest
    file_id = submitted["version"]["file_id"]

    reader = _Init(client, alice, device_id="device-b")
    changes = client.get("/sync/changes", params={"session_id": reader["session_id"]}, headers=alice).json()
    assert [c["name"] for c in changes["changes"]] == ["notes.txt"]
    assert changes["has_more"] is False

    ack = client.post(
        "/sync/ack", json={"session_id": reader["session_id"], "cursor": changes["next_cursor"]}, headers=alice
    )
    assert ack.status_code == 200
    assert ack.json()["cursor"] == changes["next_cursor"]
    assert ack.json()["pending_cursor"] is None

    after = client.get("/sync/changes", params={"session_id": reader["session_id"]}, headers=alice).json()
    assert after["changes"] == []

    checksums = client.get("/checksums", params={"file_ids": f"{file_id},999"}, headers=alice).json()
    assert checksums == {"checksums": {str(file_id): digest}}

    verified = client.post("/checksums/verify", json={"files": {str(file_id): digest}}, headers=alice).json()
    assert verified["results"][str(file_id)]["ok"] is True

    download = client.get(f"/files/{file_id}/content", headers=alice)
    assert download.status_code == 200
    assert download.content == content
    assert download.headers["X-Content-Hash"] == digest
    assert download.headers["X-Version-Id"] == "1"

    assert client.delete(f"/sync/session/{reader['session_id']}", headers=alice).status_code == 200
    gone = client.get("/sync/changes", params={"session_id": reader["session_id"]}, headers=alice)
    assert gone.status_code == 404


def test_conflict_flow(client, alice):
    """Test divergent submission, listing and resolution over HTTP"""
    device_x = _Init(client, alice, device_id="device-x")
    device_y = _Init(client, alice, device_id="device-y")
    v1 = _Submit(client, alice, device_x["session_id"], b"x version", name="shared.txt").json()["version"]

    response = _Submit(client, alice, device_y["session_id"], b"y version",
                       file_id=v1["file_id"], parent_version_id=0)
    assert response.status_code == 200
    assert response.json()["status"] == "conflict"
    conflict = response.json()["conflict"]
    assert conflict["local_version_id"] == 1
    assert conflict["resolution_state"] == "pending"

    listed = client.get("/sync/conflicts", headers=alice).json()["conflicts"]
    assert [c["conflict_id"] for c in listed] == [conflict["conflict_id"]]

    resolved = client.put("/sync/resolve", json={
        "conflict_id": conflict["conflict_id"],
        "decision": "keep_remote",
        "session_id": device_y["session_id"]
    }, headers=alice)
    assert resolved.status_code == 200, resolved.text
    assert resolved.json()["state"] == "resolved_keep_remote"
    assert resolved.json()["version"]["version_id"] == 2
    assert resolved.json()["version"]["content_hash"] == ComputeContentHash(b"y version")

    again = client.put("/sync/resolve", json={
        "conflict_id": conflict["conflict_id"], "decision": "fork"
    }, headers=alice)
    assert again.status_code == 404
    assert again.json()["error"] == "not_found"


def test_resolve_rejects_unknown_decision(client, alice):
    response = client.put("/sync/resolve", json={"conflict_id": "x", "decision": "merge"}, headers=alice)

    assert response.status_code == 422


def test_quota_endpoints(client, alice, bob, admin, user):
    """Test quota visibility, admin limits and the 507 response"""
    assert client.get("/quota", params={"user_id": user.user_id}, headers=bob).status_code == 403
    assert client.put("/quota", params={"user_id": user.user_id}, json={"limit": 5}, headers=bob).status_code == 403

    own = client.get("/quota", headers=alice).json()
    assert own["used"] == 0

    updated = client.put("/quota", params={"user_id": user.user_id}, json={"limit": 10}, headers=admin)
    assert updated.status_code == 200
    assert updated.json()["limit"] == 10

    viewed = client.get("/quota", params={"user_id": user.user_id}, headers=admin).json()
    assert (viewed["used"], viewed["limit"], viewed["available"]) == (0, 10, 10)

    session = _Init(client, alice)
    response = _Submit(client, alice, session["session_id"], b"x" * 20, name="big.bin")
    assert response.status_code == 507
    assert response.json() == {
        "error": "quota_exceeded",
        "message": response.json()["message"],
        "user_id": user.user_id,
        "used": 0,
        "limit": 10,
        "required": 20
    }

    recalculated = client.post("/quota/recalculate", params={"user_id": user.user_id}, headers=admin)
    assert recalculated.json() == {"user_id": user.user_id, "previous_used": 0, "used": 0}

    assert client.get("/quota", params={"user_id": 9999}, headers=admin).status_code == 404


def test_moderator_reads_but_cannot_change_quota(client, db_manager, login, user):
    """Test role gating of the quota endpoints"""
    db_manager.CreateUser("mod", "mod-password", "Moderator")
    moderator = login("mod", "mod-password")

    viewed = client.get("/quota", params={"user_id": user.user_id}, headers=moderator)
    assert viewed.status_code == 200
    assert viewed.json()["user_id"] == user.user_id

    changed = client.put("/quota", params={"user_id": user.user_id}, json={"limit": 5}, headers=moderator)
    assert changed.status_code == 403
    recalculated = client.post("/quota/recalculate", params={"user_id": user.user_id}, headers=moderator)
    assert recalculated.status_code == 403


def test_integrity_error_response(client, alice):
    session = _Init(client, alice)

    response = _Submit(client, alice, session["session_id"], b"damaged",
                       content_hash=ComputeContentHash(b"original"))

    assert response.status_code == 422
    assert response.json()["error"] == "integrity_error"
    assert response.json()["actual_hash"] == ComputeContentHash(b"damaged")
    assert client.get("/files", headers=alice).json()["files"] == []


def test_stale_cursor_response(client, alice, db_manager, user):
    """Test 410 for purged history and full resync on init"""
    session = _Init(client, alice)
    _Submit(client, alice, session["session_id"], b"content")
    changes = client.get("/sync/changes", params={"session_id": session["session_id"]}, headers=alice).json()
    token = changes["next_cursor"]

    current = version_store.GetCurrentVersion(db_manager, changes["changes"][-1]["file_id"])
    version_store.AdvanceHorizon(db_manager, user.user_id, current.modified_at_utc + timedelta(seconds=1))

    stale = client.get(
        "/sync/changes", params={"session_id": session["session_id"], "cursor": token}, headers=alice
    )
    assert stale.status_code == 410
    assert stale.json()["full_resync_required"] is True

    resumed = _Init(client, alice, cursor=token)
    assert resumed["full_resync_required"] is True
    full = client.get("/sync/changes", params={"session_id": resumed["session_id"]}, headers=alice).json()
    assert len(full["changes"]) == 1
    assert full["full_resync_required"] is True


def test_init_from_last_seen_timestamp(client, alice, db_manager, user):
    """Test resuming over HTTP with only the last seen change time"""
    session = _Init(client, alice)
    for name in ("a.txt", "b.txt"):
        _Submit(client, alice, session["session_id"], name.encode(), name=name)
    changes = client.get("/sync/changes", params={"session_id": session["session_id"]}, headers=alice).json()
    first = version_store.GetVersion(db_manager, changes["changes"][0]["file_id"], 1)

    response = client.post("/sync/init", json={
        "device_id": "device-b", "last_seen_utc": first.modified_at_utc.isoformat()
    }, headers=alice)
    assert response.status_code == 200, response.text
    resumed = response.json()
    assert resumed["full_resync_required"] is False

    after = client.get("/sync/changes", params={"session_id": resumed["session_id"]}, headers=alice).json()
    assert [c["name"] for c in after["changes"]] == ["b.txt"]


def test_file_delete_undelete_restore(client, alice):
    """Test the file history endpoints"""
    session = _Init(client, alice)
    v1 = _Submit(client, alice, session["session_id"], b"first", name="doc.txt").json()["version"]
    file_id = v1["file_id"]
    _Submit(client, alice, session["session_id"], b"second", file_id=file_id, parent_version_id=1)

    stale = client.delete(f"/files/{file_id}", params={"device_id": "device-a", "parent_version_id": 1},
                          headers=alice)
    assert stale.status_code == 409
    assert stale.json()["current_version_id"] == 2

    deleted = client.delete(f"/files/{file_id}", params={"device_id": "device-a", "parent_version_id": 2},
                            headers=alice)
    assert deleted.status_code == 200
    assert deleted.json()["is_tombstone"] is True

    assert client.get(f"/files/{file_id}/content", headers=alice).status_code == 404
    assert client.get("/files", headers=alice).json()["files"] == []
    listed = client.get("/files", params={"include_deleted": "true"}, headers=alice).json()["files"]
    assert [f["is_deleted"] for f in listed] == [True]

    undeleted = client.post(f"/files/{file_id}/undelete", json={"device_id": "device-a"}, headers=alice)
    assert undeleted.status_code == 200
    assert undeleted.json()["version_id"] == 4

    restored = client.post(f"/files/{file_id}/restore", json={"version_id": 1, "device_id": "device-a"},
                           headers=alice)
    assert restored.status_code == 200
    assert restored.json()["content_hash"] == ComputeContentHash(b"first")

    history = client.get(f"/files/{file_id}/versions", headers=alice).json()
    assert history["current_version_id"] == 5
    assert [v["version_id"] for v in history["versions"]] == [5, 4, 3, 2, 1]

    old = client.get(f"/files/{file_id}/content", params={"version_id": 2}, headers=alice)
    assert old.content == b"second"


def test_files_of_other_users_are_hidden(client, alice, bob):
    session = _Init(client, alice)
    file_id = _Submit(client, alice, session["session_id"], b"private").json()["version"]["file_id"]

    assert client.get(f"/files/{file_id}/content", headers=bob).status_code == 404
    assert client.get(f"/files/{file_id}/versions", headers=bob).status_code == 404
    assert client.get("/checksums", params={"file_ids": str(file_id)}, headers=bob).json() == {"checksums": {}}


def test_checksums_rejects_bad_ids(client, alice):
    response = client.get("/checksums", params={"file_ids": "1,abc"}, headers=alice)

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


def test_settings_admin_only(client, alice, admin):
    """Test reading and validating settings"""
    assert client.get("/settings", headers=alice).status_code == 403

    settings = client.get("/settings", headers=admin).json()["settings"]
    assert settings["conflict_policy"] == "manual"
    assert "cursor_secret" not in settings

    assert client.put("/settings", json={"settings": {"bogus": "1"}}, headers=admin).status_code == 400
    assert client.put("/settings", json={"settings": {"cursor_secret": "x"}}, headers=admin).status_code == 400
    assert client.put("/settings", json={"settings": {"sync_batch_size": "0"}}, headers=admin).status_code == 400
    assert client.put("/settings", json={"settings": {"conflict_policy": "newest"}}, headers=admin).status_code == 400

    updated = client.put("/settings", json={"settings": {
        "conflict_policy": "last_write_wins", "sync_batch_size": "25"
    }}, headers=admin)
    assert updated.status_code == 200
    assert updated.json()["settings"]["conflict_policy"] == "last_write_wins"
    assert updated.json()["settings"]["sync_batch_size"] == "25"
