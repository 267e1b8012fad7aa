"""
Shared fixtures for VaultSync Server tests

Each test gets its own SQLite database and blob store under tmp_path.
"""

import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import database
import sync_sessions
from managers.database_manager import DatabaseManager
from managers.blob_manager import BlobManager


@pytest.fixture
def db_manager(tmp_path):
    """Fresh, initialized database"""
    manager = DatabaseManager(db_path=str(tmp_path / "database" / "vaultsync-test.db"))
    manager.InitializeDatabase()
    return manager


@pytest.fixture
def blob_manager(tmp_path):
    """Empty blob store without retry delays"""
    manager = BlobManager(storage_root=str(tmp_path / "storage"), retry_backoff_seconds=0)
    manager.InitializeStorage()
    return manager


@pytest.fixture
def user(db_manager):
    return db_manager.CreateUser("alice", "alice-password")


@pytest.fixture
def other_user(db_manager):
    return db_manager.CreateUser("bob", "bob-password")


@pytest.fixture(autouse=True)
def clear_sync_sessions():
    sync_sessions._sessions.clear()
    yield
    sync_sessions._sessions.clear()


@pytest.fixture
def open_session(db_manager, user):
    """Start a sync session; defaults to alice on device-a"""
    def _open(device_id="device-a", user_id=None, cursor=None):
        return sync_sessions.InitializeSession(
            db_manager, user_id if user_id is not None else user.user_id, device_id, cursor
        )
    return _open


@pytest.fixture
def submit(db_manager, blob_manager):
    """Submit content through a sync session"""
    def _submit(session, content, file_id=None, parent_version_id=None, name="notes.txt", **kwargs):
        return sync_sessions.SubmitChange(
            db_manager, blob_manager, session.session_id, session.user_id,
            file_id, parent_version_id, content, name=name, **kwargs
        )
    return _submit


@pytest.fixture
def client(db_manager, blob_manager, monkeypatch, tmp_path):
    """TestClient against the app, wired to the test database and blob store"""
    from fastapi.testclient import TestClient

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(database, "db_manager", db_manager)
    monkeypatch.setattr(database, "blob_manager", blob_manager)

    from server import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def login(client):
    """Return bearer headers for a username/password"""
    def _login(username, password):
        response = client.post("/auth/login", json={"username": username, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['token']}"}
    return _login
