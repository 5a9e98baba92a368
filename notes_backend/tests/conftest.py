import pytest
from fastapi.testclient import TestClient

from notes_backend.api.main import create_app
from notes_database import NoteStore
from notes_database.config import Settings


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a fresh SQLite file, with a cheap bcrypt work factor."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'notes.sqlite'}",
        max_connections=4,
        timeout_seconds=5.0,
        secret_key="test-secret",
        bcrypt_rounds=4,
        log_level="WARNING",
    )


@pytest.fixture
def store(settings):
    """NoteStore injected into the app; the app initialises and closes it."""
    store = NoteStore.from_settings(settings)
    yield store
    store.close()


@pytest.fixture
def client(store, settings):
    """Fixture for FastAPI TestClient with the test store injected."""
    app = create_app(store=store, settings=settings)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def user_data():
    """Returns default user data for registration."""
    return {"username": "alice", "password": "pw123"}


@pytest.fixture
def second_user_data():
    """Returns a second user's data."""
    return {"username": "bob", "password": "bobpassword456"}


def register_and_auth(client, username, password):
    """Helper for registering then logging in to get a bearer token."""
    r1 = client.post("/api/register", json={"username": username, "password": password})
    assert r1.status_code in (201, 400)

    r2 = client.post("/api/login", json={"username": username, "password": password})
    assert r2.status_code == 200
    return r2.json()["token"]


@pytest.fixture
def auth_header(client, user_data):
    """Returns {'Authorization': 'Bearer <token>'} for default user."""
    token = register_and_auth(client, user_data["username"], user_data["password"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def second_auth_header(client, second_user_data):
    """Returns auth header for second user."""
    token = register_and_auth(client, second_user_data["username"], second_user_data["password"])
    return {"Authorization": f"Bearer {token}"}
