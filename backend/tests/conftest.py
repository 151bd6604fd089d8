"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from fellowship_chat.config import AppSettings
from fellowship_chat.identity.gate import JwtIdentityGate
from fellowship_chat.identity.schemas import Identity, UserRole
from fellowship_chat.main import create_app
from fellowship_chat.messages.store import MessageStore

TEST_SECRET = "test-secret-key"


@pytest.fixture
def settings():
    """In-memory store and a short typing window."""
    return AppSettings(
        messages={"db_path": ":memory:", "page_size": 100},
        typing={"quiescence_seconds": 0.2},
        secrets={"jwt": {"secret_key": TEST_SECRET, "algorithm": "HS256"}},
    )


@pytest.fixture
def gate():
    return JwtIdentityGate(secret_key=TEST_SECRET)


@pytest.fixture
def token_for(gate):
    """Issue a bearer token for a user id and role."""
    def _issue(user_id: str, name: str = "", role: UserRole = UserRole.USER) -> str:
        identity = Identity(id=user_id, display_name=name or user_id.title(), role=role)
        return gate.issue_token(identity)
    return _issue


@pytest.fixture
def auth_header(token_for):
    def _header(user_id: str, role: UserRole = UserRole.USER) -> dict:
        return {"Authorization": f"Bearer {token_for(user_id, role=role)}"}
    return _header


@pytest.fixture
def store():
    store = MessageStore(db_path=":memory:")
    yield store
    store.close()


@pytest.fixture
def api_client(settings):
    """Provide a TestClient with the lifespan (and chat services) running."""
    app = create_app(settings)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def services(api_client):
    return api_client.app.state.services
