"""
Tests for the HTTP API.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from src.clients.base import StorageError
from src.clients.memory_store import InMemoryIdentityStore
from src.config import settings
from src.main import app
from src.services.auth_service import AuthenticationService, get_auth_service
from src.services.matching_service import MatchingService
from src.services.rate_limiter import InMemoryAttemptTracker, RateLimiter

ASHA = [0.1, 0.2, 0.3]
RATE_LIMIT_MESSAGE = "Too many login attempts. Please wait 5 minutes."


@pytest.fixture
def auth_service():
    """Fresh service per test so identities and attempts never leak between tests."""
    return AuthenticationService(
        store=InMemoryIdentityStore(),
        matcher=MatchingService(threshold=0.6),
        rate_limiter=RateLimiter(
            tracker=InMemoryAttemptTracker(),
            window_seconds=300,
            max_attempts=10
        )
    )


@pytest.fixture
def client(auth_service):
    app.dependency_overrides[get_auth_service] = lambda: auth_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def register(client, name="Asha", embedding=ASHA):
    return client.post("/register-face", json={"name": name, "embedding": embedding})


def login(client, embedding=ASHA, headers=None):
    return client.post("/login-face", json={"embedding": embedding}, headers=headers)


class TestRegisterFace:
    """Test cases for POST /register-face."""

    def test_register_success(self, client, auth_service):
        response = register(client)

        assert response.status_code == 201
        data = response.json()
        assert data["message"] == "User registered successfully"
        assert data["user"]["name"] == "Asha"
        assert data["user"]["id"]
        assert "embedding" not in data["user"]

    def test_register_same_name_twice_creates_two_identities(self, client):
        first = register(client)
        second = register(client)

        assert first.status_code == second.status_code == 201
        assert first.json()["user"]["id"] != second.json()["user"]["id"]

    @pytest.mark.parametrize("body", [
        {"name": "Asha", "embedding": "not-an-array"},
        {"name": "Asha"},
        {"embedding": ASHA},
        {"name": "", "embedding": ASHA},
        {"name": "Asha", "embedding": []},
        {"name": "Asha", "embedding": [0.1, "x"]},
    ])
    def test_register_invalid_body(self, client, auth_service, body):
        response = client.post("/register-face", json=body)

        assert response.status_code == 400
        assert response.json() == {"error": "Name and embedding are required"}

    def test_register_invalid_body_stores_nothing(self, client, auth_service):
        client.post("/register-face", json={"name": "Asha", "embedding": "not-an-array"})

        assert len(auth_service.store) == 0

    @pytest.mark.parametrize("content", [b"{not json", b"", b"[1, 2, 3]", b"\xff\xfe"])
    def test_register_unparseable_body(self, client, content):
        response = client.post(
            "/register-face",
            content=content,
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Name and embedding are required"}

    def test_register_dimension_mismatch(self, client):
        register(client)

        response = register(client, name="Ravi", embedding=[0.1, 0.2])

        assert response.status_code == 400
        assert response.json() == {"error": "Embedding must have 3 values"}

    def test_register_storage_failure(self, client, auth_service):
        auth_service.store.insert = AsyncMock(side_effect=StorageError("connection refused"))

        response = register(client)

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to register user"}

    def test_register_unexpected_failure(self, client, auth_service):
        auth_service.register = AsyncMock(side_effect=RuntimeError("boom"))

        response = register(client)

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to register user"}


class TestLoginFace:
    """Test cases for POST /login-face."""

    def test_login_identical_embedding(self, client):
        user_id = register(client).json()["user"]["id"]

        response = login(client)

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Login successful"
        assert data["user"] == {"id": user_id, "name": "Asha"}
        assert data["distance"] == 0.0

    def test_login_distant_embedding_not_recognized(self, client):
        register(client)

        response = login(client, embedding=[0.9, 0.2, 0.3])

        assert response.status_code == 401
        assert response.json() == {"error": "Face not recognized. Please register or try again."}

    def test_login_with_no_identities(self, client):
        response = login(client)

        assert response.status_code == 401

    @pytest.mark.parametrize("body", [{}, {"embedding": "not-an-array"}, {"embedding": []}])
    def test_login_invalid_body(self, client, body):
        response = client.post("/login-face", json=body)

        assert response.status_code == 400
        assert response.json() == {"error": "Embedding is required"}

    def test_login_unparseable_body(self, client):
        response = client.post(
            "/login-face",
            content=b"{not json",
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Embedding is required"}

    def test_eleventh_attempt_rate_limited(self, client):
        register(client)

        for _ in range(10):
            assert login(client).status_code == 200

        response = login(client)

        assert response.status_code == 429
        assert response.json() == {"error": RATE_LIMIT_MESSAGE}
        assert 1 <= int(response.headers["Retry-After"]) <= 300

    def test_failed_attempts_count_towards_rate_limit(self, client):
        register(client)

        for _ in range(10):
            assert login(client, embedding=[9.0, 9.0, 9.0]).status_code == 401

        assert login(client).status_code == 429

    def test_forwarded_for_ignored_by_default(self, client):
        for i in range(10):
            login(client, headers={"X-Forwarded-For": f"203.0.113.{i}"})

        response = login(client, headers={"X-Forwarded-For": "198.51.100.1"})

        assert response.status_code == 429

    def test_forwarded_for_honoured_when_trusted(self, client):
        register(client)

        with patch.object(settings, "trust_forwarded_for", True):
            for _ in range(10):
                login(client, headers={"X-Forwarded-For": "203.0.113.5, 10.0.0.1"})

            blocked = login(client, headers={"X-Forwarded-For": "203.0.113.5"})
            other = login(client, headers={"X-Forwarded-For": "198.51.100.1"})

        assert blocked.status_code == 429
        assert other.status_code == 200

    def test_login_storage_failure(self, client, auth_service):
        auth_service.store.list_all = AsyncMock(side_effect=StorageError("connection refused"))

        response = login(client)

        assert response.status_code == 500
        assert response.json() == {"error": "Authentication failed"}

    def test_login_unexpected_failure(self, client, auth_service):
        auth_service.login = AsyncMock(side_effect=RuntimeError("boom"))

        response = login(client)

        assert response.status_code == 500
        assert response.json() == {"error": "Authentication failed"}


class TestHealthAndHeaders:
    """Test cases for the health endpoint and response headers."""

    def test_healthz(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["components"] == {"identity_store": "healthy"}

    def test_healthz_degraded(self, client, auth_service):
        auth_service.store.health_check = AsyncMock(return_value=False)

        response = client.get("/healthz")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_security_headers(self, client):
        response = register(client)

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Cache-Control"] == "no-store"

    def test_call_id_echoed(self, client):
        response = login(client, headers={"X-Call-ID": "call-123"})

        assert response.headers["X-Call-ID"] == "call-123"

    def test_call_id_generated(self, client):
        response = login(client)

        assert response.headers["X-Call-ID"].startswith("req_")
