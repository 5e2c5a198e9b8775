"""Tests for RequestIDMiddleware and ActorMiddleware."""

import pytest
from uuid import UUID
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.testclient import TestClient

from api.middleware import ActorMiddleware, RequestIDMiddleware
from core.models import ActorContext


@pytest.fixture
def app():
    """Minimal FastAPI app with RequestIDMiddleware."""
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)

    @app.get("/test")
    async def test_endpoint(request: Request):
        return JSONResponse({"request_id": request.state.request_id})

    return app


@pytest.fixture
def client(app):
    return TestClient(app)


class TestRequestIDMiddleware:
    """Tests for RequestIDMiddleware."""

    def test_response_has_request_id_header(self, client):
        """Response includes X-Request-ID header."""
        response = client.get("/test")

        assert "X-Request-ID" in response.headers
        # Should be a valid UUID
        UUID(response.headers["X-Request-ID"])

    def test_request_state_has_request_id(self, client):
        """request.state.request_id is set and matches header."""
        response = client.get("/test")

        header_id = response.headers["X-Request-ID"]
        body_id = response.json()["request_id"]
        assert header_id == body_id

    def test_each_request_gets_unique_id(self, client):
        """Different requests get different IDs."""
        r1 = client.get("/test")
        r2 = client.get("/test")

        assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]


# =============================================================================
# ACTOR RESOLUTION
# =============================================================================


ACTOR_ID = UUID("00000000-0000-0000-0000-0000000000aa")


def _resolver(request):
    if request.headers.get("X-Actor-Id") == str(ACTOR_ID):
        return ActorContext(actor_id=ACTOR_ID, display_name="Designer")
    return None


@pytest.fixture
def actor_app():
    app = FastAPI()
    app.add_middleware(ActorMiddleware, resolve_actor=_resolver)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/whoami")
    async def whoami(request: Request):
        return JSONResponse({"actor_id": str(request.state.actor.actor_id)})

    @app.get("/health")
    async def health(request: Request):
        return JSONResponse({"has_actor": hasattr(request.state, "actor")})

    return app


@pytest.fixture
def actor_client(actor_app):
    return TestClient(actor_app)


class TestActorMiddleware:

    def test_resolved_actor_on_request_state(self, actor_client):
        response = actor_client.get("/whoami", headers={"X-Actor-Id": str(ACTOR_ID)})

        assert response.status_code == 200
        assert response.json() == {"actor_id": str(ACTOR_ID)}

    def test_unresolved_actor_returns_401(self, actor_client):
        response = actor_client.get("/whoami")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_AUTHENTICATED"
        assert body["meta"]["request_id"] == response.headers["X-Request-ID"]

    def test_public_path_skips_resolution(self, actor_client):
        response = actor_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"has_actor": False}
