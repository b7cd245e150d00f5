"""
Unit tests for Gateway main service.
"""

import asyncio
import json
from urllib.parse import unquote

import httpx
import pytest
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_gateway.app.config import GatewayConfig
from service_gateway.app.main import GatewayService, create_app
from shared.test_helpers import (
    FakeCounterStore,
    ManualClock,
    MockTokenGenerator,
    TestEnvironment,
    TestUser,
    UpstreamRecorder,
)


class TestGatewayService:
    """Test cases for GatewayService."""

    @pytest.fixture
    def config(self):
        return GatewayConfig(**TestEnvironment.get_mock_config())

    @pytest.fixture
    def clock(self):
        return ManualClock()

    @pytest.fixture
    def store(self, clock):
        return FakeCounterStore(clock)

    @pytest.fixture
    def upstream(self):
        return UpstreamRecorder()

    @pytest.fixture
    def gateway_service(self, config, store, upstream, clock):
        """Create GatewayService instance wired to in-memory fakes."""
        return GatewayService(
            config,
            redis_client=store,
            http_client=httpx.AsyncClient(transport=upstream.transport),
            clock=clock,
        )

    @pytest.fixture
    def client(self, gateway_service):
        """Create test client."""
        return TestClient(gateway_service.app)

    @pytest.fixture
    def auth_headers(self, config):
        user = TestUser(user_id="user-pro", email="pro@nexus.dev", plan="pro")
        token = MockTokenGenerator(config.jwt_secret).generate_access_token(user)
        return {"Authorization": f"Bearer {token}"}

    def test_root_endpoint(self, client):
        """Test root endpoint."""
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {
            "service": "gateway",
            "message": "Secure Gateway Running",
            "version": "1.0.0",
        }

    def test_health_endpoint(self, client):
        """Test health endpoint."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "gateway"
        assert data["status"] == "ok"
        assert data["dependencies"] == {"redis": "ok"}

    def test_health_degraded_when_store_down(self, client, store):
        store.fail = True
        response = client.get("/health")
        assert response.status_code == 503
        assert response.json()["status"] == "degraded"

    def test_metrics_endpoint(self, client):
        """Test metrics endpoint."""
        client.get("/")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "text/plain" in response.headers["content-type"]

    def test_security_headers(self, client):
        response = client.get("/")
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "SAMEORIGIN"
        assert "server" not in response.headers

    def test_request_id_is_echoed(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-abc"})
        assert response.headers["x-request-id"] == "req-abc"

    def test_request_id_is_generated(self, client):
        assert client.get("/").headers["x-request-id"]

    def test_cors_allows_frontend_origin(self, client):
        response = client.options(
            "/api/resume/list",
            headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "POST"},
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:5173"
        assert response.headers["access-control-allow-credentials"] == "true"

    def test_cors_rejects_other_origin(self, client):
        response = client.options(
            "/api/resume/list",
            headers={"Origin": "http://evil.example", "Access-Control-Request-Method": "POST"},
        )
        assert "access-control-allow-origin" not in response.headers

    @pytest.mark.parametrize("path", ["/nope", "/api", "/api/unknown/thing", "/api/authx"])
    def test_unmatched_path(self, client, upstream, path):
        response = client.get(path)
        assert response.status_code == 404
        assert response.json() == {"error": "Route not found"}
        assert upstream.requests == []

    def test_protected_route_without_token(self, client, upstream):
        response = client.get("/api/resume/list")
        assert response.status_code == 401
        assert response.json() == {"error": "Access Denied. No token provided."}
        assert upstream.requests == []

    def test_protected_route_with_invalid_token(self, client, upstream):
        response = client.get("/api/resume/list", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid Token"}
        assert upstream.requests == []

    def test_proxies_with_identity_headers(self, client, upstream, auth_headers):
        response = client.get("/api/resume/list?page=2", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {
            "host": "resume.internal",
            "path": "/list",
            "query": "page=2",
            "method": "GET",
        }
        forwarded = upstream.last.headers
        assert forwarded["x-nexus-secret"] == "test-internal-secret-value"
        assert forwarded["x-user-id"] == "user-pro"
        assert forwarded["x-user-email"] == "pro@nexus.dev"
        assert forwarded["x-user-plan"] == "pro"
        assert forwarded["x-forwarded-for"] == "testclient"
        assert forwarded["x-request-id"] == response.headers["x-request-id"]

    def test_rate_limit_headers_on_proxied_response(self, client, auth_headers):
        response = client.get("/api/resume/list", headers=auth_headers)
        assert response.headers["ratelimit-limit"] == "100"
        assert response.headers["ratelimit-remaining"] == "99"

    def test_request_body_is_forwarded(self, client, upstream):
        response = client.post("/api/auth/login", json={"email": "a@nexus.dev", "password": "pw"})

        assert response.status_code == 200
        assert upstream.last.method == "POST"
        assert upstream.last.url.path == "/login"
        assert json.loads(upstream.bodies[-1]) == {"email": "a@nexus.dev", "password": "pw"}

    def test_downstream_errors_pass_through(self, client, upstream, auth_headers):
        upstream.responders["resume.internal"] = lambda request: httpx.Response(
            422, json={"message": "Resume title is required"}, headers={"X-Downstream": "resume"}
        )

        response = client.post("/api/resume/create", json={}, headers=auth_headers)

        assert response.status_code == 422
        assert response.json() == {"message": "Resume title is required"}
        assert response.headers["x-downstream"] == "resume"

    def test_store_failure_is_503(self, client, store, upstream):
        store.fail = True
        response = client.post("/api/auth/login", json={})

        assert response.status_code == 503
        assert response.json() == {"error": "Service temporarily unavailable"}
        assert upstream.requests == []

    def test_tier_gates_from_config(self, store, upstream, clock):
        settings = TestEnvironment.get_mock_config()
        settings["TIER_GATES"] = {"ats": "pro"}
        service = GatewayService(
            GatewayConfig(**settings),
            redis_client=store,
            http_client=httpx.AsyncClient(transport=upstream.transport),
            clock=clock,
        )
        client = TestClient(service.app)
        tokens = MockTokenGenerator(settings["JWT_SECRET"])
        free = tokens.generate_access_token(TestUser(user_id="u-free", email="f@nexus.dev", plan="free"))
        pro = tokens.generate_access_token(TestUser(user_id="u-pro", email="p@nexus.dev", plan="pro"))

        denied = client.post("/api/ats/analyze", headers={"Authorization": f"Bearer {free}"})
        allowed = client.post("/api/ats/analyze", headers={"Authorization": f"Bearer {pro}"})

        assert denied.status_code == 403
        assert denied.json() == {"error": "This feature requires the Pro plan.", "upgradeUrl": "/pricing"}
        assert allowed.status_code == 200
        assert len(upstream.requests) == 1

    def test_create_app(self, config, store):
        app = create_app(config, redis_client=store, http_client=httpx.AsyncClient())
        assert app.state.gateway_service.route_table.names()[0] == "auth-protected"


class TestUpstreamFailures:
    """Downstream outages surface as sanitized 502s."""

    @pytest.fixture(params=[httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout, httpx.RemoteProtocolError])
    def client(self, request):
        error_type = request.param

        def fail(upstream_request):
            raise error_type("upstream failure", request=upstream_request)

        service = GatewayService(
            GatewayConfig(**TestEnvironment.get_mock_config()),
            redis_client=FakeCounterStore(ManualClock()),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(fail)),
            clock=ManualClock(),
        )
        return TestClient(service.app)

    def test_transport_failure_is_502(self, client):
        user = TestUser(user_id="u1", email="u1@nexus.dev")
        token = MockTokenGenerator().generate_access_token(user)

        response = client.post("/api/ats/analyze", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 502
        assert response.json() == {"error": "ATS Service Down"}

    def test_public_route_outage(self, client):
        response = client.post("/api/auth/login", json={})
        assert response.status_code == 502
        assert response.json() == {"error": "Auth Service Down"}


async def _asgi_request(app, method, raw_path, headers=()):
    """Call the ASGI app directly with an exact raw path.

    TestClient normalizes dot segments before sending, so it cannot
    reproduce what a raw HTTP client puts on the wire.
    """
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": unquote(raw_path),
        "raw_path": raw_path.encode("latin-1"),
        "root_path": "",
        "query_string": b"",
        "headers": [(b"host", b"gateway.nexus.dev"), *headers],
        "client": ("203.0.113.7", 51000),
        "server": ("gateway.nexus.dev", 80),
    }
    messages = []
    delivered = False

    async def receive():
        nonlocal delivered
        if not delivered:
            delivered = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await asyncio.Event().wait()

    async def send(message):
        messages.append(message)

    await app(scope, receive, send)

    start = next(message for message in messages if message["type"] == "http.response.start")
    body = b"".join(message.get("body", b"") for message in messages if message["type"] == "http.response.body")
    return start["status"], json.loads(body)


class TestPathNormalization:
    """Dot segments never reach route matching or the downstream."""

    @pytest.fixture
    def upstream(self):
        return UpstreamRecorder()

    @pytest.fixture
    def app(self, upstream):
        service = GatewayService(
            GatewayConfig(**TestEnvironment.get_mock_config()),
            redis_client=FakeCounterStore(ManualClock()),
            http_client=httpx.AsyncClient(transport=upstream.transport),
            clock=ManualClock(),
        )
        return service.app

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method,raw_path", [
        ("POST", "/api/payment/webhook/../create-checkout-session"),
        ("GET", "/api/auth/login/../me"),
        ("GET", "/api/auth/login/%2e%2e/me"),
        ("GET", "/api/auth/login/%2E%2E/password"),
        ("GET", "/api/auth/login/%252e%252e/me"),
        ("GET", "/api/resume/./list"),
        ("GET", "/api/auth/login/..%2fme"),
    ])
    async def test_dot_segments_are_rejected(self, app, upstream, method, raw_path):
        status, body = await _asgi_request(app, method, raw_path)

        assert status == 404
        assert body == {"error": "Route not found"}
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_dotted_file_names_are_proxied(self, app, upstream):
        status, body = await _asgi_request(app, "POST", "/api/payment/webhook/v1.2")

        assert status == 200
        assert body["path"] == "/webhook/v1.2"
        assert len(upstream.requests) == 1


class TestApiDocs:
    """Interactive docs are only served in the local environment."""

    def _service(self, settings):
        return GatewayService(
            GatewayConfig(**settings),
            redis_client=FakeCounterStore(ManualClock()),
            http_client=httpx.AsyncClient(transport=UpstreamRecorder().transport),
        )

    @pytest.mark.parametrize("path", ["/docs", "/redoc", "/openapi.json"])
    def test_docs_hidden_outside_local(self, monkeypatch, path):
        monkeypatch.delenv("GATEWAY_ENV", raising=False)
        settings = TestEnvironment.get_mock_config()
        del settings["GATEWAY_ENV"]
        service = self._service(settings)

        response = TestClient(service.app).get(path)

        assert service.config.env == "production"
        assert response.status_code == 404

    def test_docs_served_locally(self):
        settings = TestEnvironment.get_mock_config()
        settings["GATEWAY_ENV"] = "local"
        service = self._service(settings)

        assert TestClient(service.app).get("/openapi.json").status_code == 200
