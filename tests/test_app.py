"""Tests for the app factory: health, error envelope, CORS, rate limiting."""

from __future__ import annotations

from fastapi.testclient import TestClient

from storefront.app import STATUS_BY_KIND, create_app
from storefront.config import Settings
from storefront.errors import ErrorKind


class TestFactory:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_every_error_kind_mapped(self):
        assert set(STATUS_BY_KIND) == set(ErrorKind)
        assert STATUS_BY_KIND[ErrorKind.CONFLICT] == 409

    def test_injected_store_exposed(self, settings, store):
        app = create_app(settings=settings, store=store)
        assert app.state.store is store

    def test_cors_preflight(self, client):
        resp = client.options(
            "/api/admin/orders",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://localhost:3000"

    def test_cors_unknown_origin(self, client):
        resp = client.get("/health", headers={"Origin": "https://evil.example"})
        assert "access-control-allow-origin" not in resp.headers


class TestRateLimit:
    def test_limit_exceeded(self, store):
        settings = Settings(webhook_secret="s", rate_limit="2/minute", log_level="WARNING")
        with TestClient(create_app(settings=settings, store=store)) as c:
            assert c.get("/health").status_code == 200
            assert c.get("/health").status_code == 200
            resp = c.get("/health")
        assert resp.status_code == 429
        assert resp.json() == {"success": False, "error": "Rate limit exceeded"}
