"""
Tests for Main Application setup.

Tests the root and metrics endpoints, request validation handling and the
lifespan wiring of the shared provider clients.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient


class TestRootEndpoints:
    """Tests for root and metrics endpoints."""

    def test_root(self, api_client):
        response = api_client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "running"
        assert "version" in data

    def test_metrics(self, api_client):
        api_client.get("/")

        response = api_client.get("/metrics")

        assert response.status_code == 200
        assert "vps_billing_http_requests_total" in response.text


class TestValidationHandler:
    """Request validation errors are returned as sanitized 422 responses."""

    def test_sanitized_errors(self, api_client, user_id, make_token):
        response = api_client.post(
            "/v1/checkout/verify-session",
            json={},
            headers={"Authorization": f"Bearer {make_token(user_id)}"},
        )

        assert response.status_code == 422
        [error] = response.json()["detail"]
        assert error["type"] == "missing"
        assert error["loc"] == ["body", "session_id"]


class TestLifespan:
    """Provider clients are built on startup and closed on shutdown."""

    def test_builds_and_closes_clients(self, provider, processor):
        from app.main import app

        processor.aclose = AsyncMock()
        close_engines = AsyncMock()
        with (
            patch("app.main.build_provisioning_provider", return_value=provider),
            patch("app.main.build_payment_processor", return_value=processor),
            patch("app.main.close_engines", close_engines),
        ):
            with TestClient(app):
                assert app.state.provisioning_provider is provider
                assert app.state.payment_processor is processor
                assert provider.closed is False

        assert provider.closed is True
        processor.aclose.assert_awaited_once()
        close_engines.assert_awaited_once()


class TestCors:
    """Cross-origin access is limited to the configured origins."""

    def test_unlisted_origin_not_allowed(self, api_client):
        response = api_client.get("/", headers={"Origin": "https://elsewhere.example.com"})

        assert response.status_code == 200
        assert "access-control-allow-origin" not in response.headers

    def test_middleware_uses_configured_origins(self):
        from fastapi.middleware.cors import CORSMiddleware

        from app.config import settings
        from app.main import app

        [cors] = [m for m in app.user_middleware if m.cls is CORSMiddleware]
        assert cors.kwargs["allow_origins"] == settings.cors_allow_origins
        assert cors.kwargs["allow_credentials"] is False
