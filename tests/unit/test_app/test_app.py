"""Tests for the application factory, lifespan and exception handlers."""

from __future__ import annotations

from fastapi import FastAPI, status
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
import pytest

from bandera_service.app.exception_handlers import PROBLEM_JSON, configure_exception_handlers
from bandera_service.app.main import create_app
from bandera_service.core.exceptions import (
    AccessDeniedException,
    NotFoundException,
    ServiceUnavailableException,
)


@pytest.mark.unit
class TestCreateApp:
    def test_routes_registered(self, app: FastAPI) -> None:
        paths = {route.path for route in app.routes}

        assert {"/metrics", "/ws", "/ws/stats"} <= paths

    def test_metadata_from_settings(self, app: FastAPI) -> None:
        assert app.title == "Bandera Feature Flags"

    @pytest.mark.asyncio
    async def test_metrics_endpoint(self, client: AsyncClient) -> None:
        response = await client.get("/metrics")

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
        assert "cache_hits_total" in response.text


@pytest.mark.unit
class TestExceptionHandlers:
    """AppException subclasses become RFC 7807 responses."""

    @pytest.fixture
    def failing_app(self) -> FastAPI:
        app = FastAPI()
        configure_exception_handlers(app)

        @app.get("/missing")
        async def missing() -> None:
            raise NotFoundException(
                "Feature flag abc not found",
                type="flag-not-found",
                extra={"flag_id": "abc"},
            )

        @app.get("/denied")
        async def denied() -> None:
            raise AccessDeniedException()

        @app.get("/crash")
        async def crash() -> None:
            msg = "unexpected"
            raise RuntimeError(msg)

        return app

    @pytest.fixture
    async def failing_client(self, failing_app: FastAPI):
        transport = ASGITransport(app=failing_app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

    @pytest.mark.asyncio
    async def test_not_found(self, failing_client: AsyncClient) -> None:
        response = await failing_client.get("/missing")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.headers["content-type"] == PROBLEM_JSON
        body = response.json()
        assert body["type"] == "flag-not-found"
        assert body["flag_id"] == "abc"
        assert body["instance"] == "http://test/missing"

    @pytest.mark.asyncio
    async def test_access_denied(self, failing_client: AsyncClient) -> None:
        response = await failing_client.get("/denied")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["type"] == "access-denied"

    @pytest.mark.asyncio
    async def test_unexpected_error_hides_details(self, failing_client: AsyncClient) -> None:
        response = await failing_client.get("/crash")

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        body = response.json()
        assert body["type"] == "internal-error"
        assert "unexpected" not in body["detail"]


@pytest.mark.unit
class TestLifespan:
    """Startup wires every service; shutdown tears them down."""

    def test_services_available_while_running(self) -> None:
        from bandera_service.features.featureflags.dependencies import get_feature_flag_service
        from bandera_service.features.featureflags.service import FeatureFlagService
        from bandera_service.infra.realtime import get_connection_manager

        with pytest.raises(ServiceUnavailableException):
            get_feature_flag_service()

        with TestClient(create_app()) as client:
            assert isinstance(get_feature_flag_service(), FeatureFlagService)
            assert get_connection_manager().is_running
            assert client.get("/ws/stats").json() == {"total_connections": 0}
            assert "application_info" in client.get("/metrics").text

        with pytest.raises(RuntimeError):
            get_connection_manager()
        with pytest.raises(ServiceUnavailableException):
            get_feature_flag_service()

    def test_flag_service_end_to_end_events(self) -> None:
        """A mutation through the wired service reaches a WebSocket subscriber."""
        from uuid import uuid4

        from bandera_service.features.featureflags.dependencies import get_feature_flag_service
        from bandera_service.features.featureflags.schemas import FeatureFlagCreate

        user_id = uuid4()
        with TestClient(create_app()) as client, client.websocket_connect("/ws") as ws:
            ws.receive_json()
            service = get_feature_flag_service()

            flag = client.portal.call(
                service.create_flag,
                FeatureFlagCreate(key="dark_mode", default_value="false"),
                user_id,
            )

            message = ws.receive_json()
            assert message["event"] == "feature_flag.created"
            assert message["data"]["flag"]["id"] == str(flag.id)
            assert message["data"]["user_id"] == str(user_id)
