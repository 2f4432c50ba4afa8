"""
Unit tests for the main FastAPI application.

- FastAPI app initialization and configuration
- Lifespan events (startup and shutdown)
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from commrelay.core.services.router import ChannelRouter
from commrelay.core.services.status_store import StatusStore
from commrelay.main import app, lifespan


class TestAppConfiguration:

    def test_app_title(self):
        assert app.title == "CommRelay"

    def test_app_version(self):
        assert app.version == "1.0.0"

    def test_app_docs_urls(self):
        assert app.openapi_url == "/openapi.json"
        assert app.docs_url == "/docs"
        assert app.redoc_url == "/redoc"

    def test_routes_registered(self):
        paths = {route.path for route in app.routes}
        assert {"/messages", "/messages/{message_id}", "/traces/{trace_id}/messages"} <= paths


class TestLifespan:

    @pytest.fixture
    def lifespan_mocks(self):
        """Provide common mocks for all lifespan tests."""
        with (
            patch("commrelay.main.init_db", new_callable=AsyncMock) as mock_init_db,
            patch("commrelay.main.dispose_db", new_callable=AsyncMock) as mock_dispose_db,
            patch("commrelay.main.RedisService") as mock_redis,
            patch("commrelay.main.build_event_log") as mock_build_event_log,
            patch("commrelay.main.get_connection", new_callable=AsyncMock) as mock_get_conn,
            patch("commrelay.main.close_connection", new_callable=AsyncMock) as mock_close_conn,
            patch("commrelay.main.MessagePublisher") as mock_publisher_class,
            patch("commrelay.main.start_consumers", new_callable=AsyncMock) as mock_start,
            patch("commrelay.main.BrevoService") as mock_brevo,
            patch("commrelay.main.TwilioService") as mock_twilio,
            patch("commrelay.main.settings") as mock_settings,
        ):
            mock_redis.init = AsyncMock()
            mock_redis.aclose = AsyncMock()
            mock_brevo.init = AsyncMock()
            mock_brevo.aclose = AsyncMock()
            mock_twilio.init = AsyncMock()
            mock_twilio.aclose = AsyncMock()
            mock_build_event_log.return_value = AsyncMock()
            mock_publisher_class.return_value = AsyncMock()
            mock_start.return_value = AsyncMock()

            mock_settings.DEDUP_BACKEND = "memory"
            mock_settings.DEDUP_TTL_SECONDS = 60
            mock_settings.DEDUP_FAILURE_POLICY = "open"
            mock_settings.DELIVERY_MAX_RETRIES = 3
            mock_settings.DELIVERY_MODE = "simulated"
            mock_settings.ENABLE_MESSAGING = False

            yield {
                "init_db": mock_init_db,
                "dispose_db": mock_dispose_db,
                "redis": mock_redis,
                "event_log": mock_build_event_log.return_value,
                "get_connection": mock_get_conn,
                "close_connection": mock_close_conn,
                "publisher": mock_publisher_class.return_value,
                "start_consumers": mock_start,
                "brevo": mock_brevo,
                "twilio": mock_twilio,
                "settings": mock_settings,
            }

    @pytest.mark.asyncio
    async def test_startup_builds_pipeline(self, lifespan_mocks):
        test_app = MagicMock()

        async with lifespan(test_app):
            assert isinstance(test_app.state.channel_router, ChannelRouter)
            assert isinstance(test_app.state.status_store, StatusStore)
            lifespan_mocks["init_db"].assert_awaited_once()
            lifespan_mocks["event_log"].start.assert_awaited_once()
            lifespan_mocks["redis"].init.assert_not_called()
            lifespan_mocks["start_consumers"].assert_not_called()

        lifespan_mocks["publisher"].close.assert_awaited_once()
        lifespan_mocks["close_connection"].assert_awaited_once()
        lifespan_mocks["event_log"].close.assert_awaited_once()
        lifespan_mocks["dispose_db"].assert_awaited_once()

    @pytest.mark.asyncio
    async def test_redis_backend_initializes_redis(self, lifespan_mocks):
        lifespan_mocks["settings"].DEDUP_BACKEND = "redis"

        async with lifespan(MagicMock()):
            lifespan_mocks["redis"].init.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_messaging_enabled_starts_consumers(self, lifespan_mocks):
        lifespan_mocks["settings"].ENABLE_MESSAGING = True
        running = lifespan_mocks["start_consumers"].return_value

        async with lifespan(MagicMock()):
            lifespan_mocks["start_consumers"].assert_awaited_once()
            lifespan_mocks["brevo"].init.assert_not_called()

        running.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_live_mode_initializes_providers(self, lifespan_mocks):
        lifespan_mocks["settings"].ENABLE_MESSAGING = True
        lifespan_mocks["settings"].DELIVERY_MODE = "live"

        async with lifespan(MagicMock()):
            lifespan_mocks["brevo"].init.assert_awaited_once()
            lifespan_mocks["twilio"].init.assert_awaited_once()
