"""
Unit Tests for the Metrics Abstraction Layer

Test Coverage:
- MetricsClient interface implementations
- Backend selection via factory function
- Error handling on shutdown
- Request metrics tagged by route
"""

import pytest
import pytest_asyncio
from unittest.mock import Mock, patch, AsyncMock

from net.tessera.accounts.app.metrics import (
    MetricsClient,
    TelegrafCompatibilityClient,
    NoOpMetricsClient,
    create_metrics_client,
)
from net.tessera.accounts.app.config import MetricsClientAppKey
from tests.test_helpers import bearer


class TestMetricsClientInterface:
    """Test the abstract MetricsClient interface."""

    def test_interface_is_abstract(self):
        """MetricsClient should be abstract and not instantiable."""
        with pytest.raises(TypeError):
            MetricsClient()


class TestNoOpMetricsClient:
    """Test the NoOpMetricsClient implementation."""

    @pytest.fixture
    def noop_client(self):
        return NoOpMetricsClient()

    def test_noop_operations(self, noop_client):
        """NoOp operations should not raise exceptions."""
        noop_client.increment("test.counter", 1, {"tag": "value"})
        noop_client.increment("test.counter")
        noop_client.gauge("test.gauge", 42.5, {"tag": "value"})
        noop_client.timer("test.timer", 0.25)

    async def test_noop_connect_and_close(self, noop_client):
        await noop_client.connect()
        await noop_client.close()


class TestTelegrafCompatibilityClient:
    """Test the TelegrafCompatibilityClient wrapper."""

    @pytest.fixture
    def mock_telegraf_client(self):
        """Create a mock TelegrafStatsdClient."""
        mock = Mock()
        mock.connect = AsyncMock()
        mock.close = AsyncMock()
        return mock

    @pytest.fixture
    def telegraf_client(self, mock_telegraf_client):
        return TelegrafCompatibilityClient(mock_telegraf_client)

    def test_telegraf_increment(self, telegraf_client, mock_telegraf_client):
        """Telegraf increment should delegate to underlying client."""
        telegraf_client.increment("accounts.login.failed", 3, {"method": "POST"})

        mock_telegraf_client.increment.assert_called_once_with(
            "accounts.login.failed", 3, tag_dict={"method": "POST"}
        )

    def test_telegraf_gauge(self, telegraf_client, mock_telegraf_client):
        telegraf_client.gauge("accounts.health.value", 4)

        mock_telegraf_client.gauge.assert_called_once_with(
            "accounts.health.value", 4, tag_dict={}
        )

    def test_telegraf_timer(self, telegraf_client, mock_telegraf_client):
        telegraf_client.timer("accounts.server.request.time", 1.234, {"path": "/login"})

        mock_telegraf_client.timer.assert_called_once_with(
            "accounts.server.request.time", 1.234, tag_dict={"path": "/login"}
        )

    async def test_telegraf_connect_and_close(
        self, telegraf_client, mock_telegraf_client
    ):
        await telegraf_client.connect()
        await telegraf_client.close()

        mock_telegraf_client.connect.assert_awaited_once()
        mock_telegraf_client.close.assert_awaited_once()

    async def test_telegraf_close_error_handling(self):
        """Close errors are logged, not raised."""
        mock_client = Mock()
        mock_client.close = AsyncMock(side_effect=Exception("Connection error"))

        await TelegrafCompatibilityClient(mock_client).close()


class TestMetricsClientFactory:
    """Test the create_metrics_client factory function."""

    def test_factory_creates_noop_client(self):
        assert isinstance(create_metrics_client("none"), NoOpMetricsClient)

    @patch("net.tessera.accounts.app.metrics.TelegrafStatsdClient")
    def test_factory_creates_telegraf_client(self, mock_telegraf_class):
        client = create_metrics_client("telegraf", host="telegraf", port=8125, debug=True)

        assert isinstance(client, TelegrafCompatibilityClient)
        mock_telegraf_class.assert_called_once_with(
            host="telegraf", port=8125, debug=True
        )

    def test_factory_uses_preconfigured_telegraf_client(self):
        preconfigured = Mock()
        client = create_metrics_client("telegraf", telegraf_client=preconfigured)

        assert isinstance(client, TelegrafCompatibilityClient)
        assert client.client is preconfigured

    def test_factory_handles_case_insensitive_backends(self):
        assert isinstance(create_metrics_client("NONE"), NoOpMetricsClient)

    def test_factory_handles_invalid_backend(self):
        with pytest.raises(ValueError, match="Invalid metrics backend"):
            create_metrics_client("otel")


class TestRequestMetrics:
    """Request metrics are tagged with the matched route template."""

    @pytest.fixture
    def metrics_client(self, app):
        metrics_client = Mock()
        app[MetricsClientAppKey] = metrics_client
        return metrics_client

    @pytest_asyncio.fixture
    async def metrics_http_client(self, aiohttp_client, app, metrics_client):
        return await aiohttp_client(app)

    async def test_path_tag_uses_route_template(
        self, metrics_http_client, metrics_client
    ):
        for handle in ("alice", "bob"):
            resp = await metrics_http_client.get(f"/user/{handle}")
            assert resp.status == 404

        metrics_client.increment.assert_any_call(
            "accounts.server.request.count",
            1,
            tag_dict={"path": "/user/{handle}", "method": "GET", "status": 404},
        )
        paths = {
            call.kwargs["tag_dict"]["path"]
            for call in metrics_client.increment.call_args_list
            if call.args[0] == "accounts.server.request.count"
        }
        assert paths == {"/user/{handle}"}

    async def test_unmatched_path(self, metrics_http_client, metrics_client):
        resp = await metrics_http_client.get("/no/such/page")
        assert resp.status == 404

        metrics_client.increment.assert_any_call(
            "accounts.server.request.count",
            1,
            tag_dict={"path": "unmatched", "method": "GET", "status": 404},
        )

    async def test_auth_rejection_tag(self, metrics_http_client, metrics_client):
        resp = await metrics_http_client.get("/auth/check", headers=bearer("garbage"))
        assert resp.status == 403

        metrics_client.increment.assert_any_call(
            "accounts.auth.rejected",
            1,
            tag_dict={"missing": "false", "path": "/auth/check"},
        )
