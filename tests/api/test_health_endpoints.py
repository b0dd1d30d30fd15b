"""
Tests for health check endpoints.
"""
from unittest.mock import MagicMock, patch

import pytest

from walios.api.health import ComponentHealth, HealthStatus, check_ai_providers, determine_overall_status


def _health(status: HealthStatus) -> ComponentHealth:
    return ComponentHealth(status=status, latency_ms=1.0)


class TestHealthEndpoints:
    """Tests for /health."""

    @pytest.mark.asyncio
    async def test_basic_and_live(self, client):
        for path in ("/health", "/health/live"):
            response = await client.get(path)
            assert response.status_code == 200
            assert response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_ready_degraded_without_redis(self, client):
        with patch("walios.api.health.check_database", return_value=_health(HealthStatus.HEALTHY)), patch(
            "walios.api.health.check_redis", return_value=_health(HealthStatus.UNHEALTHY)
        ):
            response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_ready_unhealthy_without_database(self, client):
        with patch("walios.api.health.check_database", return_value=_health(HealthStatus.UNHEALTHY)), patch(
            "walios.api.health.check_redis", return_value=_health(HealthStatus.HEALTHY)
        ):
            response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["components"]["database"]["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")
        assert response.json()["name"] == "WALI-OS"


class TestDetermineOverallStatus:
    def test_all_healthy(self):
        components = {"database": _health(HealthStatus.HEALTHY), "redis": _health(HealthStatus.HEALTHY)}
        assert determine_overall_status(components) == HealthStatus.HEALTHY

    def test_database_down_is_unhealthy(self):
        components = {"database": _health(HealthStatus.UNHEALTHY), "redis": _health(HealthStatus.HEALTHY)}
        assert determine_overall_status(components) == HealthStatus.UNHEALTHY


class TestCheckAIProviders:
    """Tests for the AI vendor readiness component."""

    @staticmethod
    def _provider(openai: bool, anthropic: bool) -> MagicMock:
        provider = MagicMock()
        provider.get_provider_status.return_value = {
            "providers": {"openai": {"configured": openai}, "anthropic": {"configured": anthropic}}
        }
        return provider

    def test_both_configured(self):
        assert check_ai_providers(self._provider(True, True)).status == HealthStatus.HEALTHY

    def test_no_failover(self):
        result = check_ai_providers(self._provider(True, False))

        assert result.status == HealthStatus.DEGRADED
        assert "openai" in result.message

    def test_none_configured(self):
        result = check_ai_providers(self._provider(False, False))

        assert result.status == HealthStatus.DEGRADED
        assert "rule-based" in result.message
