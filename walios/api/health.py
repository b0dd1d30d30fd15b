"""
WALI-OS Health Check Endpoints
Liveness and readiness probes for the API process and its backing services.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy import text

from walios.core.config import settings
from walios.database import AsyncSessionLocal
from walios.services.ai_provider import AIProviderService, get_ai_provider

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health status values for components and overall system."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ComponentHealth(BaseModel):
    """Health status for an individual component."""

    status: HealthStatus
    latency_ms: Optional[float] = None
    message: Optional[str] = None


class HealthResponse(BaseModel):
    """Full readiness response."""

    status: HealthStatus
    timestamp: str
    components: dict[str, Any]
    version: str


class LivenessResponse(BaseModel):
    status: str


async def check_database() -> ComponentHealth:
    """Run ``SELECT 1`` and measure latency."""
    start_time = time.perf_counter()
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            message="Database connection successful",
        )
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            message=f"Database connection failed: {str(e)}",
        )


async def check_redis() -> ComponentHealth:
    """PING the Celery/Redis instance and measure latency."""
    start_time = time.perf_counter()
    try:
        redis_client = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
        )
        try:
            await redis_client.ping()
        finally:
            await redis_client.aclose()
        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            message="Redis connection successful",
        )
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            message=f"Redis connection failed: {str(e)}",
        )


def check_ai_providers(provider: AIProviderService) -> ComponentHealth:
    """
    Report which LLM vendors have API keys. No network call; use
    ``GET /api/ai/provider-status?test=true`` for a live check.
    """
    vendors = provider.get_provider_status().get("providers", {})
    configured = sorted(name for name, info in vendors.items() if info.get("configured"))
    if not configured:
        return ComponentHealth(
            status=HealthStatus.DEGRADED,
            message="No AI provider configured; only rule-based features are available",
        )
    if len(configured) < len(vendors):
        return ComponentHealth(
            status=HealthStatus.DEGRADED,
            message=f"No failover provider (configured: {', '.join(configured)})",
        )
    return ComponentHealth(status=HealthStatus.HEALTHY, message="All AI providers configured")


def determine_overall_status(components: dict[str, ComponentHealth]) -> HealthStatus:
    """
    Database down -> unhealthy. Redis (cleanup worker) or AI vendors missing
    -> degraded; the rule-based endpoints still work.
    """
    if components["database"].status == HealthStatus.UNHEALTHY:
        return HealthStatus.UNHEALTHY
    if any(c.status != HealthStatus.HEALTHY for c in components.values()):
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


router = APIRouter(prefix="/health", tags=["Health"])


@router.get("", response_model=LivenessResponse)
async def basic_health() -> LivenessResponse:
    return LivenessResponse(status="ok")


@router.get("/live", response_model=LivenessResponse)
async def liveness_probe() -> LivenessResponse:
    """Returns OK while the process is serving requests."""
    return LivenessResponse(status="ok")


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={
        200: {"description": "Healthy or degraded"},
        503: {"description": "Database unavailable"},
    },
)
async def readiness_check(
    response: Response,
    provider: AIProviderService = Depends(get_ai_provider),
) -> HealthResponse:
    """Check database and Redis concurrently, plus AI vendor configuration."""
    db_check, redis_check = await asyncio.gather(check_database(), check_redis())
    components = {"database": db_check, "redis": redis_check, "ai_providers": check_ai_providers(provider)}

    overall_status = determine_overall_status(components)
    if overall_status == HealthStatus.UNHEALTHY:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        components={
            name: {"status": c.status.value, "latency_ms": c.latency_ms, "message": c.message}
            for name, c in components.items()
        },
        version=settings.app_version,
    )
