"""Health, readiness and Prometheus scrape endpoints.

LIVENESS vs READINESS (Kubernetes concepts)
--------------------------------------------
  /health (liveness):
    "Is this process alive and not deadlocked?"
    If this fails, Kubernetes RESTARTS the container.  It always answers
    200; the body reports per-dependency status for humans and dashboards.

  /ready (readiness):
    "Can this instance handle traffic right now?"
    If this fails, the load balancer STOPS SENDING traffic (but does NOT
    restart the container).

WHAT IS CRITICAL HERE
----------------------
  database    critical when configured: every operation reads or writes
              the registry, and the saga relies on committed steps.
  redis       not critical: only the webhook queue uses it, and the
              platform redelivers notifications we fail to accept.
  scheduling  reported, not called.  Calling the platform from a health check
              every few seconds would spend its rate limit on nothing.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from calsync.core.config import SETTINGS
from calsync.db import engine as db_engine
from calsync.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        logger.warning("Health check: redis unreachable", exc_info=True)
        return "degraded"
    return "ok"


async def _check_database() -> str:
    if db_engine.engine is None:
        return "not_configured"
    try:
        async with db_engine.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check: database unreachable", exc_info=True)
        return "degraded"
    return "ok"


def _scheduling_mode() -> str:
    return "http" if SETTINGS.scheduling_api_url else "in_memory"


@router.get("/health")
async def health() -> dict:
    """Liveness check + dependency status.

    Returns 200 even when degraded; the status field carries the
    actual health.
    """
    checks = {
        "database": await _check_database(),
        "redis": await _check_redis(),
        "scheduling": _scheduling_mode(),
        "default_admin": "configured" if SETTINGS.default_admin_email else "missing",
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    """Readiness check: 503 while a configured database is unreachable."""
    if await _check_database() == "degraded":
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus text exposition of every registered metric."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
