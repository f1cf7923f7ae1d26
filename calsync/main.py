from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from calsync.api.experts import router as experts_router
from calsync.api.health import router as health_router
from calsync.api.organizations import router as organizations_router
from calsync.api.webhooks import router as webhooks_router
from calsync.clients import scheduling, tenants
from calsync.core.config import SETTINGS
from calsync.core.logging import setup_logging
from calsync.db.engine import lifespan_db
from calsync.db.redis import lifespan_redis
from calsync.middleware.metrics import MetricsMiddleware
from calsync.middleware.request_context import RequestContextMiddleware

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan_clients() -> AsyncGenerator[None, None]:
    """Close the outbound HTTP connection pools on shutdown."""
    try:
        yield
    finally:
        for client in (scheduling.scheduling_client, tenants.tenant_provisioner):
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                await aclose()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order even if one fails
    async with lifespan_db():
        async with lifespan_redis():
            async with lifespan_clients():
                yield


app = FastAPI(
    title="calsync-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Middleware execution order: last-added runs first (outermost layer).
# RequestContext (outermost) → Metrics → route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(health_router)
app.include_router(organizations_router)
app.include_router(experts_router)
app.include_router(webhooks_router)

if SETTINGS.default_admin_email is None:
    logger.warning(
        "DEFAULT_ADMIN_EMAIL is not set — organization provisioning will fail"
    )

logger.info(
    "calsync-service started  env=%s log_level=%s port=%d scheduling=%s docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    SETTINGS.scheduling_api_url or "in-memory",
    "on" if SETTINGS.is_dev else "off",
)
