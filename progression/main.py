from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from progression.api.admin import router as admin_router
from progression.api.health import router as health_router
from progression.api.metrics_endpoint import router as metrics_router
from progression.api.progress import router as progress_router
from progression.core.config import SETTINGS
from progression.core.logging import setup_logging
from progression.db.engine import lifespan_db
from progression.db.redis import lifespan_redis
from progression.middleware.metrics import MetricsMiddleware
from progression.middleware.request_context import (
    RequestContextFilter,
    RequestContextMiddleware,
)

# Configure logging before anything else runs.
setup_logging(
    SETTINGS.log_level,
    json_format=SETTINGS.log_json,
    filters=[RequestContextFilter()],
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # nested so teardown runs in reverse order
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="progression-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Last-added runs first: RequestContext (outermost) -> Metrics -> route,
# so every metric and log line is recorded under a request ID.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(progress_router)
app.include_router(admin_router)

logger.info(
    "progression-service started  env=%s log_level=%s port=%d recalc=%s docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    SETTINGS.recalc_mode,
    "on" if SETTINGS.is_dev else "off",
)
