"""Statement Ingest API: FastAPI entry point.

Serves the ingestion domain under /api/v1 plus liveness/readiness probes.
Problem-details error handlers are registered globally so every ingest
failure reaches the client as a typed RFC 7807 body.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from apps.api.core.config import settings
from apps.api.core.errors import register_error_handlers
from apps.api.core.logging import setup_logging
from apps.api.domains.ingestion.router import router as ingestion_router
from apps.api.domains.ingestion.service import shutdown_parse_pool
from apps.api.routers import health

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup/shutdown hooks."""
    setup_logging(log_level=settings.log_level, json_output=settings.is_production)
    logger.info("app_starting", version=settings.APP_VERSION, environment=settings.ENVIRONMENT)
    yield
    shutdown_parse_pool()
    logger.info("app_stopping")


app = FastAPI(
    title="Statement Ingest API",
    description="Turns uploaded CSV and Excel statements into normalized transactions.",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ingestion_router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1")
