"""Main FastAPI application for face authentication microservice."""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import settings
from src.api.face_auth import router as face_auth_router
from src.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from src.models.api_models import HealthResponse
from src.observability import (
    setup_observability,
    instrument_fastapi_app,
    TracingContextMiddleware
)
from src.services.auth_service import AuthenticationService, get_auth_service

SERVICE_NAME = "face-auth-microservice"
SERVICE_VERSION = "1.0.0"

logging.basicConfig(format="%(message)s", stream=sys.stdout, level=settings.log_level.upper())

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(
        "Starting face authentication microservice",
        port=settings.port,
        host=settings.host,
        storage_backend=settings.storage_backend,
        rate_limit_backend=settings.rate_limit_backend,
        match_threshold=settings.match_threshold
    )

    yield

    logger.info("Shutting down face authentication microservice")
    auth_service = app.dependency_overrides.get(get_auth_service, get_auth_service)()
    await auth_service.close()


# Create FastAPI application
app = FastAPI(
    title="Face Authentication Microservice",
    description="Face registration and login by nearest-neighbour embedding matching",
    version=SERVICE_VERSION,
    lifespan=lifespan
)

# Instrumentation adds middleware, so it has to happen before the app starts
if settings.otel_enabled:
    setup_observability(
        service_name=SERVICE_NAME,
        service_version=SERVICE_VERSION,
        otlp_endpoint=settings.otel_endpoint,
        enable_console_export=settings.otel_console_export
    )
    instrument_fastapi_app(app)

# Add middleware (order matters - last added is executed first)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TracingContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(face_auth_router)


@app.get("/healthz", response_model=HealthResponse)
async def health_check(auth_service: AuthenticationService = Depends(get_auth_service)) -> HealthResponse:
    """Health check endpoint."""
    store_healthy = await auth_service.health_check()

    return HealthResponse(
        status="healthy" if store_healthy else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=SERVICE_VERSION,
        components={"identity_store": "healthy" if store_healthy else "unhealthy"}
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False
    )
