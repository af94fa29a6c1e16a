"""Main application entry point for the E-Signature Compliance API."""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from esign_compliance.api.audit_export import audit_export_router
from esign_compliance.api.documents import documents_router
from esign_compliance.api.signing import signing_router
from esign_compliance.api.webhooks import webhooks_router
from esign_compliance.config.settings import get_settings
from esign_compliance.database.database import DatabaseConfig, dispose_engine, get_engine
from esign_compliance.infrastructure.redis.redis_client import RedisClientManager
from esign_compliance.middleware.rate_limiting import RateLimitMiddleware
from esign_compliance.security.anomaly_detection import get_anomaly_detector
from esign_compliance.security.rate_limiter import get_rate_limiter
from esign_compliance.services.webhook_ingestion_service import ensure_webhook_configured
from esign_compliance.utils.errors import APIError, ConfigurationError


# =============================================================================
# Logging Configuration
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Background Sweeps
# =============================================================================

async def sweep_security_stores(interval_seconds: float) -> None:
    """Periodically drop expired rate limit windows and stale access patterns."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            counters = get_rate_limiter().sweep()
            patterns = get_anomaly_detector().sweep()
            if counters or patterns:
                logger.debug(
                    f"Swept {counters} rate limit windows and {patterns} access patterns"
                )
        except Exception:
            logger.exception("Security store sweep failed")


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown events."""
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} ({settings.environment})...")

    try:
        ensure_webhook_configured(settings)
    except ConfigurationError as e:
        if settings.is_production:
            raise
        logger.warning(f"{e.message}; webhook deliveries will be refused")

    config = DatabaseConfig.from_env()
    logger.info(f"Connecting to database at {config.host}:{config.port}/{config.database}")
    get_engine(config)

    interval = min(
        settings.rate_limit.sweep_interval_seconds,
        settings.anomaly.sweep_interval_seconds,
    )
    sweeper = asyncio.create_task(sweep_security_stores(interval))

    logger.info("Application startup complete")

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    dispose_engine()
    logger.info("Application shutdown complete")


# =============================================================================
# Exception Handlers
# =============================================================================

async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Render an APIError in the service-wide error envelope."""
    response = exc.to_response()
    if response.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=response.status_code,
        content=response.to_dict(),
        headers=response.headers,
    )


def _validation_response(errors: list) -> JSONResponse:
    field_errors = []
    for error in errors:
        loc = ".".join(str(x) for x in error["loc"])
        field_errors.append({
            "field": loc,
            "message": error["msg"],
            "code": error["type"],
        })

    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "message": "Request validation failed",
                "code": "validation_error",
                "field_errors": field_errors,
            }
        },
    )


# =============================================================================
# Application Factory
# =============================================================================

def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Signature document lifecycle with webhook ingestion, an "
            "append-only audit trail, rate limiting and anomaly detection."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(RateLimitMiddleware)

    # Register routes
    app.include_router(webhooks_router)
    app.include_router(signing_router)
    app.include_router(documents_router)
    app.include_router(audit_export_router)

    # Register exception handlers
    app.add_exception_handler(APIError, api_error_handler)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        """Report malformed request bodies and parameters as 400."""
        return _validation_response(exc.errors())

    @app.exception_handler(PydanticValidationError)
    async def pydantic_validation_handler(
        request: Request,
        exc: PydanticValidationError,
    ) -> JSONResponse:
        """Convert Pydantic validation errors to structured response."""
        return _validation_response(exc.errors())

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unexpected error occurred")
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "message": "An unexpected error occurred",
                    "code": "internal_error",
                }
            },
        )

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict:
        """Check application health, including Redis when the security stores use it."""
        result = {"status": "healthy", "version": settings.app_version}
        if settings.rate_limit.backend == "redis":
            redis_health = await run_in_threadpool(RedisClientManager.get_instance().health_check)
            result["redis"] = redis_health
            if redis_health["status"] != "healthy":
                result["status"] = "degraded"
        return result

    return app


# =============================================================================
# Application Instance
# =============================================================================

app = create_app()


# =============================================================================
# Development Server
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "esign_compliance.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
