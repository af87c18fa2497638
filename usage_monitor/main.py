"""
FastAPI application for the usage monitor.

Provides:
- Metering middleware that charges monitored requests against prepaid ledger entries
- REST API under /api/usage-monitor for logs, account, payments, analytics and admin
- Health and Prometheus metrics endpoints

Host applications either run this app directly (and add their own routes to
it) or call install_usage_monitor() on their own FastAPI app.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from usage_monitor.billing.quota_middleware import UsageMonitoringMiddleware
from usage_monitor.config import Settings, get_settings
from usage_monitor.exceptions import (
    InvalidConfigurationError,
    NoCapacityError,
    NotProvisionedError,
    PersistenceError,
)
from usage_monitor.observability.logging import configure_logging, get_logger
from usage_monitor.observability.logging_middleware import (
    SlowRequestLogger,
    StructuredLoggingMiddleware,
)
from usage_monitor.observability.metrics import generate_metrics
from usage_monitor.observability.middleware import PrometheusMiddleware
from usage_monitor.rate_limits import limiter
from usage_monitor.routers import usage_router
from usage_monitor.storage.database import get_ledger_db

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Opens (and migrates) the ledger database before serving traffic.
    """
    logger.info("=== Usage Monitor Starting ===")

    try:
        db = await get_ledger_db()
        logger.info("✓ Ledger database ready", db_path=str(db.db_path))

        account = await db.get_account()
        if account is None:
            logger.warning(
                "No account provisioned - monitored requests will be rejected "
                "until POST /api/usage-monitor/account is called"
            )

        logger.info("=== Service Ready ===")

        yield  # Application runs here

    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        raise

    finally:
        logger.info("=== Shutdown complete ===")


def register_exception_handlers(app: FastAPI) -> None:
    """Map usage monitor errors raised by route handlers to HTTP responses."""

    @app.exception_handler(NotProvisionedError)
    async def not_provisioned_handler(request: Request, exc: NotProvisionedError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "not_provisioned", "detail": str(exc)},
        )

    @app.exception_handler(NoCapacityError)
    async def no_capacity_handler(request: Request, exc: NoCapacityError):
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content={"error": "payment_required", "detail": str(exc)},
        )

    @app.exception_handler(InvalidConfigurationError)
    async def invalid_configuration_handler(request: Request, exc: InvalidConfigurationError):
        logger.warning(f"Invalid configuration on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "invalid_configuration", "detail": str(exc)},
        )

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        logger.error(
            "Ledger storage error occurred",
            path=request.url.path,
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "usage_recording_failed", "detail": str(exc)},
        )

    @app.exception_handler(ValueError)
    async def validation_error_handler(request: Request, exc: ValueError):
        logger.warning(f"Validation error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": "Validation failed", "error": str(exc)},
        )


def install_usage_monitor(
    app: FastAPI,
    settings: Settings | None = None,
    business_exceptions: tuple[type[BaseException], ...] = (),
) -> FastAPI:
    """
    Add metering, observability middleware and the usage monitor API to an app.

    Args:
        app: Host FastAPI application
        settings: Configuration (defaults to get_settings())
        business_exceptions: Handler exceptions recorded as business outcomes

    Returns:
        FastAPI: The same app, for chaining

    Middleware order (the last one added is the outermost):
        1. UsageMonitoringMiddleware (innermost) - charges monitored requests
        2. PrometheusMiddleware - HTTP metrics, including rejections
        3. SlowRequestLogger - logs slow requests
        4. StructuredLoggingMiddleware (outermost) - sets request context
    """
    settings = settings or get_settings()

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    register_exception_handlers(app)

    app.add_middleware(
        UsageMonitoringMiddleware,
        monitored_paths=settings.metering.monitored_list,
        exempt_paths=settings.metering.exempt_list,
        timeout_seconds=settings.metering.operation_timeout_seconds,
        business_exceptions=business_exceptions,
        log_rejected_requests=settings.metering.log_rejected_requests,
    )
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(
        SlowRequestLogger,
        warning_threshold_ms=settings.logging.slow_request_warning_ms,
        error_threshold_ms=settings.logging.slow_request_error_ms,
    )
    app.add_middleware(StructuredLoggingMiddleware)

    app.include_router(usage_router)

    logger.info(
        "Usage monitor installed",
        monitored_paths=settings.metering.monitored_list,
        exempt_paths=settings.metering.exempt_list,
    )
    return app


def create_app(
    settings: Settings | None = None,
    business_exceptions: tuple[type[BaseException], ...] = (),
) -> FastAPI:
    """
    Build the standalone usage monitor application.

    Args:
        settings: Configuration (defaults to get_settings())
        business_exceptions: Handler exceptions recorded as business outcomes

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()
    settings.validate_configuration()

    configure_logging(
        log_level=settings.logging.level,
        json_output=settings.logging.json_output,
        colorized=settings.logging.colorized,
    )

    app = FastAPI(
        title="Usage Monitor API",
        description="Prepaid request metering with usage logs and analytics",
        version=settings.logging.service_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    install_usage_monitor(app, settings=settings, business_exceptions=business_exceptions)

    # CORS middleware (configured via environment variables)
    # Production: Set CORS_ALLOWED_ORIGINS="https://app.example.com"
    cors_origins = settings.cors.origins_list
    if "*" in cors_origins:
        logger.warning(
            "⚠️  CORS allows ALL origins (*) - configure CORS_ALLOWED_ORIGINS for production!"
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors.allow_credentials,
        allow_methods=settings.cors.methods_list,
        allow_headers=settings.cors.headers_list,
        max_age=settings.cors.max_age,
    )

    @app.get("/health", tags=["System"])
    async def health_check(response: Response):
        """
        Health check.

        Verifies the ledger database answers a query and reports whether an
        account has been provisioned.

        Returns:
            HTTP 200: Database reachable
            HTTP 503: Database unavailable
        """
        try:
            db = await get_ledger_db()
            account = await db.get_account()
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {"status": "unhealthy", "database": "unavailable"}

        return {
            "status": "healthy",
            "database": "ok",
            "account_provisioned": account is not None,
        }

    @app.get("/metrics", tags=["System"])
    async def metrics():
        """
        Prometheus metrics endpoint.

        Metrics include:
        - HTTP request latency, count and in-flight requests
        - Ledger charges, capacity rejections and charge conflicts
        - Persistence failures
        - Admin credential cache hit/miss
        - Remaining capacity of the account
        """
        metrics_data, content_type = generate_metrics()
        return Response(content=metrics_data, media_type=content_type)

    @app.get("/", tags=["System"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": "Usage Monitor API",
            "version": settings.logging.service_version,
            "docs": "/docs",
            "health": "/health",
            "api": "/api/usage-monitor",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "usage_monitor.main:app",
        host=settings.service.host,
        port=settings.service.port,
        reload=settings.service.reload,
        workers=settings.service.workers,
        log_level=settings.logging.level.lower(),
    )
