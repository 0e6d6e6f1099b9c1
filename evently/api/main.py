"""
Main FastAPI application.

Registration and capacity API with:
- CORS configuration
- Domain error mapping
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from evently import __version__
from evently.config import get_settings
from evently.core.errors import DomainError, ErrorCode
from evently.database.connection import close_db, init_db
from evently.monitoring.logging import setup_logging
from evently.monitoring.metrics import metrics

from .dependencies import get_webhook_handler
from .routes import (
    admin_router,
    event_router,
    monitoring_router,
    payment_router,
    user_router,
    webhook_router,
)

# Setup logging first
setup_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()

ERROR_STATUS_CODES: Dict[ErrorCode, int] = {
    ErrorCode.EVENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.REGISTRATION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.PAYMENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCode.ALREADY_REGISTERED: status.HTTP_409_CONFLICT,
    ErrorCode.EVENT_FULL: status.HTTP_409_CONFLICT,
    ErrorCode.OVERBOOKED_SETTLEMENT: status.HTTP_409_CONFLICT,
    ErrorCode.PAYMENT_REQUIRED: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.INVALID_PURCHASE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_CALLBACK: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_SIGNATURE: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
    )

    try:
        await init_db()
        logger.info("database_initialized")
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("application_shutdown")
    try:
        await get_webhook_handler().close()
        await close_db()
        logger.info("database_connections_closed")
    except Exception as e:
        logger.error("database_shutdown_error", error=str(e))


# Create FastAPI application
app = FastAPI(
    title="Evently Registration Engine",
    description=(
        "Event registration with atomic capacity accounting, approval workflow "
        "and idempotent payment settlement."
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """
    Add request ID to all requests for tracing.

    Also adds timing information and structured logging context.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start_time = time.perf_counter()

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    logger.info(
        "request_started",
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        duration = time.perf_counter() - start_time
        route = request.scope.get("route")
        metrics.record_http_request(
            request.method,
            getattr(route, "path", "unmatched"),
            response.status_code,
            duration,
        )
        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_seconds=duration,
        )
        return response

    except Exception as e:
        logger.error(
            "request_failed",
            error=str(e),
            duration_seconds=time.perf_counter() - start_time,
        )
        raise

    finally:
        structlog.contextvars.clear_contextvars()


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Translate engine outcomes to HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(exc.code, status.HTTP_400_BAD_REQUEST)
    if exc.expected:
        logger.info("domain_error", error_code=exc.code.value, status_code=status_code)
    else:
        logger.error("domain_error", error_code=exc.code.value, status_code=status_code)

    headers = {"Retry-After": "1"} if exc.code is ErrorCode.STORE_UNAVAILABLE else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


# Include routers
app.include_router(event_router)
app.include_router(user_router)
app.include_router(payment_router)
app.include_router(webhook_router)
app.include_router(admin_router)
app.include_router(monitoring_router)


@app.get("/", tags=["root"])
async def root() -> dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": __version__,
        "status": "operational",
        "environment": settings.app_env,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }


def run() -> None:
    """Console entry point."""
    import uvicorn

    uvicorn.run(
        "evently.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
