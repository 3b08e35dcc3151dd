"""
FastAPI Application Factory

Creates and configures the admin API: middleware, error mapping and routers.
Service wiring lives in the lifespan passed in by `src.main`.
"""

from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import structlog

from src.config import get_settings
from src.config.settings import Settings
from src.domain.errors import (
    BackofficeError,
    InvariantViolation,
    NotFoundError,
    SourceUnavailableError,
    ValidationError,
)
from src.serving.api.middleware import (
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from src.serving.api.routes import (
    analytics_router,
    bulk_router,
    customers_router,
    health_router,
    orders_router,
)

logger = structlog.get_logger(__name__)

API_PREFIX = "/api/v1"

ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    InvariantViolation: 409,
    SourceUnavailableError: 503,
}


def error_body(error: str, detail: Any) -> Dict[str, Any]:
    return {"error": error, "detail": detail}


async def backoffice_error_handler(request: Request, exc: BackofficeError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        500,
    )
    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request failed",
        path=request.url.path,
        status_code=status_code,
        error_type=type(exc).__name__,
        error=exc.message,
    )
    return JSONResponse(status_code=status_code, content=error_body(type(exc).__name__, exc.message))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=error_body("ValidationError", jsonable_encoder(exc.errors())),
    )


def create_api_app(
    settings: Optional[Settings] = None,
    lifespan: Optional[Callable] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        settings: Defaults to the cached application settings
        lifespan: Builds services onto `app.state`; tests attach them directly

    Returns:
        Configured FastAPI app instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="E-Commerce Back-Office API",
        description="Admin metrics, customer insights and bulk operations",
        version=settings.version,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_exception_handler(BackofficeError, backoffice_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.security.rate_limit_requests,
        window_seconds=settings.security.rate_limit_window_seconds,
        strict_max_requests=settings.security.bulk_rate_limit_requests,
        strict_prefix=f"{API_PREFIX}/bulk",
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health_router, prefix=API_PREFIX, tags=["Health"])
    app.include_router(analytics_router, prefix=f"{API_PREFIX}/analytics", tags=["Analytics"])
    app.include_router(customers_router, prefix=f"{API_PREFIX}/customers", tags=["Customers"])
    app.include_router(orders_router, prefix=f"{API_PREFIX}/orders", tags=["Orders"])
    app.include_router(bulk_router, prefix=f"{API_PREFIX}/bulk", tags=["Bulk"])

    return app
