"""Main FastAPI application for the Opportunity Zone locator"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response as StarletteResponse

from oz_locator.config import settings
from oz_locator.database import Base, engine
from oz_locator.errors import (
    CacheUnavailableError,
    GeocodingError,
    GeocodingRateLimitError,
    MalformedDatasetError,
    NotInitializedError,
    TransientFetchError,
    ZoneLocatorError,
)
from oz_locator.log_config import configure_logging
from oz_locator.middleware import LoggingMiddleware
from oz_locator.routers import health, zones
from oz_locator.services.geocoding import GeocodingService
from oz_locator.services.zone_service import ZoneService

configure_logging(settings)

logger = structlog.get_logger()

# Prometheus metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code']
)
REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration',
    ['method', 'endpoint']
)


async def _warm_zone_service(service: ZoneService):
    try:
        await service.initialize()
    except ZoneLocatorError as e:
        logger.warning("Zone service not ready at startup, will load on first request", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting Opportunity Zone locator", version=settings.app_version, engine=settings.zone_engine)

    # Create database tables
    Base.metadata.create_all(bind=engine)

    app.state.zone_service = ZoneService.from_settings(settings)
    app.state.geocoding_service = GeocodingService()

    # Load in the background so startup is not held up by a cold download
    warm_task = asyncio.create_task(_warm_zone_service(app.state.zone_service))

    logger.info("Opportunity Zone locator started")

    yield

    # Shutdown
    logger.info("Shutting down Opportunity Zone locator")
    warm_task.cancel()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Opportunity Zone point and address lookup API",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan
)

# Add middleware
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(LoggingMiddleware)

# Include routers
app.include_router(zones.router, prefix="/zones", tags=["zones"])
app.include_router(health.router, prefix="", tags=["health"])


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Middleware to collect Prometheus metrics"""
    start_time = time.time()

    response = await call_next(request)

    duration = time.time() - start_time
    REQUEST_DURATION.labels(
        method=request.method,
        endpoint=request.url.path
    ).observe(duration)

    REQUEST_COUNT.labels(
        method=request.method,
        endpoint=request.url.path,
        status_code=response.status_code
    ).inc()

    return response


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return StarletteResponse(
        generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def _trace_id(request: Request) -> str:
    return getattr(request.state, 'trace_id', str(uuid.uuid4()))


def _error_response(request: Request, status_code: int, error: str, code: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "code": code,
            "trace_id": _trace_id(request)
        },
        headers=headers
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Global HTTP exception handler"""
    logger.error(
        "HTTP exception",
        trace_id=_trace_id(request),
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method
    )
    return _error_response(request, exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Invalid query parameters"""
    messages = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return _error_response(request, 422, messages, "VALIDATION_ERROR")


@app.exception_handler(NotInitializedError)
async def not_initialized_handler(request: Request, exc: NotInitializedError):
    logger.warning("Zone data not initialized", trace_id=_trace_id(request), error=str(exc))
    return _error_response(request, 503, str(exc), "NOT_INITIALIZED")


@app.exception_handler(CacheUnavailableError)
async def cache_unavailable_handler(request: Request, exc: CacheUnavailableError):
    logger.error("Zone storage unavailable", trace_id=_trace_id(request), error=str(exc))
    return _error_response(request, 503, str(exc), "CACHE_UNAVAILABLE")


@app.exception_handler(GeocodingRateLimitError)
async def geocoding_rate_limit_handler(request: Request, exc: GeocodingRateLimitError):
    headers = {"Retry-After": exc.retry_after} if exc.retry_after else None
    return _error_response(request, exc.status_code, str(exc), exc.code, headers=headers)


@app.exception_handler(GeocodingError)
async def geocoding_error_handler(request: Request, exc: GeocodingError):
    logger.error("Geocoding failed", trace_id=_trace_id(request), error=str(exc))
    return _error_response(request, 502, str(exc), "GEOCODING_FAILED")


@app.exception_handler(TransientFetchError)
async def transient_fetch_handler(request: Request, exc: TransientFetchError):
    return _error_response(request, 502, str(exc), "DATASET_FETCH_FAILED")


@app.exception_handler(MalformedDatasetError)
async def malformed_dataset_handler(request: Request, exc: MalformedDatasetError):
    return _error_response(request, 502, str(exc), "DATASET_MALFORMED")


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(
        "Unhandled exception",
        trace_id=_trace_id(request),
        exception=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True
    )
    return _error_response(request, 500, "Internal server error", "INTERNAL_ERROR")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "oz_locator.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
