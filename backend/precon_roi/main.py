"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from precon_roi import __version__
from precon_roi.api import api_router
from precon_roi.core.config import settings
from precon_roi.core.exceptions import (
    NotFoundError,
    PriceServiceError,
    QueueFullError,
    RateLimitExceededError,
    UpstreamError,
    UpstreamTimeoutError,
)
from precon_roi.core.logging import setup_logging
from precon_roi.services.pricing.service import build_price_service

# Setup logging
setup_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Builds the price service once and closes its HTTP clients on shutdown.
    """
    logger.info(
        "Starting Precon ROI API",
        version=__version__,
        debug=settings.api_debug,
        cache_backend=settings.price_cache_backend,
    )

    service = build_price_service(settings)
    app.state.price_service = service
    logger.info(
        "Deck catalog loaded",
        decks=len(service.catalog),
        decklists=len(service.decklists.deck_ids()),
    )

    yield

    logger.info("Shutting down Precon ROI API")
    await service.close()


app = FastAPI(
    title=settings.app_name,
    description="Commander precon value tracking: deck prices, ROI and buy verdicts",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_status(exc: PriceServiceError) -> int:
    """HTTP status for a pricing error."""
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, RateLimitExceededError):
        return 429
    if isinstance(exc, UpstreamTimeoutError):
        return 504
    if isinstance(exc, (UpstreamError, QueueFullError)):
        return 503
    return 500


@app.exception_handler(PriceServiceError)
async def price_service_exception_handler(request: Request, exc: PriceServiceError):
    """Translate pricing errors into JSON responses."""
    status_code = error_status(exc)
    log = logger.info if status_code == 404 else logger.warning
    log(
        "Pricing request failed",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        status=status_code,
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": exc.message or str(exc),
            "error": type(exc).__name__,
            "retryable": exc.retryable,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Include API routes with /api prefix
app.include_router(api_router, prefix="/api")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests."""
    logger.debug(
        "Request",
        method=request.method,
        path=request.url.path,
    )
    response = await call_next(request)
    logger.debug(
        "Response",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "precon_roi.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
    )
