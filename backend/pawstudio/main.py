"""
FastAPI application entry point.
Sets up the API with lifespan events for database initialization.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from pawstudio import __version__
from pawstudio.config import settings
from pawstudio.database import init_db
from pawstudio.api.router import api_router
from pawstudio.errors import PawStudioError
from pawstudio.middleware.metrics_middleware import MetricsMiddleware
from pawstudio.utils.logging import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events.
    - Startup: configure logging, create tables
    """
    configure_logging('pawstudio-api', settings.log_level)
    await init_db()
    yield


# Create FastAPI app
app = FastAPI(
    title="PawStudio API",
    description="Backend API for PawStudio AI pet portraits",
    version=__version__,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Metrics middleware (must be after CORS to track all requests)
app.add_middleware(MetricsMiddleware)


@app.exception_handler(PawStudioError)
async def pawstudio_error_handler(request: Request, exc: PawStudioError):
    """Map typed errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.error(
            f"{exc.code}: {exc.message}",
            extra={"event": "request_failed", "path": request.url.path, "error_code": exc.code},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
    )


# Include API routes
app.include_router(api_router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "PawStudio API",
        "version": __version__,
        "environment": settings.environment
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
