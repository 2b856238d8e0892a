"""
FastAPI application initialization
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from api.routes import health, watermarks, endpoints, sync
from core.config import settings
from core.exceptions import ConfigurationError, ETLException
from core.logging import setup_logging
import logging
from api.middleware import RequestContextMiddleware
from ingestion.scheduler import IngestionScheduler
from schemas.api import ErrorResponse

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown"""
    logger.info("Starting ingestion service API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = IngestionScheduler()
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    logger.info("Shutting down ingestion service API")
    if scheduler is not None:
        scheduler.stop()


# Create FastAPI app
app = FastAPI(
    title="Economic & PrestaShop Ingestion API",
    description="Operations API for the raw-layer ingestion engine",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(RequestContextMiddleware)


# Include routers
app.include_router(health.router)
app.include_router(watermarks.router)
app.include_router(endpoints.router)
app.include_router(sync.router)


@app.exception_handler(ETLException)
async def etl_exception_handler(request: Request, exc: ETLException):
    """Store and registry failures become 503 (500 for bad configuration)"""
    logger.error(
        f"Request failed: {exc.message}",
        extra={"error_context": exc.to_dict()}
    )
    status_code = 500 if isinstance(exc, ConfigurationError) else 503
    body = ErrorResponse(error=type(exc).__name__, detail=exc.message)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Economic & PrestaShop Ingestion API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "watermarks": "/watermarks",
            "endpoints": "/endpoints",
            "sync": "/sync/{source}?mode=incremental"
        }
    }
