"""
FastAPI main application for the Layout Lock design API
"""
import logging
import re
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from layoutlock.core.config import settings
from layoutlock.core.database import create_tables
from layoutlock.core.errors import register_error_handlers
from layoutlock.core.logging import setup_logging
from layoutlock.middleware.logging_middleware import RequestLoggingMiddleware
from layoutlock.routers import design

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info(f"Starting {settings.app_name} ({settings.environment})...")

    # Missing credentials stop startup rather than failing every request
    settings.require_generation_config()

    key = settings.google_ai_api_key
    key_preview = f"{key[:7]}...{key[-4:]}" if len(key) > 11 else "***"
    logger.info(f"✅ GOOGLE_AI_API_KEY is set: {key_preview}")
    logger.info(f"✅ DATABASE_URL is set: {re.sub(r'://[^:]*:[^@]*@', '://***:***@', settings.database_url)}")

    if settings.database_auto_create:
        await create_tables()
        logger.info("Quota tables created")

    logger.info("Application started")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Layout-locked room photo editing API",
    version=settings.version,
    lifespan=lifespan,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "Retry-After"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(RequestLoggingMiddleware)

register_error_handlers(app)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers"""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.version,
    }


# Include routers
app.include_router(design.router, prefix="/api", tags=["design"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "layoutlock.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_config=None,  # Use our custom logging
        access_log=False,  # We handle this in middleware
    )
