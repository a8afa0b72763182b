"""Creator Metrics Hub - FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from config import get_settings
from database import init_models
from middleware.errors import sync_error_handler
from middleware.rate_limit import limiter, rate_limit_exceeded_handler
from routers import accounts_router, analytics_router, sync_router
from services.errors import SyncError
from services.run_store import RunStore
from services.scheduler import start_scheduler, stop_scheduler

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - create tables on startup, cleanup on shutdown."""
    # Startup: create database tables
    await init_models()

    # Check Redis connectivity
    if await RunStore.health_check():
        logger.info("Redis connection established")
    else:
        logger.warning("Redis not available - refresh run reports will not persist")

    # Start background scheduler for periodic refreshes
    start_scheduler()

    yield

    # Shutdown: stop scheduler and close Redis connection pool
    stop_scheduler()
    await RunStore.close()


app = FastAPI(
    title="Creator Metrics Hub API",
    description="Engagement metrics sync and analytics for tracked creator accounts",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(SyncError, sync_error_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(accounts_router)
app.include_router(analytics_router)
app.include_router(sync_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "creator-metrics-hub",
        "redis": await RunStore.health_check(),
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Creator Metrics Hub API",
        "version": "0.1.0",
        "docs": "/docs",
    }
