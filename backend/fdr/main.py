"""Main FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fdr.api.fdr import router as fdr_router
from fdr.api.players import router as players_router
from fdr.api.sync import router as sync_router
from fdr.config import get_settings
from fdr.db import close_pool, init_pool

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the database pool on startup and close it on shutdown."""
    logger.info("Starting FDR backend")
    logger.info(f"CORS origins: {settings.cors_origins_list}")
    logger.info(f"FPL API base: {settings.fpl_api_base_url}")
    if settings.db_connection_string:
        await init_pool()
    else:
        logger.warning("No database configured; FDR endpoints will return 503")
    try:
        yield
    finally:
        logger.info("Shutting down FDR backend")
        await close_pool()


# Create FastAPI app
app = FastAPI(
    title="FDR Backend",
    description="FPL statistics sync and fixture difficulty rating pipeline",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(fdr_router)
app.include_router(players_router)
app.include_router(sync_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}
