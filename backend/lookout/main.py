"""Lookout detection backend - Main Application Entry Point."""

import logging
from contextlib import asynccontextmanager

from elasticsearch import AsyncElasticsearch
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from lookout.api.v1 import router as api_v1_router
from lookout.config import get_settings
from lookout.database import (
    close_elasticsearch,
    close_redis,
    get_elasticsearch,
    get_redis,
    init_elasticsearch_indices,
)
from lookout.exceptions import setup_exception_handlers

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)

    try:
        await init_elasticsearch_indices()
        logger.info("Elasticsearch index template installed")
    except Exception as e:
        logger.warning("Failed to initialize Elasticsearch indices: %s", e)

    yield

    logger.info("Shutting down %s", settings.app_name)
    await close_elasticsearch()
    await close_redis()


app = FastAPI(
    title=settings.app_name,
    description="Rule evaluation and event correlation engine for SIEM detections",
    version=settings.app_version,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else "/api/openapi.json",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup exception handlers for standardized error responses
setup_exception_handlers(app)

# Include API routers
app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/health")
async def health_check(
    es: AsyncElasticsearch = Depends(get_elasticsearch),
    redis: Redis = Depends(get_redis),
):
    """Health check endpoint with dependency status."""
    services = {}

    try:
        services["elasticsearch"] = "up" if await es.ping() else "down"
    except Exception as e:
        logger.warning("Elasticsearch health check failed: %s", e)
        services["elasticsearch"] = "down"

    try:
        services["redis"] = "up" if await redis.ping() else "down"
    except Exception as e:
        logger.warning("Redis health check failed: %s", e)
        services["redis"] = "down"

    return {
        "status": "healthy" if all(s == "up" for s in services.values()) else "degraded",
        "app": settings.app_name,
        "version": settings.app_version,
        "services": services,
    }
