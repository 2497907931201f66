"""
FaceSwap API - Provider Orchestration & Image Intelligence
FastAPI Backend Entry Point
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from faceswap_api.core.config import settings
from faceswap_api.core.redis import cache_health_check, get_token_cache, RedisTokenCache
from faceswap_api.api import generate

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    cache = get_token_cache()
    logger.info(f"Starting {settings.APP_NAME} (token cache: {type(cache).__name__})")
    yield
    logger.info(f"Shutting down {settings.APP_NAME}...")
    if isinstance(cache, RedisTokenCache):
        await cache.close()


app = FastAPI(
    title=settings.APP_NAME,
    description="Face-swap provider orchestration with aspect ratio, safety and credential handling",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(generate.router, prefix="/api/v1", tags=["Image Generation"])


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint for Cloud Run and monitoring.
    Reports the token cache backend and whether it is reachable.
    """
    status = {
        "status": "healthy",
        "version": VERSION,
        "services": {}
    }

    try:
        cache_status = await cache_health_check()
        status["services"]["token_cache"] = cache_status
        if not cache_status.get("connected"):
            status["status"] = "degraded"
    except Exception as e:
        status["services"]["token_cache"] = {"status": "unhealthy", "error": str(e)}
        status["status"] = "degraded"

    return status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"{settings.APP_NAME} - Provider Orchestration",
        "docs": "/docs",
        "health": "/health",
    }
