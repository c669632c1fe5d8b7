"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import lifespan_db
from app.utils.logging import get_logger, setup_logging

# Setup logging
setup_logging(debug=settings.debug)

# Import routers
from app.api.webhooks import router as webhooks_router
from app.services.call_events import call_event_bus

logger = get_logger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    if not settings.webhook_verification_enabled:
        logger.warning("webhook_secret_not_configured", detail="Signature verification is disabled")

    async with lifespan_db():
        yield
        await call_event_bus.drain()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Voice agent webhook ingestion and lead analytics",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(webhooks_router, prefix="/webhooks", tags=["Webhooks"])


@app.get("/", tags=["Health"])
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "database": "connected",
        "signature_verification": settings.webhook_verification_enabled,
    }
