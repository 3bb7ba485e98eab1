"""Marketplace API: FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketplace.api.v1.admin import router as admin_router
from marketplace.api.v1.auth import router as auth_router
from marketplace.api.v1.billing import router as billing_router
from marketplace.api.v1.listings import router as listings_router
from marketplace.api.v1.notifications import router as notifications_router
from marketplace.api.v1.reservations import router as reservations_router
from marketplace.api.v1.webhooks import router as webhooks_router
from marketplace.config import settings
from marketplace.database import engine

# Configure root logger so all marketplace.* loggers output to stderr.
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup and shutdown events."""
    yield
    # Shutdown: dispose engine connections
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Listings, short-term reservations and paid publication for a property marketplace.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(auth_router)
app.include_router(listings_router)
app.include_router(reservations_router)
app.include_router(billing_router)
app.include_router(notifications_router)
app.include_router(admin_router)
app.include_router(webhooks_router)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.app_name}


@app.get("/", tags=["root"])
async def root() -> dict[str, str]:
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }
