"""
cliqsafe FastAPI application.

Entry point for the API server.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from cliqsafe import config, db
from cliqsafe.middleware.rate_limit import rate_limiter
from cliqsafe.routes import approvals as approval_routes
from cliqsafe.routes import auth_routes
from cliqsafe.routes import parents as parent_routes
from cliqsafe.routes import plans as plan_routes
from cliqsafe.services import token_service

logger = logging.getLogger(__name__)


async def sweep_once() -> None:
    """Delete expired tokens and stale rate limit entries."""
    await token_service.sweep()
    rate_limiter.cleanup_old_entries(max_age_hours=2)


async def cleanup_task():
    """Background sweep loop. Errors are logged and the loop keeps running."""
    while True:
        try:
            await sweep_once()
        except Exception:
            logger.exception("Error in cleanup task")

        await asyncio.sleep(config.settings.TOKEN_SWEEP_INTERVAL_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.

    Handles startup and shutdown logic:
    - Initialize database pool
    - Start background cleanup task
    - Close database pool on shutdown
    """
    await db.init_pool()
    logger.info("Database pool initialized")

    cleanup_task_handle = asyncio.create_task(cleanup_task())

    yield

    cleanup_task_handle.cancel()
    try:
        await cleanup_task_handle
    except asyncio.CancelledError:
        logger.info("Background cleanup task stopped")

    await db.close_pool()
    logger.info("Database pool closed")


app = FastAPI(
    title="cliqsafe",
    docs_url=None,
    redoc_url=None,
    lifespan=lifespan,
)

# Register routes
app.include_router(auth_routes.router)
app.include_router(approval_routes.router)
app.include_router(plan_routes.router)
app.include_router(parent_routes.router)


@app.get("/health")
async def health():
    """Health check endpoint for uptime monitoring."""
    return {"status": "ok"}
