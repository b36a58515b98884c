"""
Runbook hub FastAPI application.

Entry point for the API server.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend import db
from backend.config import settings
from backend.repos.hub_store import MemoryHubStore
from backend.repos.postgres_hub_store import PostgresHubStore
from backend.routes import runbooks as runbook_routes
from backend.routes import workspaces as workspace_routes
from backend.routes import ws as ws_routes
from backend.services.shared_state_hub import SharedStateHub

logger = logging.getLogger(__name__)


def create_app(hub: SharedStateHub | None = None) -> FastAPI:
    """
    Build the application.

    With a hub supplied (tests) no database is touched. Otherwise the hub is
    backed by Postgres when DATABASE_URL is set and by memory when it is not.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        pool = None
        if hub is not None:
            app.state.hub = hub
        elif settings.DATABASE_URL:
            pool = await db.init_pool()
            app.state.hub = SharedStateHub(PostgresHubStore(pool))
            logger.info("Database pool initialized")
        else:
            app.state.hub = SharedStateHub(MemoryHubStore())
            logger.warning("DATABASE_URL not set, hub state is in memory only")

        yield

        # Shutdown
        if pool is not None:
            await db.close_pool()
            logger.info("Database pool closed")

    app = FastAPI(
        title="Runbook Hub",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    if hub is not None:
        # Available before lifespan runs, e.g. under httpx.ASGITransport.
        app.state.hub = hub

    # Register routes
    app.include_router(workspace_routes.router)
    app.include_router(runbook_routes.router)
    app.include_router(ws_routes.router)

    @app.get("/health")
    async def health():
        """Health check endpoint for uptime monitoring."""
        return {"status": "ok"}

    return app


app = create_app()
