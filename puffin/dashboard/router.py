"""
Main API router.
"""

import logging

from fastapi import APIRouter, FastAPI

from ..sync.service import SyncOrchestrator
from .routes import sync_router

logger = logging.getLogger(__name__)


def create_dashboard_router() -> APIRouter:
    """Create the API router.

    Returns:
        FastAPI router with all sync endpoints
    """
    router = APIRouter(prefix="/api")
    router.include_router(sync_router, tags=["Sync"])
    return router


def setup_dashboard_api(app: FastAPI, orchestrator: SyncOrchestrator) -> None:
    """Setup the API on an existing FastAPI app.

    Args:
        app: FastAPI application
        orchestrator: Sync orchestrator used by the routes
    """
    app.state.orchestrator = orchestrator
    app.include_router(create_dashboard_router())
    logger.info("Sync API routes added to application")
