"""
API route modules.

Services live on ``app.state`` and are handed to routes through FastAPI
dependencies.
"""

from fastapi import HTTPException, Request

from ...sync.oauth import OAuthBroker
from ...sync.service import SyncOrchestrator


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Get the sync orchestrator."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(503, "Sync engine not initialized")
    return orchestrator


def get_broker(request: Request) -> OAuthBroker:
    """Get the OAuth broker."""
    return get_orchestrator(request).broker


from .sync import router as sync_router  # noqa: E402

__all__ = ["get_orchestrator", "get_broker", "sync_router"]
