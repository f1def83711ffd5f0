"""
HTTP API for the sync engine.
"""

from .router import create_dashboard_router, setup_dashboard_api

__all__ = ["create_dashboard_router", "setup_dashboard_api"]
