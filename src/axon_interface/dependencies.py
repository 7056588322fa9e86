"""
Dependencies for Axon Interface API

Provides dependency injection functions for FastAPI endpoints. Components are
built once in the application lifespan and read back from app.state.
"""

from fastapi import HTTPException, Request

from ..dendrites.feed_cache import FeedCacheCoordinator
from ..shared.config import Settings, get_settings


def _from_state(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return component


def get_feed_cache(request: Request) -> FeedCacheCoordinator:
    """Get the feed cache coordinator."""
    return _from_state(request, "feed_cache")


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return getattr(request.app.state, "settings", None) or get_settings()
