"""
RSS API Endpoints

- GET /rss/entries - Entries of one feed, refreshed when stale
- GET /rss/paginate - Merged, paginated stream across several feeds

Callers never see caching or locking details: a feed that cannot be fetched
still yields stored entries or a single error entry.
"""

import json
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response

from ...dendrites.feed_cache import FeedCacheCoordinator, FeedEntry
from ...shared.config import Settings
from ...shared.schemas import (
    ErrorResponse,
    FeedEntriesResponse,
    FeedEntryResponse,
    PaginatedEntriesResponse,
)
from ..dependencies import get_app_settings, get_feed_cache

logger = structlog.get_logger(__name__)
router = APIRouter()

PAGE_CACHE_CONTROL = "public, max-age=300, s-maxage=300, stale-while-revalidate=86400"


def _to_response(entry: FeedEntry) -> FeedEntryResponse:
    return FeedEntryResponse(**entry.to_dict())


def parse_titles(raw: str) -> List[str]:
    """
    Decode the JSON array of feed titles sent by clients.

    Raises:
        HTTPException: 400 when the value is not a JSON array
    """
    try:
        titles = json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid titles format")

    if not isinstance(titles, list):
        raise HTTPException(status_code=400, detail="Titles must be a JSON array")

    return [str(title) for title in titles]


@router.get(
    "/rss/entries",
    response_model=FeedEntriesResponse,
    responses={500: {"model": ErrorResponse}},
    summary="Entries of one feed",
)
async def get_feed_entries(
    label: str = Query(..., min_length=1, description="Display title of the feed"),
    url: str = Query(..., min_length=1, description="Feed URL"),
    feed_cache: FeedCacheCoordinator = Depends(get_feed_cache),
) -> FeedEntriesResponse:
    """Entries of one feed, newest first."""
    entries = await feed_cache.get_entries(label, url)
    return FeedEntriesResponse(
        label=label,
        feed_url=url,
        entries=[_to_response(entry) for entry in entries],
    )


@router.get(
    "/rss/paginate",
    response_model=PaginatedEntriesResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    summary="Merged entry stream across feeds",
)
async def paginate_entries(
    response: Response,
    titles: str = Query(..., description="JSON array of feed titles"),
    page: int = Query(1, ge=1, description="Page number (1-based)"),
    page_size: Optional[int] = Query(None, ge=1, description="Items per page"),
    total_entries: Optional[int] = Query(None, ge=0, description="Total from a previous page; skips the count"),
    feed_cache: FeedCacheCoordinator = Depends(get_feed_cache),
    settings: Settings = Depends(get_app_settings),
) -> PaginatedEntriesResponse:
    """One page of entries from several feeds, newest first."""
    title_list = parse_titles(titles)

    if page_size is None:
        page_size = settings.api.default_page_size
    page_size = min(page_size, settings.api.max_page_size)

    try:
        entry_page = await feed_cache.paginate(
            title_list,
            page=page,
            page_size=page_size,
            total_entries=total_entries,
        )
    except Exception as e:
        logger.error("Error fetching merged feed", error=str(e), page=page)
        raise HTTPException(status_code=500, detail="Failed to fetch merged feed")

    response.headers["Cache-Control"] = PAGE_CACHE_CONTROL
    response.headers["CDN-Cache-Control"] = "max-age=300"
    response.headers["Surrogate-Control"] = "max-age=300"

    return PaginatedEntriesResponse(
        entries=[_to_response(entry) for entry in entry_page.entries],
        has_more=entry_page.has_more,
        total_entries=entry_page.total_entries,
        titles=entry_page.titles,
    )
