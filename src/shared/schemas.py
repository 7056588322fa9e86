"""
Shared Schemas - Pydantic Models for Validation and Serialization
Response models used by the Axon Interface.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, conint


class FeedEntryResponse(BaseModel):
    """A single cached feed entry."""
    guid: str = Field(..., description="Entry identifier, unique within its feed")
    title: str = Field(..., description="Entry title")
    link: str = Field("", description="Entry link")
    description: str = Field("", description="Entry description (truncated when stored)")
    pub_date: str = Field(..., description="Publication instant as ISO-8601")
    image: Optional[str] = Field(None, description="Artwork URL, if any")
    feed_url: str = Field(..., description="Source feed URL")
    feed_title: Optional[str] = Field(None, description="Source feed title")


class FeedEntriesResponse(BaseModel):
    """Entries of one feed."""
    label: str = Field(..., description="Feed label used to request the entries")
    feed_url: str = Field(..., description="Source feed URL")
    entries: List[FeedEntryResponse] = Field(..., description="Entries, newest first")


class PaginatedEntriesResponse(BaseModel):
    """One page of the merged multi-feed stream."""
    entries: List[FeedEntryResponse] = Field(..., description="Entries, newest first")
    has_more: bool = Field(..., description="Whether another page exists")
    total_entries: conint(ge=0) = Field(..., description="Total entries across the requested feeds")
    titles: List[str] = Field(..., description="Feed titles the page was built from")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    components: Dict[str, Dict[str, str]]


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: Dict[str, Any] = Field(..., description="Error information")
