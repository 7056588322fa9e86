"""
Dendrites - Feed Fetcher with httpx
Layer 0: Sensory Input

This module downloads feed XML over HTTP and hands it to the FeedParser.
fetch_and_parse never raises: network failures, timeouts, non-2xx statuses
and unparseable XML all come back as a fallback feed.
"""
from typing import Dict, Optional

import httpx
import structlog

from ..shared.config import FetcherSettings
from .feed_parser import FeedParser, ParsedFeed, create_fallback_feed

logger = structlog.get_logger(__name__)

# Responses shorter than this are almost never a real feed
SUSPICIOUS_RESPONSE_BYTES = 100


class FeedFetchError(Exception):
    """Raised when a feed cannot be downloaded."""
    pass


class FeedFetcher:
    """
    Outbound feed fetcher.

    One AsyncClient is shared by every fetch made through this instance; it
    is created on demand unless a client is injected.
    """

    def __init__(
        self,
        settings: Optional[FetcherSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        parser: Optional[FeedParser] = None,
    ):
        self.settings = settings or FetcherSettings()
        self.parser = parser or FeedParser()
        self.logger = logger.bind(component="feed_fetcher")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.feed_fetch_timeout),
            follow_redirects=True,
            limits=httpx.Limits(
                max_keepalive_connections=20,
                max_connections=self.settings.feed_max_connections,
            ),
        )

    def _get_headers(self) -> Dict[str, str]:
        """Browser-like headers that ask every cache on the way to revalidate."""
        return {
            'User-Agent': self.settings.feed_user_agent,
            'Accept': 'application/rss+xml, application/xml, text/xml, */*',
            'Cache-Control': 'no-cache, no-store, must-revalidate',
            'Pragma': 'no-cache',
            'Expires': '0',
        }

    async def fetch(self, url: str) -> str:
        """
        Download the raw XML of a feed.

        Args:
            url: Feed URL

        Returns:
            Response body as text

        Raises:
            FeedFetchError: On network failure, timeout or a non-2xx status
        """
        self.logger.info("Fetching feed", feed_url=url)
        try:
            response = await self.client.get(
                url,
                headers=self._get_headers(),
                timeout=self.settings.feed_fetch_timeout,
            )
        except httpx.TimeoutException as e:
            raise FeedFetchError(f"Timed out fetching {url} after {self.settings.feed_fetch_timeout}s") from e
        except httpx.RequestError as e:
            raise FeedFetchError(f"Failed to fetch {url}: {e}") from e

        if not response.is_success:
            raise FeedFetchError(f"Failed to fetch feed: {response.status_code} {response.reason_phrase}")

        xml_content = response.text
        self.logger.debug("Received feed body", feed_url=url, size=len(xml_content))

        if len(xml_content) < SUSPICIOUS_RESPONSE_BYTES:
            self.logger.warning("Suspiciously small XML response", feed_url=url, body=xml_content[:100])

        return xml_content

    async def fetch_and_parse(self, url: str) -> ParsedFeed:
        """
        Fetch and parse a feed.

        Returns:
            The parsed feed, or a fallback feed flagged is_fallback on any failure
        """
        try:
            xml_content = await self.fetch(url)
        except Exception as e:
            self.logger.error("Error fetching feed", feed_url=url, error=str(e))
            return create_fallback_feed(url, e)

        return self.parser.parse_or_fallback(xml_content, url)

    async def aclose(self):
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client:
            await self.client.aclose()
