"""
Dendrites - Feed Cache Coordinator
Layer 0: Sensory Input

Serves feed entries from the relational store and refreshes them from the
network when they are older than the staleness window. Refreshes of one feed
URL are serialized across processes by the refresh lock. Public operations
never raise: every failure degrades to stored, fallback or empty results.
"""
import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

import structlog

from ..synaptic_vesicle.database import DatabaseManager
from ..synaptic_vesicle.locks import RefreshLockManager
from ..synaptic_vesicle.repositories import RepositoryFactory, now_ms
from .dates import normalize_date
from .feed_fetcher import FeedFetcher
from .feed_parser import ParsedFeed, ParsedItem

logger = structlog.get_logger(__name__)

STALENESS_WINDOW_MS = 4 * 60 * 60 * 1000


@dataclass
class FeedEntry:
    """An entry as returned to callers."""
    guid: str
    title: str
    link: str
    description: str
    pub_date: str
    image: Optional[str]
    feed_url: str
    feed_title: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any], feed_url: Optional[str] = None) -> "FeedEntry":
        return cls(
            guid=row["guid"],
            title=row["title"],
            link=row.get("link") or "",
            description=row.get("description") or "",
            pub_date=normalize_date(row.get("pub_date")),
            image=row.get("image") or None,
            feed_url=feed_url or row.get("feed_url") or "",
            feed_title=row.get("feed_title"),
        )

    @classmethod
    def from_item(cls, item: ParsedItem) -> "FeedEntry":
        return cls(
            guid=item.guid,
            title=item.title,
            link=item.link,
            description=item.description,
            pub_date=item.pub_date,
            image=item.image,
            feed_url=item.feed_url,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EntryPage:
    """One page of the merged multi-feed stream."""
    entries: List[FeedEntry]
    has_more: bool
    total_entries: int
    titles: List[str]


def is_stale(last_fetched: Optional[int], now: int) -> bool:
    if last_fetched is None:
        return True
    return now - int(last_fetched) >= STALENESS_WINDOW_MS


def newest_first(items: Sequence[ParsedItem]) -> List[FeedEntry]:
    return sorted((FeedEntry.from_item(item) for item in items), key=lambda entry: entry.pub_date, reverse=True)


class FeedCacheCoordinator:
    """
    Top-level feed cache.

    Holds no global state: the database manager, fetcher and lock manager are
    built once per process and injected.
    """

    def __init__(
        self,
        db: DatabaseManager,
        fetcher: FeedFetcher,
        repositories: Optional[RepositoryFactory] = None,
        lock_manager: Optional[RefreshLockManager] = None,
    ):
        self.db = db
        self.fetcher = fetcher
        self.repositories = repositories or RepositoryFactory(db)
        self.lock_manager = lock_manager or RefreshLockManager(db)
        self.logger = logger.bind(component="feed_cache")

    async def get_entries(self, label: str, feed_url: str) -> List[FeedEntry]:
        """
        Entries of one feed, newest publication date first.

        Args:
            label: Display title of the feed, stored on first reference
            feed_url: Feed URL

        Returns:
            Stored entries, freshly fetched entries, a single error entry, or []
        """
        feeds = self.repositories.feeds
        entries = self.repositories.entries

        try:
            now = now_ms()
            feed = await feeds.get_by_url(feed_url)
            created = False

            if feed is None:
                self.logger.info("No existing data, creating feed", label=label, feed_url=feed_url)
                feed_id = await feeds.get_or_create(feed_url, label)
                created = True
                refresh_required = True
            else:
                feed_id = feed["id"]
                age_minutes = round((now - int(feed["last_fetched"] or 0)) / 60000)
                refresh_required = is_stale(feed["last_fetched"], now)
                if refresh_required:
                    self.logger.info("Cached data is stale", label=label, age_minutes=age_minutes)
                else:
                    self.logger.debug("Using cached data", label=label, age_minutes=age_minutes)

            fetched: Optional[ParsedFeed] = None
            if refresh_required:
                fetched = await self._refresh_with_lock(feed_id, label, feed_url, now, created)

            rows = await entries.list_for_feed(feed_id)
            if rows:
                self.logger.info("Retrieved entries", label=label, count=len(rows))
                return [FeedEntry.from_row(row, feed_url) for row in rows]

            self.logger.warning("No entries found in store, fetching fresh data as fallback", label=label)
            return await self._direct_fetch(feed_id, label, feed_url, fetched)

        except Exception as e:
            self.logger.error("Error getting entries", label=label, feed_url=feed_url, error=str(e))
            return await self._last_resort(label, feed_url)

    async def _refresh_with_lock(
        self,
        feed_id: int,
        label: str,
        feed_url: str,
        observed_at: int,
        created: bool = False,
    ) -> Optional[ParsedFeed]:
        """
        Fetch and store a stale feed while holding its refresh lock.

        Returns:
            The feed fetched by this call, or None when no fetch happened
        """
        if not await self.lock_manager.acquire(feed_url):
            self.logger.info("Another process is refreshing this feed, using existing data", label=label)
            return None

        fetched = None
        try:
            # Another holder may have refreshed while the lock was being acquired
            last_fetched = await self.repositories.feeds.get_last_fetched(feed_url)
            if not created and not is_stale(last_fetched, observed_at):
                self.logger.debug("Feed refreshed by another process while acquiring lock", label=label)
                return None

            try:
                fetched = await self.fetcher.fetch_and_parse(feed_url)
                await self._store(feed_id, label, fetched)
            except Exception as e:
                self.logger.error("Error refreshing feed", label=label, feed_url=feed_url, error=str(e))
        finally:
            await self.lock_manager.release(feed_url)

        return fetched

    async def _store(self, feed_id: int, label: str, feed: ParsedFeed) -> int:
        if feed.is_fallback:
            self.logger.warning("Feed could not be fetched, not updating store", label=label)
            return 0
        if not feed.items:
            self.logger.warning("Feed returned 0 items, not updating store", label=label)
            return 0
        self.logger.info("Storing fresh entries", label=label, count=len(feed.items))
        return await self.repositories.entries.store_entries(feed_id, feed.items)

    async def _direct_fetch(
        self,
        feed_id: int,
        label: str,
        feed_url: str,
        fetched: Optional[ParsedFeed],
    ) -> List[FeedEntry]:
        feed = fetched
        if feed is None:
            feed = await self.fetcher.fetch_and_parse(feed_url)

        if feed.is_fallback:
            return newest_first(feed.items)

        if feed.items and fetched is None:
            try:
                await self._store(feed_id, label, feed)
            except Exception as e:
                self.logger.error("Fallback store failed", label=label, error=str(e))

        return newest_first(feed.items)

    async def _last_resort(self, label: str, feed_url: str) -> List[FeedEntry]:
        try:
            self.logger.info("Attempting direct fetch as last resort", label=label)
            feed = await self.fetcher.fetch_and_parse(feed_url)
            return newest_first(feed.items)
        except Exception as e:
            self.logger.error("Direct fetch failed", label=label, feed_url=feed_url, error=str(e))
            return []

    async def fetch_and_store(self, label: str, feed_url: str) -> None:
        """Warm the cache for one feed."""
        try:
            await self.get_entries(label, feed_url)
        except Exception as e:
            self.logger.error("Error in fetch_and_store", label=label, error=str(e))

    async def refresh_existing_feeds(self, titles: Sequence[str]) -> int:
        """
        Refresh every known, stale feed whose title is in titles.

        Feeds refresh concurrently; each one is lock-guarded on its own.

        Returns:
            Number of feeds that were fetched
        """
        try:
            known = await self.repositories.feeds.find_by_titles(titles)
        except Exception as e:
            self.logger.error("Error loading feeds to refresh", error=str(e))
            return 0

        now = now_ms()
        stale = [feed for feed in known if is_stale(feed["last_fetched"], now)]
        if not stale:
            self.logger.debug("All requested feeds are fresh", feeds=len(known))
            return 0

        self.logger.info("Refreshing stale feeds", stale=len(stale), requested=len(titles))
        results = await asyncio.gather(
            *(
                self._refresh_with_lock(feed["id"], feed["title"], feed["feed_url"], now)
                for feed in stale
            ),
            return_exceptions=True,
        )

        refreshed = 0
        for feed, result in zip(stale, results):
            if isinstance(result, BaseException):
                self.logger.error("Error refreshing feed", feed_url=feed["feed_url"], error=str(result))
            elif result is not None:
                refreshed += 1
        return refreshed

    async def paginate(
        self,
        titles: Sequence[str],
        page: int = 1,
        page_size: int = 30,
        total_entries: Optional[int] = None,
    ) -> EntryPage:
        """
        One page of entries merged across the feeds with the given titles.

        Only the first page checks for stale feeds. A client-supplied total
        skips the count query; has_more then keeps a margin of 2 because the
        cached count may lag behind the store.
        """
        titles = list(titles)
        if not titles:
            return EntryPage(entries=[], has_more=False, total_entries=0, titles=[])

        if page == 1:
            await self.refresh_existing_feeds(titles)
        else:
            self.logger.debug("Skipping refresh check", page=page)

        offset = (page - 1) * page_size
        entries = self.repositories.entries

        if total_entries is None:
            total = await entries.count_by_feed_titles(titles)
        else:
            total = total_entries

        rows = await entries.paginate_by_feed_titles(titles, limit=page_size, offset=offset)

        if total_entries is not None:
            has_more = total > offset + len(rows) + 2
        else:
            has_more = total > offset + len(rows)

        self.logger.info(
            "Built entry page",
            page=page,
            page_size=page_size,
            returned=len(rows),
            total=total,
            has_more=has_more,
        )
        return EntryPage(
            entries=[FeedEntry.from_row(row) for row in rows],
            has_more=has_more,
            total_entries=total,
            titles=titles,
        )
