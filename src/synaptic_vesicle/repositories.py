"""
Synaptic Vesicle - Repository Pattern for Data Access
Layer 2: Signal Network

Feed and entry access on top of the DatabaseManager. Entries are append-only:
a refresh inserts guids the feed has not seen yet and never touches
existing rows.
"""
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

import structlog
from sqlalchemy import func, insert, select, update

from ..dendrites.dates import normalize_date
from ..dendrites.feed_parser import ParsedItem
from .database import DatabaseManager
from .models import RssEntry, RssFeed

logger = structlog.get_logger(__name__)

# Rows per multi-VALUES insert statement
INSERT_CHUNK_SIZE = 100
DESCRIPTION_MAX_LENGTH = 200

ENTRY_COLUMNS = (
    RssEntry.guid,
    RssEntry.title,
    RssEntry.link,
    RssEntry.description,
    RssEntry.pub_date,
    RssEntry.image,
)


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def chunked(items: Sequence[Any], size: int = INSERT_CHUNK_SIZE) -> List[Sequence[Any]]:
    return [items[start:start + size] for start in range(0, len(items), size)]


class FeedRepository:
    """Repository for the rss_feeds table."""

    def __init__(self, db: DatabaseManager):
        self.db = db
        self.logger = logger.bind(component="feed_repository")

    async def get_by_url(self, feed_url: str) -> Optional[Dict[str, Any]]:
        result = await self.db.execute_query(
            select(RssFeed.id, RssFeed.feed_url, RssFeed.title, RssFeed.last_fetched)
            .where(RssFeed.feed_url == feed_url)
        )
        return result.first()

    async def get_last_fetched(self, feed_url: str) -> Optional[int]:
        """last_fetched (epoch ms) of a feed, or None when the feed is unknown."""
        result = await self.db.execute_query(
            select(RssFeed.last_fetched).where(RssFeed.feed_url == feed_url)
        )
        return result.scalar()

    async def create(self, feed_url: str, title: str) -> int:
        """Insert a feed row stamped as fetched now and return its id."""
        timestamp = datetime.now(timezone.utc)
        result = await self.db.execute_query(
            insert(RssFeed).values(
                feed_url=feed_url,
                title=title,
                last_fetched=now_ms(),
                created_at=timestamp,
                updated_at=timestamp,
            )
        )
        self.logger.info("Created feed", feed_url=feed_url, feed_id=result.inserted_primary_key)
        return result.inserted_primary_key

    async def get_or_create(self, feed_url: str, title: str) -> int:
        """
        Return the id of a feed, creating the row on first reference.

        A concurrent creator can win the unique constraint race; the row it
        created is then looked up again.
        """
        existing = await self.get_by_url(feed_url)
        if existing:
            return existing["id"]

        try:
            return await self.create(feed_url, title)
        except Exception as e:
            existing = await self.get_by_url(feed_url)
            if existing:
                self.logger.debug("Feed created concurrently", feed_url=feed_url)
                return existing["id"]
            self.logger.error("Error creating feed", feed_url=feed_url, error=str(e))
            raise

    def touch_statement(self, feed_id: int, fetched_at: Optional[int] = None):
        return (
            update(RssFeed)
            .where(RssFeed.id == feed_id)
            .values(
                updated_at=datetime.now(timezone.utc),
                last_fetched=fetched_at if fetched_at is not None else now_ms(),
            )
        )

    async def touch(self, feed_id: int, fetched_at: Optional[int] = None) -> None:
        """Bump updated_at and last_fetched of a feed."""
        await self.db.execute_query(self.touch_statement(feed_id, fetched_at))

    async def find_by_titles(self, titles: Iterable[str]) -> List[Dict[str, Any]]:
        titles = list(titles)
        if not titles:
            return []
        result = await self.db.execute_query(
            select(RssFeed.id, RssFeed.feed_url, RssFeed.title, RssFeed.last_fetched)
            .where(RssFeed.title.in_(titles))
        )
        return result.rows


class EntryRepository:
    """Repository for the rss_entries table."""

    def __init__(self, db: DatabaseManager, feeds: Optional[FeedRepository] = None):
        self.db = db
        self.feeds = feeds or FeedRepository(db)
        self.logger = logger.bind(component="entry_repository")

    async def existing_guids(self, feed_id: int) -> Set[str]:
        result = await self.db.execute_query(
            select(RssEntry.guid).where(RssEntry.feed_id == feed_id)
        )
        return {row["guid"] for row in result.rows}

    async def list_for_feed(self, feed_id: int) -> List[Dict[str, Any]]:
        """All entries of a feed, newest publication date first."""
        result = await self.db.execute_query(
            select(*ENTRY_COLUMNS, RssFeed.feed_url, RssFeed.title.label("feed_title"))
            .join(RssFeed, RssFeed.id == RssEntry.feed_id)
            .where(RssEntry.feed_id == feed_id)
            .order_by(RssEntry.pub_date.desc())
        )
        return result.rows

    def _entry_row(self, feed_id: int, item: ParsedItem, created_at: datetime) -> Dict[str, Any]:
        return {
            "feed_id": feed_id,
            "guid": item.guid,
            "title": item.title,
            "link": item.link or "",
            "description": (item.description or "")[:DESCRIPTION_MAX_LENGTH],
            "pub_date": normalize_date(item.pub_date),
            "image": item.image or None,
            "created_at": created_at,
        }

    async def store_entries(self, feed_id: int, items: Sequence[ParsedItem]) -> int:
        """
        Insert entries the feed does not have yet and bump its timestamps.

        Existing guids (and guids repeated within the batch) are filtered out
        before writing. All chunk inserts and the timestamp update commit
        together or not at all.

        Returns:
            Number of entries inserted
        """
        if not items:
            self.logger.debug("No entries to store", feed_id=feed_id)
            return 0

        existing = await self.existing_guids(feed_id)
        created_at = datetime.now(timezone.utc)

        new_rows = []
        seen = set(existing)
        for item in items:
            if not item.guid or item.guid in seen:
                continue
            seen.add(item.guid)
            new_rows.append(self._entry_row(feed_id, item, created_at))

        touch = self.feeds.touch_statement(feed_id)

        if not new_rows:
            self.logger.debug("No new entries, updating feed timestamp only", feed_id=feed_id)
            await self.db.execute_query(touch)
            return 0

        operations = [(insert(RssEntry).values(list(chunk)), None) for chunk in chunked(new_rows)]
        operations.append((touch, None))

        await self.db.execute_batch_transaction(operations)
        self.logger.info(
            "Stored new entries",
            feed_id=feed_id,
            inserted=len(new_rows),
            skipped=len(items) - len(new_rows),
            chunks=len(operations) - 1,
        )
        return len(new_rows)

    async def paginate_by_feed_titles(self, titles: Sequence[str], limit: int, offset: int) -> List[Dict[str, Any]]:
        """One page of entries across the feeds with the given titles, newest first."""
        if not titles:
            return []
        result = await self.db.execute_query(
            select(*ENTRY_COLUMNS, RssFeed.feed_url, RssFeed.title.label("feed_title"))
            .join(RssFeed, RssFeed.id == RssEntry.feed_id)
            .where(RssFeed.title.in_(list(titles)))
            .order_by(RssEntry.pub_date.desc(), RssEntry.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return result.rows

    async def count_by_feed_titles(self, titles: Sequence[str]) -> int:
        if not titles:
            return 0
        result = await self.db.execute_query(
            select(func.count(RssEntry.id).label("total"))
            .join(RssFeed, RssFeed.id == RssEntry.feed_id)
            .where(RssFeed.title.in_(list(titles)))
        )
        return int(result.scalar() or 0)


class RepositoryFactory:
    """Factory for creating repository instances."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    @property
    def feeds(self) -> FeedRepository:
        return FeedRepository(self.db)

    @property
    def entries(self) -> EntryRepository:
        return EntryRepository(self.db, self.feeds)
