"""
Synaptic Vesicle - Refresh Lock Manager
Layer 2: Signal Network

Cross-process mutual exclusion for feed refreshes. A lock is a row in
rss_locks; acquiring it is one atomic upsert that only overwrites a row whose
expiry has passed.
"""
import time

import structlog
from sqlalchemy import delete
from sqlalchemy.dialects import postgresql, sqlite

from .database import DatabaseManager
from .models import RssLock

logger = structlog.get_logger(__name__)

LOCK_TTL_MS = 60 * 1000

UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def lock_key_for(feed_url: str) -> str:
    return f"refresh_lock:{feed_url}"


class RefreshLockManager:
    """
    Time-boxed refresh lock keyed by feed URL.

    acquire() fails closed: any store error means the lock is not held.
    release() never raises.
    """

    def __init__(self, db: DatabaseManager, ttl_ms: int = LOCK_TTL_MS):
        self.db = db
        self.ttl_ms = ttl_ms
        self.logger = logger.bind(component="refresh_lock")

    def _acquire_statement(self, lock_key: str, now: int):
        insert = UPSERT_DIALECTS.get(self.db.dialect_name)
        if insert is None:
            raise NotImplementedError(f"Refresh locks are not supported on {self.db.dialect_name}")

        statement = insert(RssLock).values(lock_key=lock_key, expires_at=now + self.ttl_ms)
        return statement.on_conflict_do_update(
            index_elements=[RssLock.lock_key],
            set_={"expires_at": statement.excluded.expires_at},
            where=RssLock.expires_at < now,
        )

    async def acquire(self, feed_url: str) -> bool:
        """
        Try to take the refresh lock for a feed.

        Returns:
            True only when this call inserted the row or reclaimed an expired one
        """
        lock_key = lock_key_for(feed_url)
        now = int(time.time() * 1000)
        try:
            result = await self.db.execute_query(self._acquire_statement(lock_key, now))
        except Exception as e:
            self.logger.error("Error acquiring refresh lock", feed_url=feed_url, error=str(e))
            return False

        acquired = result.rowcount > 0
        if acquired:
            self.logger.debug("Acquired refresh lock", feed_url=feed_url, ttl_ms=self.ttl_ms)
        else:
            self.logger.info("Refresh lock held elsewhere", feed_url=feed_url)
        return acquired

    async def release(self, feed_url: str) -> None:
        """Delete the lock row; failures are logged and swallowed."""
        try:
            await self.db.execute_query(
                delete(RssLock).where(RssLock.lock_key == lock_key_for(feed_url))
            )
            self.logger.debug("Released refresh lock", feed_url=feed_url)
        except Exception as e:
            self.logger.error("Error releasing refresh lock", feed_url=feed_url, error=str(e))
