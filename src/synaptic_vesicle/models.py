"""
Synaptic Vesicle - Database Models
Layer 2: Signal Network

Tables backing the feed cache: known feeds, their append-only entries and
the short-lived refresh locks.
"""
from sqlalchemy import (
    BigInteger, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class RssFeed(Base):
    """
    One external feed, identified by its URL.
    last_fetched is epoch milliseconds of the last refresh.
    """
    __tablename__ = "rss_feeds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    feed_url = Column(String(2048), nullable=False)
    title = Column(Text, nullable=False, default="")
    last_fetched = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('feed_url', name='uq_rss_feeds_feed_url'),
        Index('ix_rss_feeds_title', 'title'),
    )

    def __repr__(self):
        return f"<RssFeed(id={self.id}, url='{self.feed_url}', last_fetched={self.last_fetched})>"


class RssEntry(Base):
    """
    Entries of a feed. (feed_id, guid) is unique; rows are never overwritten.
    pub_date holds a canonical ISO-8601 UTC string so it sorts as text.
    """
    __tablename__ = "rss_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    feed_id = Column(Integer, ForeignKey('rss_feeds.id', ondelete='CASCADE'), nullable=False)
    guid = Column(String(1024), nullable=False)
    title = Column(Text, nullable=False)
    link = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    pub_date = Column(String(32), nullable=False)
    image = Column(Text)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('feed_id', 'guid', name='uq_rss_entries_feed_guid'),
        Index('ix_rss_entries_pub_date', 'pub_date'),
        Index('ix_rss_entries_feed_id', 'feed_id'),
    )

    def __repr__(self):
        return f"<RssEntry(id={self.id}, feed_id={self.feed_id}, guid='{self.guid[:50]}')>"


class RssLock(Base):
    """Refresh lock row; a row whose expires_at (epoch ms) has passed is vacant."""
    __tablename__ = "rss_locks"

    lock_key = Column(String(2100), primary_key=True)
    expires_at = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    __table_args__ = (
        Index('ix_rss_locks_expires_at', 'expires_at'),
    )

    def __repr__(self):
        return f"<RssLock(key='{self.lock_key}', expires_at={self.expires_at})>"
