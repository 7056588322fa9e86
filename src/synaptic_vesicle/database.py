"""
Synaptic Vesicle - Database Connection and Query Execution
Layer 2: Signal Network

This module owns the process-wide connection pool. Every query checks out a
pooled connection (liveness-probed by pool_pre_ping), runs, and returns the
connection whether or not it succeeded. Multi-statement writes run in one
transaction that is rolled back on any failure.
"""
import asyncio
import signal
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import structlog
from sqlalchemy import text
from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.sql import Executable

from ..shared.config import DatabaseSettings
from .models import Base, RssLock

logger = structlog.get_logger(__name__)

Statement = Union[str, Executable]
Operation = Tuple[Statement, Optional[Dict[str, Any]]]


@dataclass
class QueryResult:
    """Outcome of one statement: fetched rows for reads, counts for writes."""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    rowcount: int = 0
    inserted_primary_key: Optional[Any] = None

    def first(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None

    def scalar(self) -> Any:
        row = self.first()
        if row is None:
            return None
        return next(iter(row.values()), None)


def _as_executable(statement: Statement) -> Executable:
    if isinstance(statement, str):
        return text(statement)
    return statement


def _primary_key(result) -> Optional[Any]:
    try:
        key = result.inserted_primary_key
    except (InvalidRequestError, AttributeError):
        return None
    if not key:
        return None
    return key[0]


class DatabaseManager:
    """
    Manages the connection pool for the Synaptic Vesicle.

    Constructed once per process and passed to the repositories, the refresh
    lock manager and the feed cache coordinator.
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        self.settings = settings or DatabaseSettings()
        self.engine: Optional[AsyncEngine] = None
        self._is_connected = False
        self.logger = logger.bind(component="database")

    @property
    def dialect_name(self) -> str:
        if self.engine is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self.engine.dialect.name

    def _engine_options(self, database_url: str) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "echo": self.settings.db_echo,
            "pool_pre_ping": True,  # Validate connections before use
        }
        if database_url.startswith("sqlite"):
            return options

        options.update(
            pool_size=self.settings.db_pool_size,
            max_overflow=self.settings.db_max_overflow,
            pool_timeout=self.settings.db_pool_timeout,
            pool_recycle=self.settings.db_pool_recycle,
        )
        if database_url.startswith("postgresql+asyncpg"):
            options["connect_args"] = {"timeout": self.settings.db_connect_timeout}
        return options

    async def initialize(self) -> None:
        """Create the engine and verify the store is reachable."""
        if self.engine is not None:
            return

        database_url = self.settings.get_database_url()
        try:
            self.engine = create_async_engine(database_url, **self._engine_options(database_url))

            if not await self.health_check():
                raise ConnectionError("Database health check failed")
            self._is_connected = True

            self.logger.info(
                "Database connection initialized successfully",
                dialect=self.engine.dialect.name,
                pool_size=self.settings.db_pool_size,
                max_overflow=self.settings.db_max_overflow,
            )
        except Exception as e:
            self.logger.error("Failed to initialize database connection", error=str(e))
            if self.engine is not None:
                await self.engine.dispose()
                self.engine = None
            raise

    def _require_engine(self) -> AsyncEngine:
        if self.engine is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self.engine

    async def execute_query(self, statement: Statement, params: Optional[Dict[str, Any]] = None) -> QueryResult:
        """
        Execute a single statement in its own transaction.

        Args:
            statement: SQLAlchemy Core statement or raw SQL text
            params: Bind parameters

        Returns:
            QueryResult with rows for reads, rowcount and primary key for writes
        """
        engine = self._require_engine()
        started = time.perf_counter()
        try:
            async with engine.begin() as conn:
                result = await conn.execute(_as_executable(statement), params)
                query_result = self._collect(result)
        except Exception as e:
            self.logger.error("Query failed", error=str(e), statement=str(statement)[:200])
            raise

        self.logger.debug(
            "Query executed",
            rows=len(query_result.rows),
            rowcount=query_result.rowcount,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return query_result

    async def execute_batch_transaction(self, operations: Sequence[Operation]) -> List[QueryResult]:
        """
        Execute several statements atomically.

        All operations share one connection and one transaction; if any of
        them fails the whole batch is rolled back and the error re-raised.
        """
        engine = self._require_engine()
        results = []
        try:
            async with engine.begin() as conn:
                for statement, params in operations:
                    result = await conn.execute(_as_executable(statement), params)
                    results.append(self._collect(result))
        except Exception as e:
            self.logger.error("Batch transaction rolled back", error=str(e), operations=len(operations))
            raise

        self.logger.debug("Batch transaction committed", operations=len(operations))
        return results

    def _collect(self, result) -> QueryResult:
        rows = [dict(row) for row in result.mappings().all()] if result.returns_rows else []
        return QueryResult(
            rows=rows,
            rowcount=result.rowcount if result.rowcount is not None else 0,
            inserted_primary_key=_primary_key(result) if not result.returns_rows else None,
        )

    async def ensure_lock_table(self) -> None:
        """Create the refresh lock table if it does not exist."""
        engine = self._require_engine()
        try:
            async with engine.begin() as conn:
                await conn.run_sync(RssLock.__table__.create, checkfirst=True)
            self.logger.info("Refresh lock table ready")
        except Exception as e:
            # Lock acquisition fails closed without the table
            self.logger.error("Error ensuring refresh lock table exists", error=str(e))

    async def create_all(self) -> None:
        """Create every feed cache table that does not exist yet."""
        engine = self._require_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.logger.info("Database tables created")

    async def health_check(self) -> bool:
        """
        Perform database health check.
        Returns True if database is accessible, False otherwise.
        """
        if not self.engine:
            return False

        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(text("SELECT 1"))
                return result.scalar() == 1
        except Exception as e:
            self.logger.error("Database health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Drain and close every pooled connection."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self._is_connected = False
            self.logger.info("Database connections closed")

    @property
    def is_connected(self) -> bool:
        """Check if database is connected."""
        return self._is_connected

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """
        Close the pool before the process exits on SIGINT/SIGTERM.

        For standalone workers; under uvicorn the application lifespan closes
        the pool instead.
        """
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, lambda s=sig: asyncio.ensure_future(self._shutdown(s, loop)))
            except (NotImplementedError, RuntimeError):
                self.logger.debug("Signal handlers not supported on this loop", signal=sig.name)
                return

    async def _shutdown(self, sig: signal.Signals, loop: asyncio.AbstractEventLoop) -> None:
        self.logger.info("Received shutdown signal, closing database pool", signal=sig.name)
        try:
            await self.close()
        except Exception as e:
            self.logger.error("Error closing database pool", error=str(e))
        finally:
            loop.stop()
