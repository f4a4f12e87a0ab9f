"""Durable store tier.

Holds indicator -> verdict rows with a popularity counter and enforces a row
ceiling by deleting the least accessed (then oldest) rows after each write.
Also keeps the per-user access ledger (`user_scan_stats`), which eviction
never touches.

All counter updates are relative (`access_count = access_count + 1`) and run
inside the same transaction as the read or write they belong to, so
concurrent requests for one indicator are serialized by the database.

Backends:
- PostgresScanStore: psycopg2 connection pool, READ COMMITTED reads with row
  locks, SERIALIZABLE writes (upsert + eviction in one transaction)
- SqliteScanStore: stdlib sqlite3 for local runs and tests; every
  transaction takes the write lock up front (BEGIN IMMEDIATE)
"""

from __future__ import annotations

import logging
import os
import sqlite3
import time
from contextlib import contextmanager
from typing import Any, Callable, ContextManager, Iterator, Optional

import psycopg2
import psycopg2.extensions
import psycopg2.pool

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

MAX_RECORDS = 10000

READ_COMMITTED = "read committed"
SERIALIZABLE = "serializable"


def default_db_path() -> str:
    base = os.getenv("XDG_CACHE_HOME") or os.path.expanduser("~/.cache")
    return os.path.join(base, "threat-lookup", "scans.sqlite")


class ScanStore:
    """Transactional operations shared by the SQL backends.

    Subclasses provide the SQL text (paramstyle differs), the schema and
    `_transaction(isolation)`, a context manager yielding a DB-API cursor that
    commits on success and rolls back on error.
    """

    SCHEMA: tuple[str, ...] = ()
    SQL_SELECT_FOR_READ = ""
    SQL_INCREMENT = ""
    SQL_UPSERT = ""
    SQL_COUNT = "SELECT COUNT(*) FROM scan_results"
    SQL_EVICT = ""
    SQL_USER_STAT = ""

    driver_errors: tuple[type[Exception], ...] = ()

    def __init__(self, *, max_records: int = MAX_RECORDS, clock: Callable[[], float] = time.time):
        self.max_records = max_records
        self.clock = clock

    def _transaction(self, isolation: str) -> ContextManager[Any]:
        raise NotImplementedError

    @contextmanager
    def _errors(self, operation: str, indicator_type: str = "", value: str = "") -> Iterator[None]:
        try:
            yield
        except self.driver_errors as e:
            logger.error("store %s failed for %s:%s: %s", operation, indicator_type, value, e)
            raise StoreUnavailable(
                f"store {operation} failed: {e}",
                {"type": indicator_type, "request": value},
            ) from e

    def init_schema(self) -> None:
        with self._errors("init_schema"), self._transaction(SERIALIZABLE) as cur:
            for statement in self.SCHEMA:
                cur.execute(statement)

    def get(self, indicator_type: str, value: str) -> Optional[str]:
        """Saved verdict for (type, value), or None.

        A hit increments `access_count` before the transaction commits.
        """
        with self._errors("get", indicator_type, value), self._transaction(READ_COMMITTED) as cur:
            cur.execute(self.SQL_SELECT_FOR_READ, (indicator_type, value))
            row = cur.fetchone()
            if row is None:
                logger.debug("store miss: %s:%s", indicator_type, value)
                return None
            cur.execute(self.SQL_INCREMENT, (indicator_type, value))

        logger.debug("store hit: %s:%s", indicator_type, value)
        return row[0]

    def touch(self, indicator_type: str, value: str) -> bool:
        """Count an access served by another tier. False when no row exists."""
        with self._errors("touch", indicator_type, value), self._transaction(READ_COMMITTED) as cur:
            cur.execute(self.SQL_INCREMENT, (indicator_type, value))
            return cur.rowcount > 0

    def put(self, indicator_type: str, value: str, payload: str) -> None:
        """Upsert a verdict, then run the eviction sweep in the same transaction."""
        with self._errors("put", indicator_type, value), self._transaction(SERIALIZABLE) as cur:
            cur.execute(self.SQL_UPSERT, (indicator_type, value, payload, self.clock()))
            evicted = self._evict(cur)

        logger.debug("stored %s:%s (evicted %d)", indicator_type, value, evicted)

    def evict_least_popular(self) -> int:
        """Trim the table to `max_records` rows; returns how many were deleted."""
        with self._errors("evict"), self._transaction(SERIALIZABLE) as cur:
            return self._evict(cur)

    def _evict(self, cur: Any) -> int:
        cur.execute(self.SQL_COUNT)
        count = int(cur.fetchone()[0])
        excess = count - self.max_records
        if excess <= 0:
            return 0

        cur.execute(self.SQL_EVICT, (excess,))
        logger.info("evicted %d least popular scan results", excess)
        return excess

    def record_user_stat(self, user_id: int, indicator_type: str, value: str, zone: str) -> None:
        with self._errors("record_user_stat", indicator_type, value), self._transaction(READ_COMMITTED) as cur:
            cur.execute(self.SQL_USER_STAT, (user_id, indicator_type, value, zone, self.clock()))

    def count(self) -> int:
        with self._errors("count"), self._transaction(READ_COMMITTED) as cur:
            cur.execute(self.SQL_COUNT)
            return int(cur.fetchone()[0])

    def close(self) -> None:
        pass


class PostgresScanStore(ScanStore):
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS scan_results (
            id BIGSERIAL PRIMARY KEY,
            type TEXT NOT NULL,
            request TEXT NOT NULL,
            response JSON NOT NULL,
            access_count INTEGER NOT NULL DEFAULT 1 CHECK (access_count >= 1),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            UNIQUE (type, request)
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS scan_results_popularity_idx
            ON scan_results (access_count, created_at)
        """,
        """
        CREATE TABLE IF NOT EXISTS user_scan_stats (
            id BIGSERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL,
            type TEXT NOT NULL,
            request TEXT NOT NULL,
            zone TEXT NOT NULL,
            access_count INTEGER NOT NULL DEFAULT 1,
            last_accessed TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            UNIQUE (user_id, type, request)
        )
        """,
    )

    # response::text keeps the stored document byte-for-byte.
    SQL_SELECT_FOR_READ = """
        SELECT response::text FROM scan_results
        WHERE type = %s AND request = %s
        FOR UPDATE
    """
    SQL_INCREMENT = """
        UPDATE scan_results
        SET access_count = access_count + 1
        WHERE type = %s AND request = %s
    """
    SQL_UPSERT = """
        INSERT INTO scan_results (type, request, response, access_count, created_at)
        VALUES (%s, %s, %s::json, 1, to_timestamp(%s))
        ON CONFLICT (type, request) DO UPDATE
        SET access_count = scan_results.access_count + 1,
            response = EXCLUDED.response,
            created_at = EXCLUDED.created_at
    """
    SQL_EVICT = """
        DELETE FROM scan_results
        WHERE id IN (
            SELECT id FROM scan_results
            ORDER BY access_count ASC, created_at ASC, id ASC
            LIMIT %s
            FOR UPDATE
        )
    """
    SQL_USER_STAT = """
        INSERT INTO user_scan_stats (user_id, type, request, zone, access_count, last_accessed)
        VALUES (%s, %s, %s, %s, 1, to_timestamp(%s))
        ON CONFLICT (user_id, type, request) DO UPDATE
        SET access_count = user_scan_stats.access_count + 1,
            zone = EXCLUDED.zone,
            last_accessed = EXCLUDED.last_accessed
    """

    driver_errors = (psycopg2.Error,)

    _ISOLATION = {
        READ_COMMITTED: psycopg2.extensions.ISOLATION_LEVEL_READ_COMMITTED,
        SERIALIZABLE: psycopg2.extensions.ISOLATION_LEVEL_SERIALIZABLE,
    }

    def __init__(self, pool: "psycopg2.pool.AbstractConnectionPool", **kwargs: Any):
        super().__init__(**kwargs)
        self.pool = pool

    @classmethod
    def from_dsn(cls, dsn: str, *, minconn: int = 1, maxconn: int = 10, **kwargs: Any) -> "PostgresScanStore":
        try:
            pool = psycopg2.pool.ThreadedConnectionPool(minconn, maxconn, dsn)
        except psycopg2.Error as e:
            raise StoreUnavailable(f"cannot connect to PostgreSQL: {e}") from e
        return cls(pool, **kwargs)

    @contextmanager
    def _transaction(self, isolation: str) -> Iterator[Any]:
        conn = self.pool.getconn()
        try:
            conn.set_session(isolation_level=self._ISOLATION[isolation], autocommit=False)
            # psycopg2: leaving the block commits, an exception rolls back.
            with conn:
                with conn.cursor() as cur:
                    yield cur
        finally:
            self.pool.putconn(conn, close=bool(conn.closed))

    def close(self) -> None:
        self.pool.closeall()


class SqliteScanStore(ScanStore):
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS scan_results (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            type TEXT NOT NULL,
            request TEXT NOT NULL,
            response TEXT NOT NULL,
            access_count INTEGER NOT NULL DEFAULT 1 CHECK (access_count >= 1),
            created_at REAL NOT NULL,
            UNIQUE (type, request)
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS scan_results_popularity_idx
            ON scan_results (access_count, created_at)
        """,
        """
        CREATE TABLE IF NOT EXISTS user_scan_stats (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            type TEXT NOT NULL,
            request TEXT NOT NULL,
            zone TEXT NOT NULL,
            access_count INTEGER NOT NULL DEFAULT 1,
            last_accessed REAL NOT NULL,
            UNIQUE (user_id, type, request)
        )
        """,
    )

    SQL_SELECT_FOR_READ = "SELECT response FROM scan_results WHERE type = ? AND request = ?"
    SQL_INCREMENT = """
        UPDATE scan_results
        SET access_count = access_count + 1
        WHERE type = ? AND request = ?
    """
    SQL_UPSERT = """
        INSERT INTO scan_results (type, request, response, access_count, created_at)
        VALUES (?, ?, ?, 1, ?)
        ON CONFLICT (type, request) DO UPDATE
        SET access_count = scan_results.access_count + 1,
            response = excluded.response,
            created_at = excluded.created_at
    """
    SQL_EVICT = """
        DELETE FROM scan_results
        WHERE id IN (
            SELECT id FROM scan_results
            ORDER BY access_count ASC, created_at ASC, id ASC
            LIMIT ?
        )
    """
    SQL_USER_STAT = """
        INSERT INTO user_scan_stats (user_id, type, request, zone, access_count, last_accessed)
        VALUES (?, ?, ?, ?, 1, ?)
        ON CONFLICT (user_id, type, request) DO UPDATE
        SET access_count = user_scan_stats.access_count + 1,
            zone = excluded.zone,
            last_accessed = excluded.last_accessed
    """

    driver_errors = (sqlite3.Error,)

    def __init__(self, path: str, *, busy_timeout: float = 30, **kwargs: Any):
        # Each transaction opens its own connection, so an in-memory
        # database would be empty again on the next call.
        if not path or path == ":memory:" or path.startswith("file::memory:"):
            raise ValueError("SqliteScanStore needs a database file path, not an in-memory database")
        super().__init__(**kwargs)
        self.path = path
        self.busy_timeout = busy_timeout
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=self.busy_timeout, isolation_level=None)

    @contextmanager
    def _transaction(self, isolation: str) -> Iterator[Any]:
        con = self._connect()
        try:
            con.execute("BEGIN IMMEDIATE")
            cur = con.cursor()
            try:
                yield cur
            except BaseException:
                con.rollback()
                raise
            con.commit()
        finally:
            con.close()
