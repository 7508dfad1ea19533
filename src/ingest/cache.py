"""SQLite-backed range cache for fetched thread records.

Entries are keyed by ``(scope, range_start, range_end)`` and carry an expiry.
Expired entries are invisible to lookups and are purged lazily on the next
access; there is no background sweep.  The table is bounded to the N most
recently fetched entries per scope; older ones are evicted on write.

All database operations use parameterized queries.  Range bounds and
timestamps are stored as epoch seconds (REAL) so range comparisons happen in
SQL.  The clock is injected so tests can move time without sleeping.
"""

import logging
import sqlite3
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TypedDict

from pydantic import TypeAdapter

from src.config import get_settings
from src.ingest.models import ConversationRecord, ensure_aware
from src.observability.metrics import CACHE_LOOKUPS_TOTAL

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(minutes=30)
DEFAULT_MAX_ENTRIES = 10

_RECORDS_ADAPTER = TypeAdapter(list[ConversationRecord])

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS range_cache (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    scope        TEXT NOT NULL,
    range_start  REAL NOT NULL,
    range_end    REAL NOT NULL,
    records      TEXT NOT NULL,
    record_count INTEGER NOT NULL DEFAULT 0,
    fetched_at   REAL NOT NULL,
    expires_at   REAL NOT NULL,
    UNIQUE (scope, range_start, range_end)
);
CREATE INDEX IF NOT EXISTS idx_range_cache_range ON range_cache(scope, range_start, range_end);
CREATE INDEX IF NOT EXISTS idx_range_cache_fetched ON range_cache(scope, fetched_at);
"""


class CacheStats(TypedDict):
    entries: int
    records: int
    size_bytes: int


def get_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Open a SQLite connection for the range cache.

    Args:
        db_path: Explicit path to the database file. If None, reads from
                 settings; an empty setting means an in-memory database.

    Returns:
        A new sqlite3.Connection with row_factory set to sqlite3.Row.
    """
    if db_path is None:
        db_path = get_settings().cache_db_path or ":memory:"

    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    if db_path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Create the cache table and indexes if they don't exist (idempotent)."""
    conn.executescript(_SCHEMA_SQL)


def get_initialized_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Get a connection with schema already initialized. Convenience wrapper."""
    conn = get_connection(db_path)
    init_schema(conn)
    return conn


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _epoch(dt: datetime) -> float:
    return ensure_aware(dt).timestamp()


class RangeCache:
    """Time-range keyed cache with TTL expiry, LRU bound, and superset lookup."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        ttl: timedelta = DEFAULT_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        scope: str = "default",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._conn = conn
        self._ttl = ttl
        self._max_entries = max_entries
        self._scope = scope
        self._clock = clock
        init_schema(conn)

    @property
    def scope(self) -> str:
        return self._scope

    def _purge_expired(self, now: float) -> None:
        cursor = self._conn.execute(
            "DELETE FROM range_cache WHERE scope = ? AND expires_at <= ?",
            (self._scope, now),
        )
        self._conn.commit()
        if cursor.rowcount:
            logger.debug("Purged %d expired cache entries (scope=%s)", cursor.rowcount, self._scope)

    def lookup(self, start: datetime, end: datetime) -> list[ConversationRecord] | None:
        """Return cached records for ``[start, end)``, or None on a miss.

        An entry whose key equals the range wins.  Otherwise the most recently
        fetched entry whose range contains the request is filtered down to
        records created inside ``[start, end)``.
        """
        now = _epoch(self._clock())
        self._purge_expired(now)
        req_start, req_end = _epoch(start), _epoch(end)

        row = self._conn.execute(
            "SELECT records FROM range_cache WHERE scope = ? AND range_start = ? AND range_end = ?",
            (self._scope, req_start, req_end),
        ).fetchone()
        if row is not None:
            CACHE_LOOKUPS_TOTAL.labels(result="exact").inc()
            records = _RECORDS_ADAPTER.validate_json(row["records"])
            logger.info("Cache hit (exact): %d records", len(records))
            return records

        row = self._conn.execute(
            """SELECT records FROM range_cache
               WHERE scope = ? AND range_start <= ? AND range_end >= ?
               ORDER BY fetched_at DESC, id DESC LIMIT 1""",
            (self._scope, req_start, req_end),
        ).fetchone()
        if row is not None:
            CACHE_LOOKUPS_TOTAL.labels(result="superset").inc()
            cached = _RECORDS_ADAPTER.validate_json(row["records"])
            lower, upper = ensure_aware(start), ensure_aware(end)
            records = [r for r in cached if lower <= r.created_at < upper]
            logger.info("Cache hit (superset): filtered %d of %d records", len(records), len(cached))
            return records

        CACHE_LOOKUPS_TOTAL.labels(result="miss").inc()
        logger.debug("Cache miss for %s - %s", start.isoformat(), end.isoformat())
        return None

    def store(self, start: datetime, end: datetime, records: list[ConversationRecord]) -> None:
        """Insert or replace the entry for ``[start, end)`` and enforce the entry bound.

        The replace and the eviction run in one transaction, so concurrent
        writers never observe a half-written key.
        """
        now = self._clock()
        fetched_at = _epoch(now)
        expires_at = _epoch(now + self._ttl)
        payload = _RECORDS_ADAPTER.dump_json(records).decode("utf-8")

        with self._conn:
            self._conn.execute(
                """INSERT OR REPLACE INTO range_cache
                   (scope, range_start, range_end, records, record_count, fetched_at, expires_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (self._scope, _epoch(start), _epoch(end), payload, len(records), fetched_at, expires_at),
            )
            evicted = self._conn.execute(
                """DELETE FROM range_cache WHERE scope = ? AND id NOT IN (
                       SELECT id FROM range_cache WHERE scope = ?
                       ORDER BY fetched_at DESC, id DESC LIMIT ?
                   )""",
                (self._scope, self._scope, self._max_entries),
            ).rowcount
        if evicted:
            logger.debug("Evicted %d least recently fetched cache entries", evicted)
        logger.info("Cached %d records for %s - %s", len(records), start.isoformat(), end.isoformat())

    def invalidate(self, start: datetime, end: datetime) -> bool:
        """Remove the entry for exactly ``[start, end)``. Returns True if one existed."""
        cursor = self._conn.execute(
            "DELETE FROM range_cache WHERE scope = ? AND range_start = ? AND range_end = ?",
            (self._scope, _epoch(start), _epoch(end)),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def clear(self) -> int:
        """Remove every entry in this scope. Returns the number removed."""
        cursor = self._conn.execute("DELETE FROM range_cache WHERE scope = ?", (self._scope,))
        self._conn.commit()
        logger.info("Cleared %d cache entries (scope=%s)", cursor.rowcount, self._scope)
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()

    def stats(self) -> CacheStats:
        """Entry count, cached record count, and approximate payload size."""
        self._purge_expired(_epoch(self._clock()))
        row = self._conn.execute(
            """SELECT COUNT(*) AS entries,
                      COALESCE(SUM(record_count), 0) AS records,
                      COALESCE(SUM(LENGTH(records)), 0) AS size_bytes
               FROM range_cache WHERE scope = ?""",
            (self._scope,),
        ).fetchone()
        return CacheStats(entries=row["entries"], records=row["records"], size_bytes=row["size_bytes"])
