"""SQLite-backed TranscriptCache with TTL expiry and LRU size eviction."""

import asyncio
import hashlib
import json
import logging
import sqlite3
import threading
import time
from pathlib import Path

from linkscribe.models.transcript import CacheLookup, CacheWrite

logger = logging.getLogger(__name__)

DEFAULT_CACHE_MAX_BYTES = 512 * 1024 * 1024
_KIND = "transcript"
_EVICTION_BATCH = 50


def _hash_url(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def _now_ms() -> int:
    return int(time.time() * 1000)


class SqliteTranscriptCache:
    """Persistent transcript cache.

    One reusable connection (check_same_thread=False) guarded by a
    threading.Lock; the async get/set run the blocking work in a worker
    thread so concurrent requests never block the event loop.

    Rows live in a generic ``cache_entries`` table keyed by (kind, key) where
    key is sha256(url). Expired rows are sweeped on every write; once the
    total payload size exceeds ``max_bytes`` the least recently accessed rows
    are evicted.
    """

    def __init__(self, db_path: Path | str, max_bytes: int = DEFAULT_CACHE_MAX_BYTES) -> None:
        self._db_path = Path(db_path)
        self._max_bytes = max_bytes
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the shared connection. Caller must hold self._lock."""
        if self._connection is None:
            self._connection = sqlite3.connect(
                str(self._db_path),
                timeout=5.0,
                check_same_thread=False,
            )
            self._connection.execute("PRAGMA journal_mode=WAL")
            self._connection.execute("PRAGMA synchronous=NORMAL")
            self._connection.row_factory = sqlite3.Row
        return self._connection

    def _init_db(self) -> None:
        with self._lock:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cache_entries (
                    kind TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    size_bytes INTEGER NOT NULL,
                    created_at INTEGER NOT NULL,
                    last_accessed_at INTEGER NOT NULL,
                    expires_at INTEGER,
                    PRIMARY KEY (kind, key)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_cache_accessed ON cache_entries(last_accessed_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache_entries(expires_at)"
            )
            conn.commit()

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def clear(self) -> None:
        with self._lock:
            conn = self._get_connection()
            conn.execute("DELETE FROM cache_entries")
            conn.commit()

    # --- sync internals (caller holds no lock) ---

    def _get_sync(self, url: str) -> CacheLookup | None:
        key = _hash_url(url)
        now = _now_ms()
        with self._lock:
            conn = self._get_connection()
            row = conn.execute(
                "SELECT value, expires_at FROM cache_entries WHERE kind = ? AND key = ?",
                (_KIND, key),
            ).fetchone()
            if row is None:
                return None

            expires_at = row["expires_at"]
            expired = expires_at is not None and expires_at <= now
            if expired:
                # Reported once as expired, then gone
                conn.execute("DELETE FROM cache_entries WHERE kind = ? AND key = ?", (_KIND, key))
            else:
                conn.execute(
                    "UPDATE cache_entries SET last_accessed_at = ? WHERE kind = ? AND key = ?",
                    (now, _KIND, key),
                )
            conn.commit()

        try:
            payload = json.loads(row["value"])
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable transcript cache row for %s", url)
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        metadata = payload.get("metadata")
        return CacheLookup(
            content=payload.get("content"),
            source=payload.get("source"),
            expired=expired,
            metadata=metadata if isinstance(metadata, dict) else None,
        )

    def _set_sync(self, write: CacheWrite) -> None:
        key = _hash_url(write.url)
        now = _now_ms()
        value = json.dumps(
            {
                "content": write.content,
                "source": write.source.value,
                "metadata": write.metadata,
                "service": write.service,
                "resourceKey": write.resource_key,
            }
        )
        size_bytes = len(value.encode("utf-8"))

        with self._lock:
            conn = self._get_connection()
            conn.execute(
                "DELETE FROM cache_entries WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (now,),
            )
            conn.execute(
                """
                INSERT INTO cache_entries
                (kind, key, value, size_bytes, created_at, last_accessed_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(kind, key) DO UPDATE SET
                    value = excluded.value,
                    size_bytes = excluded.size_bytes,
                    created_at = excluded.created_at,
                    last_accessed_at = excluded.last_accessed_at,
                    expires_at = excluded.expires_at
                """,
                (_KIND, key, value, size_bytes, now, now, now + write.ttl_ms),
            )
            self._enforce_size(conn)
            conn.commit()
        logger.debug("Cached transcript for %s (%d bytes)", write.url, size_bytes)

    def _enforce_size(self, conn: sqlite3.Connection) -> None:
        """Evict least recently accessed rows until under max_bytes."""
        if self._max_bytes <= 0:
            return
        total = conn.execute(
            "SELECT COALESCE(SUM(size_bytes), 0) AS total FROM cache_entries"
        ).fetchone()["total"]
        while total > self._max_bytes:
            rows = conn.execute(
                "SELECT kind, key, size_bytes FROM cache_entries "
                "ORDER BY last_accessed_at ASC LIMIT ?",
                (_EVICTION_BATCH,),
            ).fetchall()
            if not rows:
                break
            for row in rows:
                if total <= self._max_bytes:
                    break
                conn.execute(
                    "DELETE FROM cache_entries WHERE kind = ? AND key = ?",
                    (row["kind"], row["key"]),
                )
                total -= row["size_bytes"]

    # --- TranscriptCache protocol ---

    async def get(self, url: str) -> CacheLookup | None:
        return await asyncio.to_thread(self._get_sync, url)

    async def set(self, write: CacheWrite) -> None:
        await asyncio.to_thread(self._set_sync, write)
