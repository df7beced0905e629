"""Replay caches for request nonces.

Both caches take an optional ``now`` (epoch seconds) so expiry follows the
same clock the verifier uses for its timestamp window.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import Protocol

from saccolink.common.errors import NonceCacheFull
from saccolink.common.settings import Settings


class NonceStore(Protocol):
    def check_and_store(self, nonce: str, now: float | None = None) -> bool: ...


class NonceCache:
    """In-memory nonce cache with TTL eviction.

    Lookups and inserts share one lock, so two concurrent requests carrying
    the same nonce cannot both be accepted. Live entries are never evicted:
    when ``max_entries`` live nonces are held, new ones are refused with
    NonceCacheFull until older ones expire.
    """

    def __init__(self, ttl_seconds: float = 300.0, max_entries: int = 100_000):
        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._entries: OrderedDict[str, float] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def _evict_expired(self, now: float) -> None:
        # Entries are kept in insertion order and share one TTL
        while self._entries:
            nonce, expires_at = next(iter(self._entries.items()))
            if expires_at > now:
                break
            self._entries.pop(nonce, None)

    def check_and_store(self, nonce: str, now: float | None = None) -> bool:
        """
        Record a nonce.

        Returns:
            False if the nonce was already seen within the TTL

        Raises:
            NonceCacheFull: If the cache holds max_entries live nonces
        """
        if now is None:
            now = time.time()
        with self._lock:
            self._evict_expired(now)
            if nonce in self._entries:
                return False
            if len(self._entries) >= self._max_entries:
                raise NonceCacheFull(
                    f"Replay cache holds {len(self._entries)} live nonces; refusing new ones"
                )

            self._entries[nonce] = now + self._ttl_seconds
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, nonce: object) -> bool:
        now = time.time()
        with self._lock:
            expires_at = self._entries.get(nonce)  # type: ignore[call-overload]
        return expires_at is not None and expires_at > now

    def __len__(self) -> int:
        now = time.time()
        with self._lock:
            return sum(1 for expires_at in self._entries.values() if expires_at > now)


class SqliteNonceCache:
    """SQLite nonce cache for verifiers running in several processes."""

    def __init__(self, path: str, ttl_seconds: float = 300.0) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS nonces ("
            "nonce TEXT PRIMARY KEY,"
            "expires_at REAL NOT NULL"
            ")"
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_nonce_expires ON nonces (expires_at)")
        self._conn.commit()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def check_and_store(self, nonce: str, now: float | None = None) -> bool:
        if now is None:
            now = time.time()
        with self._lock:
            self._conn.execute("DELETE FROM nonces WHERE expires_at <= ?", (now,))
            cursor = self._conn.execute(
                "INSERT OR IGNORE INTO nonces (nonce, expires_at) VALUES (?, ?)",
                (nonce, now + self._ttl_seconds),
            )
            self._conn.commit()
            return cursor.rowcount == 1

    def __contains__(self, nonce: object) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM nonces WHERE nonce = ? AND expires_at > ?",
                (nonce, time.time()),
            ).fetchone()
        return row is not None

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def create_nonce_cache(settings: Settings) -> NonceCache | SqliteNonceCache:
    """Build the replay cache configured in settings.

    The TTL matches the replay window on both sides of "now", so a nonce
    stays blocked for as long as its timestamp could still be accepted.
    """
    ttl_seconds = 2 * settings.replay_tolerance_ms / 1000.0
    if settings.nonce_cache_storage == "sqlite":
        return SqliteNonceCache(settings.nonce_cache_sqlite_path, ttl_seconds=ttl_seconds)
    return NonceCache(ttl_seconds=ttl_seconds, max_entries=settings.nonce_cache_max_entries)
