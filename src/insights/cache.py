"""
Query result caching.

Entries are keyed by ``(user_id, hash)`` where the hash covers the
normalized question (or fallback key) and the effective date range, so two
identical requests from the same user land on the same entry whatever the
order of arrival.  Expired entries are treated as absent on read; nothing
sweeps them in the background.

Two backends share the ``get`` / ``put`` / ``clear_user`` / ``stats``
interface:
  memory   -- ``QueryCache`` below, process-local and thread-safe
  postgres -- ``src.db.cache_store.PostgresQueryCache`` (``insights_cache`` table)
"""
from __future__ import annotations

import hashlib
import time
import threading
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol

from src.core.config import get_settings
from src.core.logging import get_logger
from src.core.utils import normalize_text

logger = get_logger(__name__)


# ── Configuration ───────────────────────────────────────

DEFAULT_TTL_MINUTES = 30
DEFAULT_MAX_SIZE = 512


def make_cache_hash(question_or_key: str, start: date | None, end: date | None) -> str:
    """SHA-256 over normalized text and the ISO dates of the effective range."""
    raw = "|".join([
        normalize_text(question_or_key),
        start.isoformat() if start else "",
        end.isoformat() if end else "",
    ])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class ResultCache(Protocol):
    def get(self, user_id: str, key_hash: str) -> dict[str, Any] | None: ...

    def put(
        self,
        user_id: str,
        key_hash: str,
        payload: dict[str, Any],
        ttl_minutes: int | None = None,
        question: str | None = None,
    ) -> None: ...

    def clear_user(self, user_id: str) -> int: ...

    def stats(self) -> dict[str, Any]: ...


# ── Cache entry ─────────────────────────────────────────


@dataclass
class CacheEntry:
    """A single cached result."""
    user_id: str
    key_hash: str
    payload: dict[str, Any]
    created_at: float
    expires_at: float
    question: str | None = None
    hit_count: int = 0

    @property
    def is_expired(self) -> bool:
        return time.time() >= self.expires_at


# ── In-memory backend ───────────────────────────────────


class QueryCache:
    """Thread-safe in-memory TTL cache of insight payloads.

    Parameters
    ----------
    ttl_minutes : float
        Default time-to-live for each entry.
    max_size : int
        Maximum number of entries. Oldest entries are evicted when full.
    """

    def __init__(self, ttl_minutes: float = DEFAULT_TTL_MINUTES, max_size: int = DEFAULT_MAX_SIZE):
        self._store: dict[tuple[str, str], CacheEntry] = {}
        self._lock = threading.Lock()
        self._ttl_minutes = ttl_minutes
        self._max_size = max_size
        self._hits = 0
        self._misses = 0

    # ── Public API ──────────────────────────────────────

    def get(self, user_id: str, key_hash: str) -> dict[str, Any] | None:
        """Return the cached payload, or ``None`` on miss / expiry."""
        key = (user_id, key_hash)
        with self._lock:
            entry = self._store.get(key)
            if entry is None or entry.is_expired:
                self._misses += 1
                return None
            entry.hit_count += 1
            self._hits += 1
        logger.debug("Cache HIT user=%s key=%s hits=%d", user_id, key_hash[:16], entry.hit_count)
        return entry.payload

    def put(
        self,
        user_id: str,
        key_hash: str,
        payload: dict[str, Any],
        ttl_minutes: float | None = None,
        question: str | None = None,
    ) -> None:
        """Store (or overwrite) a payload."""
        key = (user_id, key_hash)
        ttl = self._ttl_minutes if ttl_minutes is None else ttl_minutes
        now = time.time()
        with self._lock:
            if len(self._store) >= self._max_size and key not in self._store:
                self._evict_oldest()
            self._store[key] = CacheEntry(
                user_id=user_id,
                key_hash=key_hash,
                payload=payload,
                question=question,
                created_at=now,
                expires_at=now + ttl * 60,
            )
            size = len(self._store)
        logger.debug("Cache PUT user=%s key=%s size=%d", user_id, key_hash[:16], size)

    def clear_user(self, user_id: str) -> int:
        """Remove every entry of *user_id*. Returns number removed."""
        with self._lock:
            keys = [k for k in self._store if k[0] == user_id]
            for k in keys:
                del self._store[k]
        logger.info("Cache cleared for user=%s (%d entries)", user_id, len(keys))
        return len(keys)

    def clear(self) -> int:
        with self._lock:
            count = len(self._store)
            self._store.clear()
            self._hits = self._misses = 0
            return count

    def stats(self) -> dict[str, Any]:
        """Return cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "backend": "memory",
                "size": len(self._store),
                "max_size": self._max_size,
                "ttl_minutes": self._ttl_minutes,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / total, 3) if total else 0.0,
            }

    # ── Internals ───────────────────────────────────────

    def _evict_oldest(self) -> None:
        """Drop expired entries, or the earliest one when none are expired."""
        expired = [k for k, v in self._store.items() if v.is_expired]
        if expired:
            for k in expired:
                del self._store[k]
            return
        if self._store:
            oldest = min(self._store, key=lambda k: self._store[k].created_at)
            del self._store[oldest]


# ── Backend selection ───────────────────────────────────

_memory_cache = QueryCache(ttl_minutes=get_settings().cache_ttl_minutes)
_postgres_cache: ResultCache | None = None


def get_cache() -> ResultCache:
    """Return the cache for the configured ``cache_backend``."""
    global _postgres_cache
    backend = get_settings().cache_backend.lower()
    if backend == "postgres":
        if _postgres_cache is None:
            from src.db.cache_store import PostgresQueryCache
            _postgres_cache = PostgresQueryCache()
        return _postgres_cache
    if backend != "memory":
        raise NotImplementedError(f"Cache backend '{backend}' is not supported.  Choose from: memory, postgres")
    return _memory_cache
