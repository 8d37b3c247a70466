"""Thread-safe in-memory response cache with TTL expiry and a byte-size ceiling.

Design decisions
────────────────
• **OrderedDict** for O(1) LRU eviction and promotion.
• **Keyed by (key, params)**: the client passes ``"GET:<path>"`` as the key
  and the query parameters separately; params are folded into the storage
  key with ``json.dumps(..., sort_keys=True)`` so ordering never matters.
• **Per-entry TTL** checked lazily on read — expired entries are dropped the
  first time they are looked at.
• **Size tracking** via ``json.dumps`` byte length — accurate for the JSON
  documents returned by the Help Scout API.
• **threading.Lock** so the cache is safe to share across the event loop and
  worker threads (FastAPI runs sync endpoints in a thread pool).

Usage in HelpScoutClient
────────────────────────
>>> cache = ResponseCache(max_bytes=20 * 1024 * 1024)  # 20 MB
>>> cache.set("GET:/mailboxes", {"page": 1}, payload, ttl=1440)
>>> cache.get("GET:/mailboxes", {"page": 1})
payload
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# Default ceiling: 20 MB
DEFAULT_MAX_BYTES = 20 * 1024 * 1024
DEFAULT_TTL_SECONDS = 300


class CacheStore(Protocol):
    """The narrow contract the API client depends on."""

    def get(self, key: str, params: Mapping[str, Any] | None = None) -> Any | None: ...

    def set(
        self,
        key: str,
        params: Mapping[str, Any] | None,
        value: Any,
        *,
        ttl: float | None = None,
    ) -> None: ...


class ResponseCache:
    """Least-Recently-Used cache with TTL expiry, bounded by estimated byte size."""

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_BYTES,
        *,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_bytes = max_bytes
        self._default_ttl = default_ttl
        self._clock = clock
        self._current_bytes = 0
        # storage key → (value, estimated_size_bytes, expires_at)
        self._store: OrderedDict[str, tuple[Any, int, float]] = OrderedDict()
        self._lock = threading.Lock()

    # ── Key / size helpers ───────────────────────────────────────────

    @staticmethod
    def make_key(key: str, params: Mapping[str, Any] | None = None) -> str:
        """Fold *params* into a stable storage key."""
        if not params:
            return key
        return f"{key}?{json.dumps(params, sort_keys=True, default=str)}"

    @staticmethod
    def _estimate_bytes(value: Any) -> int:
        """Return the estimated in-memory size of *value* in bytes.

        Uses ``json.dumps`` length for JSON-serialisable objects and falls
        back to ``str()`` length for anything else.
        """
        try:
            return len(json.dumps(value, default=str).encode("utf-8"))
        except (TypeError, ValueError, OverflowError):
            return len(str(value).encode("utf-8"))

    def _drop(self, storage_key: str) -> None:
        _, size, _ = self._store.pop(storage_key)
        self._current_bytes -= size

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str, params: Mapping[str, Any] | None = None) -> Any | None:
        """Return the live cached value (promoting it to MRU) or ``None``."""
        storage_key = self.make_key(key, params)
        with self._lock:
            entry = self._store.get(storage_key)
            if entry is None:
                return None
            value, _, expires_at = entry
            if self._clock() >= expires_at:
                self._drop(storage_key)
                logger.debug("Cache: expired %s", storage_key)
                return None
            self._store.move_to_end(storage_key)
            return value

    def set(
        self,
        key: str,
        params: Mapping[str, Any] | None,
        value: Any,
        *,
        ttl: float | None = None,
    ) -> None:
        """Insert or overwrite an entry.  ``ttl <= 0`` means "do not cache"."""
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            return

        storage_key = self.make_key(key, params)
        size = self._estimate_bytes(value)

        # Don't cache if a single entry exceeds the limit
        if size > self._max_bytes:
            logger.debug(
                "Cache: skipping key %s (size %d > max %d)",
                storage_key, size, self._max_bytes,
            )
            return

        with self._lock:
            if storage_key in self._store:
                self._drop(storage_key)

            while self._current_bytes + size > self._max_bytes and self._store:
                evicted_key, (_, evicted_size, _) = self._store.popitem(last=False)
                self._current_bytes -= evicted_size
                logger.debug("Cache: evicted %s (%d bytes)", evicted_key, evicted_size)

            self._store[storage_key] = (value, size, self._clock() + ttl)
            self._current_bytes += size

    def invalidate(self, key: str, params: Mapping[str, Any] | None = None) -> bool:
        """Remove a single entry.  Returns ``True`` if it existed."""
        storage_key = self.make_key(key, params)
        with self._lock:
            if storage_key in self._store:
                self._drop(storage_key)
                return True
            return False

    def clear(self) -> None:
        """Drop all entries."""
        with self._lock:
            self._store.clear()
            self._current_bytes = 0

    # ── Introspection ────────────────────────────────────────────────

    @property
    def current_bytes(self) -> int:
        """Total estimated bytes currently stored."""
        return self._current_bytes

    @property
    def entry_count(self) -> int:
        """Number of entries currently stored (expired ones included until read)."""
        return len(self._store)

    def has(self, key: str, params: Mapping[str, Any] | None = None) -> bool:
        """Check if an entry is present *without* promoting or expiring it."""
        return self.make_key(key, params) in self._store
