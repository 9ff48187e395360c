"""In-process expiring cache for first-turn chat replies.

Purely a latency optimisation: entries are lost on restart and a miss always falls back to the
agent loop.  Expired entries are dropped lazily on read, and a full sweep runs whenever the table
grows past the sweep threshold.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


def fingerprint(history_length: int, message: str, persona: str | None, model_id: str | None) -> str:
    """Derive the cache key for a chat request.

    The history *length* (not its content) is part of the key, so the same text sent as the first
    message of a new conversation hits the cache while a follow-up with the same text does not.
    """
    raw = json.dumps([history_length, message, persona or "", model_id or ""], ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class ResponseCache:
    """Expiring key/value store with last-write-wins semantics.

    No method awaits, so a single instance is safe to share between asyncio tasks.
    """

    def __init__(
        self,
        default_ttl: float = 60.0,
        sweep_threshold: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store: dict[str, tuple[str, float]] = {}
        self._default_ttl = default_ttl
        self._sweep_threshold = sweep_threshold
        self._clock = clock

    def __len__(self) -> int:
        return len(self._store)

    def get(self, key: str) -> str | None:
        """Return the cached value, or None when missing or expired."""
        item = self._store.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() > expires_at:
            del self._store[key]
            return None
        return value

    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        """Insert or replace *key* for *ttl_seconds* (default TTL when omitted)."""
        if len(self._store) > self._sweep_threshold:
            self.sweep()
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        self._store[key] = (value, self._clock() + ttl)

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._store.items() if now > expires_at]
        for key in expired:
            del self._store[key]
        if expired:
            logger.debug("Response cache sweep removed %d entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        """Remove all entries."""
        self._store.clear()
