"""In-memory TTL cache used as the last-resort fallback for provider chains.

Entries are immutable ``CacheEntry`` objects replaced wholesale on every
write, so concurrent readers during fan-out never observe a half-updated
value.  Expired entries are never returned; a background sweeper task can
periodically evict them without blocking foreground requests.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import Any, Callable, Dict, Hashable, Optional

from docsmith.core.data_models import CacheEntry

logger = logging.getLogger(__name__)

# Default TTL values (in seconds)
DEFAULT_TTL = 1800  # 30 minutes
DEFAULT_SWEEP_INTERVAL = 600  # 10 minutes


class ResultCache:
    """TTL-bounded key/value store of ``CacheEntry`` objects."""

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl: Time-to-live of every entry in seconds
            enabled: Whether caching is enabled
            clock: Monotonic time source, injectable for tests
        """
        self.ttl = ttl
        self.enabled = enabled
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry[Any]] = {}
        self._sweeper: Optional[asyncio.Task] = None
        self.logger = logging.getLogger(self.__class__.__name__)
        self._hits = 0
        self._misses = 0

    @staticmethod
    def generate_key(prefix: str, *args: Any, **kwargs: Any) -> str:
        """Generate a cache key from prefix and arguments.

        Args:
            prefix: Key prefix (e.g., 'search')
            *args: Positional arguments
            **kwargs: Keyword arguments

        Returns:
            Hashed cache key
        """
        key_parts = [prefix]
        key_parts.extend(str(arg) for arg in args)
        key_parts.extend(f"{k}={v}" for k, v in sorted(kwargs.items()))
        key_string = ":".join(key_parts)

        key_hash = hashlib.sha256(key_string.encode()).hexdigest()[:32]
        return f"{prefix}:{key_hash}"

    def _is_expired(self, entry: CacheEntry[Any], now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        return now - entry.timestamp >= self.ttl

    def get(self, key: Hashable) -> Optional[CacheEntry[Any]]:
        """Return the live entry for ``key``, or None if absent or expired."""
        if not self.enabled:
            return None

        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if self._is_expired(entry):
            # Only drop the entry we looked at; a concurrent writer may have replaced it.
            if self._entries.get(key) is entry:
                del self._entries[key]
            self._misses += 1
            self.logger.debug("Cache entry expired for key: %s", key)
            return None

        self._hits += 1
        self.logger.debug("Cache hit for key: %s", key)
        return entry

    def set(self, key: Hashable, data: Any, provider_label: str) -> Optional[CacheEntry[Any]]:
        """Store ``data`` under ``key``, replacing any previous entry."""
        if not self.enabled:
            return None

        entry = CacheEntry(data=data, timestamp=self._clock(), provider_label=provider_label)
        self._entries[key] = entry
        self.logger.debug("Cached result from %s under key: %s (TTL: %ss)", provider_label, key, self.ttl)
        return entry

    def invalidate(self, key: Hashable) -> bool:
        """Remove a single entry."""
        return self._entries.pop(key, None) is not None

    def sweep(self) -> int:
        """Evict every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [key for key, entry in list(self._entries.items()) if self._is_expired(entry, now)]
        for key in expired:
            self._entries.pop(key, None)
        if expired:
            self.logger.info("Swept %d expired cache entries", len(expired))
        return len(expired)

    def clear(self) -> int:
        """Clear all cache entries.

        Returns:
            Number of entries cleared
        """
        count = len(self._entries)
        self._entries.clear()
        self.logger.info("Cleared all cache entries: %d", count)
        return count

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    async def run_sweeper(self, interval: float = DEFAULT_SWEEP_INTERVAL) -> None:
        """Sweep expired entries every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def start_sweeper(self, interval: float = DEFAULT_SWEEP_INTERVAL) -> asyncio.Task:
        """Launch the background sweeper on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self.run_sweeper(interval))
            self.logger.debug("Cache sweeper started (interval=%ss)", interval)
        return self._sweeper

    async def stop_sweeper(self) -> None:
        """Cancel the background sweeper if it is running."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dictionary with cache statistics
        """
        total = self._hits + self._misses
        hit_rate = (self._hits / total * 100) if total > 0 else 0.0

        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "total_requests": total,
            "hit_rate_percent": round(hit_rate, 2),
            "enabled": self.enabled,
            "ttl_seconds": self.ttl,
        }
