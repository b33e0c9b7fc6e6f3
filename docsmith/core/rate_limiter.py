"""Per-service request pacing for docsmith.

Every outbound call goes through ``RateLimiter.acquire(service)``. Each
service owns a token bucket sized by its ``ServiceLimit``. When a provider
answers 429 with ``Retry-After`` the HTTP client calls ``hold`` so that the
other sources sharing that provider wait instead of burning their retries.

Limits can be tuned per service under the ``rate_limits`` config section::

    rate_limits:
      reddit: {per_second: 0.5, burst: 1}
      ollama: {enabled: false}
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

from docsmith.core.config import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceLimit:
    """Pacing for one service: sustained rate plus burst capacity."""

    per_second: float
    burst: int = 1
    enabled: bool = True

    @property
    def interval(self) -> float:
        return 1.0 / self.per_second if self.per_second > 0 else 0.0

    def merged(self, overrides: Mapping[str, Any]) -> "ServiceLimit":
        """Return a copy with ``per_second``, ``burst`` or ``enabled`` overridden."""
        return ServiceLimit(
            per_second=float(overrides.get("per_second", self.per_second)),
            burst=max(1, int(overrides.get("burst", self.burst))),
            enabled=bool(overrides.get("enabled", self.enabled)),
        )


DEFAULT_LIMITS: Dict[str, ServiceLimit] = {
    # LLM completion APIs
    "openai": ServiceLimit(per_second=5, burst=5),
    "groq": ServiceLimit(per_second=5, burst=5),
    "deepseek": ServiceLimit(per_second=5, burst=5),
    "ollama": ServiceLimit(per_second=20, burst=10),
    # Web search
    "serpapi": ServiceLimit(per_second=2, burst=3),
    "brave": ServiceLimit(per_second=1, burst=1),  # free plan: 1 req/s
    # Community sources
    "stackexchange": ServiceLimit(per_second=10, burst=5),  # 30/s hard cap
    "github": ServiceLimit(per_second=0.5, burst=5),  # search API: 30/min
    "reddit": ServiceLimit(per_second=1, burst=2),
    "youtube": ServiceLimit(per_second=5, burst=5),
    "devto": ServiceLimit(per_second=3, burst=3),
    "codeproject": ServiceLimit(per_second=1, burst=2),
    # Crawling and link checks
    "default": ServiceLimit(per_second=5, burst=5),
}


class TokenBucket:
    """Token bucket that can also be put on hold until a deadline."""

    def __init__(self, per_second: float, burst: int = 1) -> None:
        self.per_second = per_second
        self.burst = burst
        self.tokens = float(burst)
        self.updated_at = time.monotonic()
        self.hold_until = 0.0
        self._lock = asyncio.Lock()

    def _refill(self, now: float) -> None:
        self.tokens = min(self.burst, self.tokens + (now - self.updated_at) * self.per_second)
        self.updated_at = now

    def hold(self, seconds: float) -> None:
        """Refuse tokens for the next ``seconds``; holds never shorten."""
        self.hold_until = max(self.hold_until, time.monotonic() + seconds)

    async def take(self, count: int = 1) -> float:
        """Take ``count`` tokens, sleeping as needed. Returns seconds slept."""
        async with self._lock:
            slept = 0.0
            while True:
                now = time.monotonic()
                if self.hold_until > now:
                    delay = self.hold_until - now
                else:
                    self._refill(now)
                    if self.tokens >= count or self.per_second <= 0:
                        self.tokens = max(0.0, self.tokens - count)
                        return slept
                    delay = (count - self.tokens) / self.per_second
                await asyncio.sleep(delay)
                slept += delay

    def peek(self) -> float:
        """Tokens that would be available right now."""
        if self.hold_until > time.monotonic():
            return 0.0
        elapsed = time.monotonic() - self.updated_at
        return min(self.burst, self.tokens + elapsed * self.per_second)


@dataclass
class ServiceStats:
    requests: int = 0
    waited: float = 0.0
    holds: int = 0

    def to_dict(self) -> Dict[str, float]:
        return {
            "requests": self.requests,
            "total_wait_seconds": round(self.waited, 3),
            "avg_wait_seconds": round(self.waited / self.requests, 3) if self.requests else 0.0,
            "holds": self.holds,
        }


class RateLimiter:
    """Paces requests to every provider the research engine talks to."""

    def __init__(self, limits: Optional[Mapping[str, ServiceLimit]] = None) -> None:
        """Initialize the limiter.

        Args:
            limits: Per-service limits layered over ``DEFAULT_LIMITS``
        """
        self.logger = logging.getLogger(self.__class__.__name__)
        self._limits: Dict[str, ServiceLimit] = dict(DEFAULT_LIMITS)
        if limits:
            self._limits.update(limits)
        self._buckets: Dict[str, TokenBucket] = {}
        self._stats: Dict[str, ServiceStats] = defaultdict(ServiceStats)

    @classmethod
    def from_config(cls, config: Config) -> "RateLimiter":
        """Build a limiter from the ``rate_limits`` config section."""
        overrides: Dict[str, ServiceLimit] = {}
        for service, values in config.get_section("rate_limits").items():
            if not isinstance(values, dict):
                logger.warning("Ignoring rate_limits.%s: expected a mapping", service)
                continue
            base = DEFAULT_LIMITS.get(service, DEFAULT_LIMITS["default"])
            overrides[service] = base.merged(values)
        return cls(overrides)

    @classmethod
    def unthrottled(cls) -> "RateLimiter":
        """Build a limiter that never waits, for every service."""
        return cls({name: replace(limit, enabled=False) for name, limit in DEFAULT_LIMITS.items()})

    def limit_for(self, service: str) -> ServiceLimit:
        return self._limits.get(service, self._limits["default"])

    def _bucket(self, service: str) -> TokenBucket:
        bucket = self._buckets.get(service)
        if bucket is None:
            limit = self.limit_for(service)
            bucket = self._buckets[service] = TokenBucket(limit.per_second, limit.burst)
        return bucket

    async def acquire(self, service: str, tokens: int = 1) -> float:
        """Wait until ``service`` may be called. Returns seconds waited."""
        if not self.limit_for(service).enabled:
            return 0.0

        waited = await self._bucket(service).take(tokens)
        stats = self._stats[service]
        stats.requests += 1
        stats.waited += waited
        if waited > 0.1:
            self.logger.debug("Paced %s for %.2fs", service, waited, extra={"provider": service})
        return waited

    def hold(self, service: str, seconds: float) -> None:
        """Stop handing out tokens for ``service`` for ``seconds``."""
        if seconds <= 0 or not self.limit_for(service).enabled:
            return
        self._bucket(service).hold(seconds)
        self._stats[service].holds += 1
        self.logger.warning("%s asked to back off for %.1fs", service, seconds, extra={"provider": service})

    def configure(self, service: str, per_second: float, burst: int = 1) -> None:
        """Replace the limit for ``service``; its bucket starts over full."""
        self._limits[service] = ServiceLimit(per_second=per_second, burst=burst)
        self._buckets.pop(service, None)
        self.logger.info("Rate limit for %s: %.2f req/s (burst %d)", service, per_second, burst)

    def set_enabled(self, service: str, enabled: bool) -> None:
        self._limits[service] = replace(self.limit_for(service), enabled=enabled)

    def get_stats(self) -> Dict[str, Dict[str, float]]:
        return {service: stats.to_dict() for service, stats in self._stats.items()}

    def reset_stats(self) -> None:
        self._stats.clear()


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Return the process-wide limiter, created with default limits."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter
