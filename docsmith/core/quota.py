"""Daily quota accounting for the video platform API.

The YouTube Data API charges a fixed number of units per call against a
daily allowance that resets at midnight.  ``QuotaTracker`` keeps an
in-memory approximation of that counter; increments are not locked, so
concurrent requests may overshoot slightly.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict

from docsmith.core.error_recovery import QuotaExceeded

logger = logging.getLogger(__name__)

DEFAULT_DAILY_LIMIT = 10_000

# Unit cost per API operation
SEARCH_COST = 100
VIDEO_DETAILS_COST = 1


def _next_midnight(now: datetime) -> datetime:
    return (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)


class QuotaTracker:
    """Rolling daily unit counter."""

    def __init__(
        self,
        daily_limit: int = DEFAULT_DAILY_LIMIT,
        service: str = "youtube",
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.daily_limit = daily_limit
        self.service = service
        self._clock = clock
        self.used = 0
        self.reset_at = _next_midnight(clock())
        self.logger = logging.getLogger(self.__class__.__name__)

    def _roll_over(self) -> None:
        now = self._clock()
        if now >= self.reset_at:
            self.logger.info("%s quota reset (used %d/%d)", self.service, self.used, self.daily_limit)
            self.used = 0
            self.reset_at = _next_midnight(now)

    @property
    def remaining(self) -> int:
        self._roll_over()
        return max(self.daily_limit - self.used, 0)

    def can_consume(self, units: int) -> bool:
        """Check whether ``units`` fit in today's remaining quota."""
        return self.remaining >= units

    def consume(self, units: int, operation: str = "") -> int:
        """Charge ``units`` against today's quota.

        Raises:
            QuotaExceeded: If the charge would exceed the daily limit

        Returns:
            Units remaining after the charge
        """
        self._roll_over()
        if self.used + units > self.daily_limit:
            raise QuotaExceeded(
                f"{self.service} quota exceeded: {operation or 'request'} needs {units} units, "
                f"{self.daily_limit - self.used} left until {self.reset_at:%Y-%m-%d %H:%M}",
                self.service,
            )

        self.used += units
        percent = self.used / self.daily_limit * 100 if self.daily_limit else 100.0
        if percent >= 90:
            self.logger.warning(
                "%s quota at %.1f%% (%d/%d units)", self.service, percent, self.used, self.daily_limit
            )
        elif percent >= 50:
            self.logger.info(
                "%s quota at %.1f%% (%d/%d units)", self.service, percent, self.used, self.daily_limit
            )
        self.logger.debug("%s consumed %d units for %s", self.service, units, operation or "request")
        return self.daily_limit - self.used

    def status(self) -> Dict[str, Any]:
        """Current quota usage."""
        self._roll_over()
        return {
            "service": self.service,
            "used": self.used,
            "limit": self.daily_limit,
            "remaining": max(self.daily_limit - self.used, 0),
            "percent_used": round(self.used / self.daily_limit * 100, 2) if self.daily_limit else 100.0,
            "resets_at": self.reset_at.isoformat(),
        }
