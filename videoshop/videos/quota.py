"""Daily quota accounting for the video provider."""

import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

from videoshop import metrics
from videoshop.config import settings

logger = logging.getLogger(__name__)


class QuotaTracker:
    """
    Running estimate of provider cost units spent today.

    Callers ask ``can_spend`` with the projected cost before every request
    and only call ``spend`` once the request was actually made. The counter
    rolls over when the UTC date changes.
    """

    def __init__(
        self,
        daily_limit: Optional[int] = None,
        warning_threshold: float = 0.8,
        today: Callable[[], date] = lambda: datetime.now(timezone.utc).date(),
    ):
        self.daily_limit = daily_limit if daily_limit is not None else settings.youtube_daily_quota
        self.warning_threshold = warning_threshold
        self._today = today
        self.used = 0
        self.calls = 0
        self.day = today()
        self._warned = False

    def _roll_over(self):
        current = self._today()
        if current != self.day:
            logger.info(f"Video quota reset for {current} (used {self.used} on {self.day})")
            self.day = current
            self.used = 0
            self.calls = 0
            self._warned = False
            metrics.video_quota_used.set(0)

    @property
    def remaining(self) -> int:
        self._roll_over()
        return max(0, self.daily_limit - self.used)

    def can_spend(self, cost: int) -> bool:
        self._roll_over()
        return self.used + cost <= self.daily_limit

    def spend(self, cost: int):
        self._roll_over()
        self.used += cost
        self.calls += 1
        metrics.video_quota_used.set(self.used)
        if not self._warned and self.used >= self.daily_limit * self.warning_threshold:
            self._warned = True
            logger.warning(
                f"Video quota at {self.used}/{self.daily_limit} units "
                f"({self.used / self.daily_limit:.0%})"
            )

    def exhaust(self):
        """Provider reported the quota exceeded; stop spending until tomorrow."""
        self._roll_over()
        self.used = self.daily_limit
        metrics.video_quota_used.set(self.used)

    def reset(self):
        self.used = 0
        self.calls = 0
        self._warned = False
        self.day = self._today()
        metrics.video_quota_used.set(0)

    def status(self) -> dict[str, Any]:
        self._roll_over()
        return {
            "used": self.used,
            "daily_limit": self.daily_limit,
            "remaining": self.remaining,
            "calls": self.calls,
            "percentage_used": round(100.0 * self.used / self.daily_limit, 1)
            if self.daily_limit
            else 100.0,
            "day": self.day.isoformat(),
        }
