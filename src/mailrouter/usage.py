"""Summary: Daily token usage counters per provider model.

Importance: Backs adapter availability checks and the usage statistics report.
Alternatives: Query provider dashboards for remaining quota.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Callable

from mailrouter.storage.cache_store import CacheStore


logger = logging.getLogger(__name__)


class UsageTracker:
    """Summary: Reads and increments tokens used today for each model.

    Importance: Shares one counter per model and day across every worker using the same cache.
    Alternatives: Keep counters in process memory and lose them on restart.
    """

    def __init__(self, cache: CacheStore, clock: Callable[[], float] = time.time) -> None:
        self._cache = cache
        self._clock = clock

    def key(self, provider: str, model: str) -> str:
        day = datetime.fromtimestamp(self._clock()).strftime("%Y-%m-%d")
        return f"ai_tokens_{provider}_{model}_{day}"

    def used(self, provider: str, model: str) -> int:
        return int(self._cache.get(self.key(provider, model), 0) or 0)

    def remaining(self, provider: str, model: str, daily_limit: int | None) -> int | None:
        """Return tokens left today, or None for an unbounded model."""

        if daily_limit is None:
            return None
        return max(0, daily_limit - self.used(provider, model))

    def is_available(self, provider: str, model: str, daily_limit: int | None) -> bool:
        if daily_limit is None:
            return True
        return self.used(provider, model) < daily_limit

    def track(self, provider: str, model: str, tokens: int) -> int:
        """Summary: Add tokens to today's counter and return the new total.

        Importance: The counter expires at the end of the local day so budgets reset daily.
        Alternatives: Reset counters with a scheduled job at midnight.
        """

        if tokens <= 0:
            return self.used(provider, model)
        total = self._cache.increment(self.key(provider, model), tokens, self._end_of_day())
        logger.debug("Tracked %s tokens for %s/%s (today: %s)", tokens, provider, model, total)
        return total

    def _end_of_day(self) -> float:
        now = datetime.fromtimestamp(self._clock())
        midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight.timestamp()
