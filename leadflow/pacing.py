"""
Daily acquisition budget and randomized pacing.

The budget is a per-day counter kept in the record store, so restarting
the process never resets it. A new UTC day starts a fresh window.

Delays are drawn from a normal distribution centred between the min and
max delay and clamped to that envelope.
"""

import logging
import math
import random
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def today_utc() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def sample_normal(mean: float, stddev: float, rng: random.Random) -> float:
    """One normal draw via Box-Muller. Zero uniforms are re-rolled."""
    u1 = 0.0
    while u1 == 0.0:
        u1 = rng.random()
    u2 = 0.0
    while u2 == 0.0:
        u2 = rng.random()
    z0 = math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)
    return z0 * stddev + mean


class QuotaController:
    """
    Gatekeeper for acquisitions.

    Usage:
        quota = QuotaController(store, daily_limit=80, min_delay=3, max_delay=8, delay_stddev=1.5)
        while quota.can_acquire():
            ...
            quota.record_acquisition()
            time.sleep(quota.next_delay())
    """

    def __init__(
        self,
        store,
        daily_limit: int,
        min_delay: float,
        max_delay: float,
        delay_stddev: float,
        rng: Optional[random.Random] = None,
        today: Optional[Callable[[], str]] = None,
    ):
        if min_delay > max_delay:
            raise ValueError(f"min_delay ({min_delay}) is greater than max_delay ({max_delay})")
        self.store = store
        self.daily_limit = daily_limit
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.delay_stddev = delay_stddev
        self.rng = rng or random.Random()
        self.today = today or today_utc

    def _acquired_today(self) -> int:
        return self.store.get_day_counters(self.today())['acquired']

    def can_acquire(self) -> bool:
        return self._acquired_today() < self.daily_limit

    def remaining(self) -> int:
        return max(0, self.daily_limit - self._acquired_today())

    def record_acquisition(self) -> bool:
        """Count one acquisition. Returns False if the budget was already spent."""
        counted = self.store.increment_counter(self.today(), 'acquired', ceiling=self.daily_limit)
        if not counted:
            logger.warning("Daily acquisition limit (%d) already reached", self.daily_limit)
        return counted

    def record_error(self) -> None:
        self.store.increment_counter(self.today(), 'errors')

    def next_delay(self) -> float:
        """Seconds to wait before the next action."""
        mean = (self.min_delay + self.max_delay) / 2
        delay = sample_normal(mean, self.delay_stddev, self.rng)
        return max(self.min_delay, min(self.max_delay, delay))

    def status(self) -> dict:
        day = self.today()
        counters = self.store.get_day_counters(day)
        acquired = counters['acquired']
        return {
            'date': day,
            'acquired': acquired,
            'limit': self.daily_limit,
            'remaining': max(0, self.daily_limit - acquired),
            'errors': counters['errors'],
            'can_acquire': acquired < self.daily_limit,
        }
