"""
Per-route admission gate: at most `rate` requests per client within a fixed
one-second window. Unlike the rate buckets this is exact and rejects traffic.
"""

import time
from typing import Optional

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter

from mockrig.core.errors import RateLimitExceeded


class RouteRateLimiter:
    def __init__(self, route_key: str, rate: int, storage: Optional[Storage] = None):
        self.route_key = route_key
        self.rate = rate
        self.item = RateLimitItemPerSecond(rate)
        self._limiter = FixedWindowRateLimiter(storage or MemoryStorage())

    def hit(self, client: str) -> int:
        """Count one request for `client`; return how many remain in the window."""
        if not self._limiter.hit(self.item, self.route_key, client):
            reset_time = self._limiter.get_window_stats(self.item, self.route_key, client)[0]
            raise RateLimitExceeded(self.rate, max(0.0, reset_time - time.time()))
        return self._limiter.get_window_stats(self.item, self.route_key, client)[1]
