"""
auth/rate_limiter.py -- Fixed-window attempt limiter for public credential endpoints.

Built on the `limits` library. The limiter is a plain object owned by the
application (app.state.auth_limiter); no counter lives in a module global.

Semantics:
  - Bucket per (scope, client key); scope is the endpoint class ("auth").
  - The window starts at the first attempt and lasts window_seconds.
  - Attempts 1..N pass. Attempt N+1 inside the window raises RateLimited and
    does NOT restart the window.
  - When the window elapses the bucket resets wholesale (fixed window; the
    boundary-burst tradeoff is accepted).

Concurrency: MemoryStorage.incr() runs under a per-key lock, so parallel
requests for the same key never lose an increment.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import math
import time

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from auth.errors import RateLimited

logger = logging.getLogger("coursehub.auth")

DEFAULT_SCOPE = "auth"


class AttemptLimiter:
    """Counts attempts per client key and rejects the excess.

    Usage:
        limiter = AttemptLimiter(attempts=5, window_seconds=900)
        limiter.hit(request.client.host)   # raises RateLimited on the 6th call
    """

    def __init__(self, attempts: int = 5, window_seconds: int = 15 * 60) -> None:
        if attempts < 1 or window_seconds < 1:
            raise ValueError("attempts and window_seconds must be positive")
        self.attempts = attempts
        self.window_seconds = window_seconds
        self._item = RateLimitItemPerSecond(attempts, window_seconds)
        self._storage = MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)

    def hit(self, client_key: str, scope: str = DEFAULT_SCOPE) -> None:
        """Record one attempt; raise RateLimited if the window budget is spent."""
        if self._strategy.hit(self._item, scope, client_key):
            return
        retry_after = self.retry_after(client_key, scope)
        logger.warning("Rate limit exceeded scope=%s client=%s retry_after=%ds", scope, client_key, retry_after)
        raise RateLimited(retry_after=retry_after)

    def remaining(self, client_key: str, scope: str = DEFAULT_SCOPE) -> int:
        """Attempts left in the current window for this key."""
        return max(0, self._strategy.get_window_stats(self._item, scope, client_key)[1])

    def retry_after(self, client_key: str, scope: str = DEFAULT_SCOPE) -> int:
        """Whole seconds until the current window for this key resets."""
        reset_time = self._strategy.get_window_stats(self._item, scope, client_key)[0]
        return max(1, math.ceil(reset_time - time.time()))

    def clear(self, client_key: str, scope: str = DEFAULT_SCOPE) -> None:
        self._strategy.clear(self._item, scope, client_key)

    def reset(self) -> None:
        """Drop every bucket."""
        self._storage.reset()
