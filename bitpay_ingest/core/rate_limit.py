"""
Sliding-window rate limiter for webhook deliveries.

In-process and per client identity. Step (a) of the payload gate: a delivery
over the limit is refused before authentication or parsing.
"""
import time
from collections import defaultdict

from bitpay_ingest.core.config import settings


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` hits per identity inside ``window_seconds``."""

    def __init__(self, *, max_requests: int, window_seconds: int) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        # identity -> hit timestamps, oldest first
        self._hits: dict[str, list[float]] = defaultdict(list)

    def _cleanup_window(self, identity: str, now: float) -> None:
        """Drop hits that fell out of the window, and empty identities."""
        cutoff = now - self.window_seconds
        timestamps = self._hits[identity]
        idx = 0
        for idx, ts in enumerate(timestamps):
            if ts > cutoff:
                break
        else:
            idx = len(timestamps)
        if idx > 0:
            self._hits[identity] = timestamps[idx:]
        if not self._hits[identity]:
            del self._hits[identity]

    def hit(self, identity: str, now: float | None = None) -> bool:
        """Record a request; returns False if the identity is over its limit."""
        now = time.time() if now is None else now
        self._cleanup_window(identity, now)

        if len(self._hits.get(identity, [])) >= self.max_requests:
            return False

        self._hits[identity].append(now)
        return True

    def retry_after(self, identity: str, now: float | None = None) -> int:
        """Whole seconds until the oldest hit leaves the window."""
        now = time.time() if now is None else now
        timestamps = self._hits.get(identity)
        if not timestamps:
            return 0
        return max(1, int(timestamps[0] + self.window_seconds - now + 0.999))

    def reset(self) -> None:
        self._hits.clear()


webhook_rate_limiter = SlidingWindowRateLimiter(
    max_requests=settings.WEBHOOK_RATE_LIMIT_MAX_REQUESTS,
    window_seconds=settings.WEBHOOK_RATE_LIMIT_WINDOW_SECONDS,
)
