"""Per-user token bucket for the chat endpoint.

Buckets live in process memory; with several workers each one enforces its
own budget.
"""

import threading
import time
from typing import Any, Callable, Dict, Tuple
from uuid import UUID

from fastapi import HTTPException

from tutor_engine.core.config import get_settings
from tutor_engine.core.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """Token bucket keyed by caller. A new key starts with a full burst."""

    def __init__(
        self,
        requests_per_minute: int = 20,
        burst_size: int = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size
        self.refill_rate = requests_per_minute / 60.0  # tokens per second
        self._clock = clock
        self._lock = threading.Lock()

        # key -> (tokens, last_refill)
        self._buckets: Dict[str, Tuple[float, float]] = {}
        self._request_counts: Dict[str, int] = {}

    def _refill(self, key: str, now: float) -> float:
        tokens, last_refill = self._buckets.get(key, (float(self.burst_size), now))
        tokens = min(float(self.burst_size), tokens + (now - last_refill) * self.refill_rate)
        self._buckets[key] = (tokens, now)
        return tokens

    def check_limit(self, key: str, cost: float = 1.0) -> bool:
        """
        Consume ``cost`` tokens for ``key``.

        Raises:
            HTTPException: 429 with ``Retry-After`` when the bucket is empty
        """
        with self._lock:
            now = self._clock()
            tokens = self._refill(key, now)
            if tokens >= cost:
                self._buckets[key] = (tokens - cost, now)
                self._request_counts[key] = self._request_counts.get(key, 0) + 1
                return True

        retry_after = int((cost - tokens) / self.refill_rate) + 1
        logger.warning(
            f"Rate limit exceeded for {key}: {tokens:.2f}/{self.burst_size} tokens, "
            f"retry after {retry_after}s"
        )
        raise HTTPException(
            status_code=429,
            detail=f"Too many messages. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )

    def get_stats(self, key: str) -> Dict[str, Any]:
        with self._lock:
            tokens = self._refill(key, self._clock())
            return {
                "tokens_remaining": int(tokens),
                "burst_size": self.burst_size,
                "requests_per_minute": self.requests_per_minute,
                "total_requests": self._request_counts.get(key, 0),
            }


_chat_rate_limiter: RateLimiter | None = None


def get_chat_rate_limiter() -> RateLimiter:
    global _chat_rate_limiter
    if _chat_rate_limiter is None:
        settings = get_settings()
        _chat_rate_limiter = RateLimiter(
            requests_per_minute=settings.CHAT_RATE_LIMIT_PER_MINUTE,
            burst_size=settings.CHAT_RATE_LIMIT_BURST,
        )
    return _chat_rate_limiter


def check_chat_rate_limit(user_id: UUID) -> None:
    """
    Charge one chat message to the user's bucket.

    Raises:
        HTTPException: 429 if rate limited
    """
    get_chat_rate_limiter().check_limit(f"chat:{user_id}")
