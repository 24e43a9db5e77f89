"""Per-connection budget for command submissions."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(slots=True)
class _Bucket:
    tokens: float
    updated: float


class TokenBucketLimiter:
    """Token bucket keyed by connection id.

    A connection starts with ``rate`` submissions and regains them evenly over
    ``window`` seconds. Buckets live until ``forget`` is called on disconnect.
    """

    def __init__(
        self,
        rate: int,
        window: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._capacity = float(rate)
        self._per_second = rate / window
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}

    def allow(self, connection_id: str) -> bool:
        bucket = self._refill(connection_id)
        if bucket.tokens < 1.0:
            return False
        bucket.tokens -= 1.0
        return True

    def retry_after(self, connection_id: str) -> float:
        """Seconds until *connection_id* may submit again."""
        bucket = self._refill(connection_id)
        return max(0.0, (1.0 - bucket.tokens) / self._per_second)

    def forget(self, connection_id: str) -> None:
        self._buckets.pop(connection_id, None)

    def _refill(self, connection_id: str) -> _Bucket:
        now = self._clock()
        bucket = self._buckets.get(connection_id)
        if bucket is None:
            bucket = self._buckets[connection_id] = _Bucket(self._capacity, now)
            return bucket
        bucket.tokens = min(
            self._capacity, bucket.tokens + (now - bucket.updated) * self._per_second
        )
        bucket.updated = now
        return bucket
