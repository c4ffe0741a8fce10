"""In-memory rate limiter for the completion gateway.

Tracks per-client request counts using a fixed window. Clients that
cannot be identified share a single bucket.
"""

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

ANONYMOUS_CLIENT = "anonymous"


class RateLimitExceeded(Exception):
    """Raised when a client exceeds their rate limit."""

    def __init__(
        self, client_id: str, detail: str, retry_after_seconds: Optional[int] = None
    ) -> None:
        self.client_id = client_id
        self.detail = detail
        self.retry_after_seconds = retry_after_seconds
        super().__init__(detail)


@dataclass
class AdmitResult:
    """Outcome of a rate-limit decision."""

    allowed: bool
    retry_after_seconds: Optional[int] = None


@dataclass
class _ClientBucket:
    """Fixed-window counter for a single client."""

    window_start: float = 0.0
    request_count: int = 0


@dataclass
class RateLimiter:
    """Per-client in-memory rate limiter.

    At most ``max_requests`` requests are admitted per ``window_seconds``
    window. The window starts with the first request from a client and is
    reset by wall-clock rollover only.
    """

    max_requests: int = 30
    window_seconds: float = 60.0
    clock: Callable[[], float] = field(default=time.time, repr=False)
    _buckets: Dict[str, _ClientBucket] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def admit(self, client_id: Optional[str]) -> AdmitResult:
        """Decide whether the client may make another request.

        Increments the request counter when the request is admitted.

        Args:
            client_id: The caller's identifier. Empty or missing identifiers
                are counted against the shared anonymous bucket.

        Returns:
            An AdmitResult; rejected results carry the number of seconds
            until the client's window resets.
        """
        client_id = client_id or ANONYMOUS_CLIENT
        with self._lock:
            now = self.clock()
            bucket = self._get_or_reset_bucket(client_id, now)

            if bucket.request_count >= self.max_requests:
                remaining = bucket.window_start + self.window_seconds - now
                retry_after = max(1, math.ceil(remaining))
                retry_after = min(retry_after, math.ceil(self.window_seconds))
                return AdmitResult(allowed=False, retry_after_seconds=retry_after)

            bucket.request_count += 1
            return AdmitResult(allowed=True)

    def check(self, client_id: Optional[str]) -> None:
        """Admit the request or raise.

        Raises:
            RateLimitExceeded: If the client has exceeded their limit.
        """
        result = self.admit(client_id)
        if not result.allowed:
            client_id = client_id or ANONYMOUS_CLIENT
            raise RateLimitExceeded(
                client_id,
                "Request rate exceeded for client {} ({} req per {}s).".format(
                    client_id, self.max_requests, int(self.window_seconds)
                ),
                retry_after_seconds=result.retry_after_seconds,
            )

    def sweep(self) -> int:
        """Drop buckets whose window has already elapsed."""
        with self._lock:
            now = self.clock()
            stale = [
                client_id
                for client_id, bucket in self._buckets.items()
                if (now - bucket.window_start) >= self.window_seconds
            ]
            for client_id in stale:
                del self._buckets[client_id]
            return len(stale)

    def __len__(self) -> int:
        return len(self._buckets)

    def _get_or_reset_bucket(self, client_id: str, now: float) -> _ClientBucket:
        """Retrieve the bucket for client_id, resetting if the window expired."""
        bucket = self._buckets.get(client_id)

        if bucket is None or (now - bucket.window_start) >= self.window_seconds:
            bucket = _ClientBucket(window_start=now)
            self._buckets[client_id] = bucket

        return bucket
