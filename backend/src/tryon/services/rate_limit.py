"""Fixed-window, per-client request rate limiting.

State lives in process memory: limits are enforced per instance and reset on
restart. Every request is counted, successful or not.
"""

import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping

import structlog

from tryon.services.exceptions import RateLimitExceeded

logger = structlog.get_logger()


@dataclass
class RateLimitEntry:
    """Request count for one client within the current window.

    Attributes:
        count: Requests seen in this window (never exceeds the limiter's max)
        reset_at: Clock reading at which the window ends
    """

    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitSnapshot:
    limit: int
    remaining: int
    reset_at_epoch: float

    @property
    def reset_at_iso(self) -> str:
        return datetime.fromtimestamp(self.reset_at_epoch, tz=timezone.utc).isoformat()


class FixedWindowRateLimiter:
    """Counts requests per client key in fixed windows.

    The first request of a window opens it with count=1. Requests beyond
    `max_requests` inside the window raise RateLimitExceeded without being
    counted; once the window has elapsed the next request opens a new one.

    Example:
        >>> limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=20)
        >>> limiter.check("user:42")
    """

    def __init__(
        self,
        window_seconds: float,
        max_requests: int,
        name: str = "default",
        message: str = "Too many requests. Please slow down.",
        clock: Callable[[], float] = time.time,
    ):
        self.window_seconds = window_seconds
        self.max_requests = max(1, max_requests)
        self.name = name
        self.message = message
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}

    def check(self, client_key: str) -> RateLimitEntry:
        """Count one request for client_key.

        Raises:
            RateLimitExceeded: When the window's budget is already used up
        """
        now = self._clock()
        entry = self._entries.get(client_key)

        if entry is None or entry.reset_at <= now:
            entry = RateLimitEntry(count=1, reset_at=now + self.window_seconds)
            self._entries[client_key] = entry
            return entry

        if entry.count >= self.max_requests:
            retry_after = max(1, math.ceil(entry.reset_at - now))
            logger.warning(
                "rate_limit.exceeded",
                limiter=self.name,
                client_key=client_key,
                retry_after_seconds=retry_after,
            )
            raise RateLimitExceeded(
                retry_after_seconds=retry_after,
                message=self.message,
                limit=self.max_requests,
                reset_at=self._snapshot(entry).reset_at_iso,
            )

        entry.count += 1
        return entry

    def snapshot(self, client_key: str) -> RateLimitSnapshot | None:
        """Current limit/remaining/reset for response headers."""
        entry = self._entries.get(client_key)
        if entry is None:
            return None
        return self._snapshot(entry)

    def sweep(self) -> int:
        """Drop entries whose window has elapsed. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.reset_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def _snapshot(self, entry: RateLimitEntry) -> RateLimitSnapshot:
        # Translate the (possibly monotonic) clock reading into wall-clock time
        seconds_left = max(0.0, entry.reset_at - self._clock())
        return RateLimitSnapshot(
            limit=self.max_requests,
            remaining=max(0, self.max_requests - entry.count),
            reset_at_epoch=time.time() + seconds_left,
        )


def get_client_identifier(user_id: str | None, headers: Mapping[str, str]) -> str:
    """Derive the rate-limit/ownership key for a request.

    Precedence: authenticated user id, explicit x-user-id header, first hop
    of x-forwarded-for, x-real-ip / cf-connecting-ip, then "anonymous".
    """
    if user_id:
        return f"user:{user_id}"

    explicit_user = headers.get("x-user-id")
    if explicit_user:
        return explicit_user

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = headers.get("x-real-ip") or headers.get("cf-connecting-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return "anonymous"
