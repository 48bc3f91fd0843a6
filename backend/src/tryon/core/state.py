"""Process-wide mutable gateway state.

Rate-limit windows, job ownership and the circuit breaker all live in this
process's memory. They do not survive a restart and are not shared between
instances: each instance enforces its limits independently.
"""

from dataclasses import dataclass

import structlog

from tryon.core.config import Settings
from tryon.services.fal.retry import FalRetryExecutor
from tryon.services.ownership import JobOwnershipTracker
from tryon.services.rate_limit import FixedWindowRateLimiter

logger = structlog.get_logger()


@dataclass
class GatewayState:
    """Container for in-memory state, built once at startup."""

    general_rate_limiter: FixedWindowRateLimiter
    try_on_rate_limiter: FixedWindowRateLimiter
    ownership: JobOwnershipTracker
    fal_executor: FalRetryExecutor
    max_request_body_bytes: int = 32 * 1024

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayState":
        return cls(
            general_rate_limiter=FixedWindowRateLimiter(
                window_seconds=settings.api_rate_limit_window_ms / 1000,
                max_requests=settings.api_rate_limit_max_requests,
                name="general",
                message="Too many requests from this IP, please try again later.",
            ),
            try_on_rate_limiter=FixedWindowRateLimiter(
                window_seconds=settings.try_on_rate_limit_window_ms / 1000,
                max_requests=settings.try_on_rate_limit_max_requests,
                name="try_on",
            ),
            ownership=JobOwnershipTracker(
                max_active_jobs=settings.try_on_max_active_jobs,
                ttl_seconds=settings.try_on_active_job_ttl_ms / 1000,
            ),
            fal_executor=FalRetryExecutor.from_settings(settings),
            max_request_body_bytes=settings.try_on_max_request_body_bytes,
        )

    def sweep(self) -> dict[str, int]:
        """Drop expired rate-limit windows and job ownerships."""
        removed = {
            "general_rate_limit": self.general_rate_limiter.sweep(),
            "try_on_rate_limit": self.try_on_rate_limiter.sweep(),
            "job_ownership": self.ownership.sweep_expired(),
        }
        logger.debug("state.swept", **removed)
        return removed
