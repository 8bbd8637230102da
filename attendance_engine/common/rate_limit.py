"""Rate limiting configuration using slowapi and limits.

Provides a module-level Limiter instance for per-endpoint limits on the
HTTP surface, and a per-subject punch throttle backed by the same shared
``limits`` storage (memory in development, redis in production) so the
count holds across service instances.
"""

from __future__ import annotations

import uuid

from limits import parse
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter
from slowapi import Limiter
from slowapi.util import get_remote_address

from attendance_engine.common.exceptions import RateLimitedException
from attendance_engine.config import settings

# Default: 60 requests/minute per client IP for all endpoints.
# Individual routes can override with @limiter.limit("N/period").
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["60/minute"],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
)


class PunchRateLimiter:
    """Moving-window punch throttle keyed by (organization, user)."""

    def __init__(self, limit: str, storage_uri: str) -> None:
        self.limit_string = limit
        self.item = parse(limit)
        self.storage = storage_from_string(storage_uri)
        self.strategy = MovingWindowRateLimiter(self.storage)

    def hit(self, organization_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Consume one punch for the subject or raise ``RateLimitedException``."""
        if not self.strategy.hit(self.item, "punch", str(organization_id), str(user_id)):
            raise RateLimitedException(self.limit_string)

    def remaining(self, organization_id: uuid.UUID, user_id: uuid.UUID) -> int:
        stats = self.strategy.get_window_stats(
            self.item, "punch", str(organization_id), str(user_id),
        )
        return stats.remaining

    def reset(self) -> None:
        self.storage.reset()


punch_rate_limiter = PunchRateLimiter(
    settings.PUNCH_RATE_LIMIT,
    settings.RATE_LIMIT_STORAGE_URI,
)
