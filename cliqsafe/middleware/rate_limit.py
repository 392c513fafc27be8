"""
In-memory sliding-window rate limiting for link requests and token redemption.

Counts live in the process only. Each key is an identifier prefixed by the
guarded action, e.g. "magic:email:<addr>" or "verify:ip:<addr>".
"""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime, timedelta

from fastapi import HTTPException, Request, status


class RateLimiter:
    """
    Simple in-memory rate limiter.

    Tracks request timestamps per key within time windows.
    """

    def __init__(self):
        self._requests: dict[str, list[datetime]] = defaultdict(list)

    def check_rate_limit(
        self,
        key: str,
        max_requests: int,
        window_minutes: int = 60,
        now: datetime | None = None,
    ) -> bool:
        """
        Record a request for a key unless it is over the limit.

        Args:
            key: Identifier to rate limit
            max_requests: Maximum requests allowed in the window
            window_minutes: Time window in minutes (default 60)

        Returns:
            True if under the limit, False if limit exceeded
        """
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(minutes=window_minutes)

        recent = [ts for ts in self._requests[key] if ts > cutoff]
        if len(recent) >= max_requests:
            self._requests[key] = recent
            return False

        recent.append(now)
        self._requests[key] = recent
        return True

    def cleanup_old_entries(self, max_age_hours: int = 2, now: datetime | None = None) -> int:
        """
        Drop entries older than max_age_hours.

        Returns:
            Number of keys removed entirely
        """
        cutoff = (now or datetime.now(UTC)) - timedelta(hours=max_age_hours)
        removed = 0
        for key in list(self._requests.keys()):
            self._requests[key] = [ts for ts in self._requests[key] if ts > cutoff]
            if not self._requests[key]:
                del self._requests[key]
                removed += 1
        return removed

    def enforce(self, key: str, max_requests: int, window_minutes: int, detail: str) -> None:
        """
        Raise 429 when the key is over its limit.

        Raises:
            HTTPException: Too many requests
        """
        if not self.check_rate_limit(key, max_requests, window_minutes):
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=detail,
                headers={"Retry-After": str(window_minutes * 60)},
            )


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


# Global rate limiter instance
rate_limiter = RateLimiter()
