"""Sliding window rate limiter keyed by caller and path."""

import asyncio
import time
from typing import Dict, List, Optional

from fastapi import Request
from structlog import get_logger

from ..domain.errors import RateLimitExceeded

logger = get_logger()

USER_HEADER = "x-user-id"


class RateLimiter:
    """Caps requests per key within a sliding time window."""

    def __init__(self, rate_limit: int = 50, time_window: int = 60):
        self.rate_limit = rate_limit
        self.time_window = time_window  # in seconds
        self.requests: Dict[str, List[float]] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None
        logger.info(
            "rate_limiter_initialized",
            rate_limit=rate_limit,
            time_window=time_window
        )

    async def start(self):
        """Start the periodic cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._periodic_cleanup())

    async def stop(self):
        """Stop the periodic cleanup task."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    async def _periodic_cleanup(self):
        """Drop keys whose timestamps all fell out of the window."""
        while True:
            await asyncio.sleep(self.time_window)
            try:
                async with self._lock:
                    cutoff_time = time.monotonic() - self.time_window
                    for key in list(self.requests.keys()):
                        self._prune(key, cutoff_time)
                        if not self.requests[key]:
                            del self.requests[key]
            except Exception as e:
                logger.error("rate_limiter_cleanup_error", error=str(e))

    def _prune(self, key: str, cutoff_time: float) -> None:
        self.requests[key] = [ts for ts in self.requests[key] if ts > cutoff_time]

    async def check_rate_limit(self, key: str) -> None:
        """Record a request for ``key`` or raise RateLimitExceeded."""
        current_time = time.monotonic()

        async with self._lock:
            self.requests.setdefault(key, [])
            self._prune(key, current_time - self.time_window)

            if len(self.requests[key]) >= self.rate_limit:
                logger.warning(
                    "rate_limit_exceeded",
                    key=key,
                    current_requests=len(self.requests[key]),
                    rate_limit=self.rate_limit
                )
                raise RateLimitExceeded(
                    f"Rate limit of {self.rate_limit} requests per {self.time_window} seconds exceeded",
                    key=key,
                )

            self.requests[key].append(current_time)


def rate_limit_key(request: Request) -> str:
    """Callers are identified by user id when known, else by client host."""
    caller = request.headers.get(USER_HEADER)
    if not caller:
        caller = request.client.host if request.client else "unknown"
    return f"{caller}:{request.url.path}"


async def rate_limit_middleware(
    request: Request,
    rate_limiter: Optional[RateLimiter] = None
) -> None:
    if rate_limiter is None:
        return
    await rate_limiter.check_rate_limit(rate_limit_key(request))
