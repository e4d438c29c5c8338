"""
LLM Call Limiting
=================

Sliding-window rate limiter plus a concurrency cap. Every LLM request made
by the skill generator passes through an ``LLMGate``.
"""

import asyncio
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Tuple

from ..utils.logging import get_logger_for_component
from ..utils.exceptions import LLMRateLimitError


class RateLimiter:
    """Sliding-window rate limiter with per-key tracking."""

    def __init__(self, max_requests: int = 60, period_seconds: float = 60.0):
        self.default_limit: Tuple[int, float] = (max_requests, period_seconds)
        self._request_times: Dict[str, List[float]] = defaultdict(list)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._custom_limits: Dict[str, Tuple[int, float]] = {}
        self.logger = get_logger_for_component("rate_limiter")

    def set_limit(self, key: str, requests: int, period_seconds: float) -> None:
        """Set a custom limit for one key."""
        self._custom_limits[key] = (requests, period_seconds)

    def _get_limit(self, key: str) -> Tuple[int, float]:
        return self._custom_limits.get(key, self.default_limit)

    async def acquire(self, key: str, timeout: Optional[float] = 30.0) -> bool:
        """Acquire permission to make a request.

        Args:
            key: Rate limit bucket
            timeout: Max seconds to wait (None = wait forever)

        Returns:
            True if acquired, False if the wait would exceed the timeout
        """
        start = time.monotonic()
        max_requests, period = self._get_limit(key)

        async with self._locks[key]:
            while True:
                now = time.monotonic()
                cutoff = now - period
                window = [t for t in self._request_times[key] if t > cutoff]
                self._request_times[key] = window

                if len(window) < max_requests:
                    window.append(now)
                    return True

                wait_seconds = window[0] + period - now
                if timeout is not None and (now - start) + wait_seconds > timeout:
                    self.logger.warning(
                        f"Rate limit timeout for {key}: would need to wait {wait_seconds:.1f}s"
                    )
                    return False

                self.logger.debug(f"Rate limited for {key}, waiting {wait_seconds:.1f}s")
                await asyncio.sleep(min(wait_seconds + 0.05, 1.0))

    def get_status(self, key: str) -> dict:
        """Current usage for one key."""
        max_requests, period = self._get_limit(key)
        cutoff = time.monotonic() - period
        recent = [t for t in self._request_times[key] if t > cutoff]
        return {
            "key": key,
            "max_requests": max_requests,
            "period_seconds": period,
            "current_requests": len(recent),
            "available": max_requests - len(recent),
        }


class LLMGate:
    """Concurrency semaphore and request budget shared by all LLM callers."""

    KEY = "llm"

    def __init__(
        self,
        max_concurrent: int = 2,
        requests_per_minute: int = 20,
        acquire_timeout: Optional[float] = None,
    ):
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self.max_concurrent = max_concurrent
        self.limiter = RateLimiter(max_requests=requests_per_minute, period_seconds=60.0)
        self.acquire_timeout = acquire_timeout
        self._in_flight = 0

    @asynccontextmanager
    async def slot(self):
        """Hold one LLM call slot.

        Raises:
            LLMRateLimitError: If the local request budget cannot be met
                within ``acquire_timeout``
        """
        async with self._semaphore:
            if not await self.limiter.acquire(self.KEY, timeout=self.acquire_timeout):
                raise LLMRateLimitError("Local LLM request budget exhausted", provider="gate")
            self._in_flight += 1
            try:
                yield
            finally:
                self._in_flight -= 1

    def get_status(self) -> dict:
        return {
            "max_concurrent": self.max_concurrent,
            "in_flight": self._in_flight,
            **self.limiter.get_status(self.KEY),
        }
