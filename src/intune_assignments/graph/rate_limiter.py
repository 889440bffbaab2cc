from __future__ import annotations

import asyncio
import random
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Deque, List, Sequence, TypeVar

from intune_assignments.config.settings import AssignmentEngineSettings
from intune_assignments.graph.errors import GraphAPIError, GraphErrorCategory
from intune_assignments.utils.logging import get_logger


_logger = get_logger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]

GRAPH_BATCH_LIMIT = 20
RATE_LIMIT_MEMORY_SECONDS = 60.0


def _parse_retry_after(value: str) -> float | None:
    """Seconds to wait from a Retry-After value (delta-seconds or HTTP-date)."""

    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())


@dataclass(slots=True, frozen=True)
class RateLimiterStatus:
    requests_in_window: int
    writes_in_window: int
    max_total_requests: int
    max_write_requests: int
    consecutive_rate_limits: int
    blocked_for: float


class RateLimiter:
    """Rolling-window limiter mirroring Intune Graph quotas.

    Every call to ``acquire`` either records a request in the current window
    or suspends until one falls out of it. A 429 registered through
    ``record_rate_limit`` blocks new acquisitions until its backoff elapses.
    The limiter never retries anything itself; callers decide.
    """

    def __init__(
        self,
        *,
        max_write_requests_per_window: int = 100,
        max_total_requests_per_window: int = 1000,
        window_seconds: float = 20.0,
        max_retries: int = 3,
        base_retry_delay: float = 1.0,
        max_retry_delay: float = 32.0,
        sleep: SleepFunc | None = None,
    ) -> None:
        if max_write_requests_per_window < 1 or max_total_requests_per_window < 1:
            raise ValueError("Rate limits must allow at least one request per window")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_write_requests_per_window = max_write_requests_per_window
        self.max_total_requests_per_window = max_total_requests_per_window
        self.window_seconds = window_seconds
        self.max_retries = max_retries
        self.base_retry_delay = base_retry_delay
        self.max_retry_delay = max_retry_delay
        self._sleep: SleepFunc = sleep or asyncio.sleep
        self._lock = asyncio.Lock()
        self._request_times: Deque[float] = deque()
        self._write_request_times: Deque[float] = deque()
        self._last_rate_limit_time: float | None = None
        self._consecutive_rate_limits = 0
        self._blocked_until: float | None = None

    @classmethod
    def from_settings(
        cls,
        settings: AssignmentEngineSettings,
        *,
        sleep: SleepFunc | None = None,
    ) -> "RateLimiter":
        return cls(
            max_write_requests_per_window=settings.max_write_requests_per_window,
            max_total_requests_per_window=settings.max_total_requests_per_window,
            window_seconds=settings.window_seconds,
            max_retries=settings.max_attempts,
            base_retry_delay=settings.base_retry_delay,
            max_retry_delay=settings.max_retry_delay,
            sleep=sleep,
        )

    @staticmethod
    def _now() -> float:
        return time.monotonic()

    async def acquire(self, *, is_write: bool) -> float:
        """Wait for a free slot, record the request and return the advisory delay."""

        while True:
            async with self._lock:
                self._cleanup_locked()
                wait = self._wait_time_locked(is_write=is_write)
                if wait <= 0:
                    self._record_locked(is_write=is_write)
                    return self._advisory_delay_locked(is_write=is_write)
            _logger.debug("Rate limiter waiting for capacity", wait=wait, write=is_write)
            await self._sleep(wait)

    async def can_make_request(self, *, is_write: bool) -> bool:
        async with self._lock:
            self._cleanup_locked()
            if self._blocked_until is not None and self._blocked_until > self._now():
                return False
            total = len(self._request_times)
            write_count = len(self._write_request_times)

            if total >= self.max_total_requests_per_window:
                _logger.debug(
                    "Approaching total rate limit",
                    total=total,
                    limit=self.max_total_requests_per_window,
                )
                return False

            if is_write and write_count >= self.max_write_requests_per_window:
                _logger.debug(
                    "Approaching write rate limit",
                    write=write_count,
                    limit=self.max_write_requests_per_window,
                )
                return False
            return True

    async def record_request(self, *, is_write: bool) -> None:
        async with self._lock:
            self._record_locked(is_write=is_write)

    async def record_rate_limit(self, retry_after: str | None = None) -> float:
        """Register a throttled response and return how long the caller should wait."""

        async with self._lock:
            self._last_rate_limit_time = self._now()
            self._consecutive_rate_limits += 1
            consecutive = self._consecutive_rate_limits
        delay = await self.calculate_retry_delay(
            attempt=consecutive, retry_after_header=retry_after
        )
        async with self._lock:
            until = self._now() + delay
            if self._blocked_until is None or until > self._blocked_until:
                self._blocked_until = until
        _logger.warning(
            "Rate limit encountered",
            consecutive=consecutive,
            delay=delay,
            retry_after=retry_after,
        )
        return delay

    async def reset_rate_limit_tracking(self) -> None:
        async with self._lock:
            if self._consecutive_rate_limits:
                _logger.info("Resetting rate limit tracking")
            self._consecutive_rate_limits = 0

    async def calculate_delay(self, *, is_write: bool) -> float:
        async with self._lock:
            self._cleanup_locked()
            return self._advisory_delay_locked(is_write=is_write)

    async def calculate_retry_delay(
        self,
        *,
        attempt: int,
        retry_after_header: str | None = None,
    ) -> float:
        if retry_after_header:
            header_delay = _parse_retry_after(retry_after_header)
            if header_delay is not None:
                _logger.info("Using Retry-After header", delay=header_delay)
                return header_delay
            _logger.debug("Invalid Retry-After header", header=retry_after_header)

        exponential = self.base_retry_delay * (2 ** max(0, attempt - 1))
        jitter = exponential * random.uniform(0.8, 1.2)
        delay: float = min(jitter, self.max_retry_delay)
        _logger.info("Calculated retry delay", delay=delay, attempt=attempt)
        return delay

    async def should_retry(self, *, attempt: int, error: Exception) -> bool:
        if attempt > self.max_retries:
            _logger.warning("Maximum retries exceeded", attempt=attempt)
            return False

        if isinstance(error, asyncio.TimeoutError):
            return True

        if isinstance(error, GraphAPIError):
            if error.category in {
                GraphErrorCategory.RATE_LIMIT,
                GraphErrorCategory.NETWORK,
                GraphErrorCategory.TIMEOUT,
            }:
                return True
            return error.is_retriable
        return False

    async def calculate_optimal_batch_size(self) -> int:
        async with self._lock:
            self._cleanup_locked()
            remaining_total = self.max_total_requests_per_window - len(
                self._request_times
            )
            remaining_write = self.max_write_requests_per_window - len(
                self._write_request_times
            )
            capacity = max(1, min(remaining_total, remaining_write))
            safe_capacity = int(capacity * 0.8)
            return max(1, min(safe_capacity, GRAPH_BATCH_LIMIT))

    async def split_into_batches(
        self, items: Sequence[T], *, is_write: bool
    ) -> List[List[T]]:
        batch_size = await self.calculate_optimal_batch_size()
        batches = [
            list(items[i : i + batch_size]) for i in range(0, len(items), batch_size)
        ]
        _logger.info(
            "Split items into batches",
            total=len(items),
            batches=len(batches),
            batch_size=batch_size,
            write=is_write,
        )
        return batches

    async def status(self) -> RateLimiterStatus:
        async with self._lock:
            self._cleanup_locked()
            blocked_for = 0.0
            if self._blocked_until is not None:
                blocked_for = max(0.0, self._blocked_until - self._now())
            return RateLimiterStatus(
                requests_in_window=len(self._request_times),
                writes_in_window=len(self._write_request_times),
                max_total_requests=self.max_total_requests_per_window,
                max_write_requests=self.max_write_requests_per_window,
                consecutive_rate_limits=self._consecutive_rate_limits,
                blocked_for=blocked_for,
            )

    def _record_locked(self, *, is_write: bool) -> None:
        now = self._now()
        self._request_times.append(now)
        if is_write:
            self._write_request_times.append(now)

        if len(self._request_times) > self.max_total_requests_per_window * 2:
            self._cleanup_locked()

    def _wait_time_locked(self, *, is_write: bool) -> float:
        now = self._now()
        waits = [0.0]
        if self._blocked_until is not None:
            if self._blocked_until > now:
                waits.append(self._blocked_until - now)
            else:
                self._blocked_until = None
        if len(self._request_times) >= self.max_total_requests_per_window:
            waits.append(self._request_times[0] + self.window_seconds - now)
        if is_write and len(self._write_request_times) >= self.max_write_requests_per_window:
            waits.append(self._write_request_times[0] + self.window_seconds - now)
        return max(waits)

    def _advisory_delay_locked(self, *, is_write: bool) -> float:
        if (
            self._last_rate_limit_time is not None
            and self._now() - self._last_rate_limit_time < RATE_LIMIT_MEMORY_SECONDS
            and self._consecutive_rate_limits
        ):
            return min(self._consecutive_rate_limits * 2.0, 10.0)

        total = len(self._request_times)
        write_count = len(self._write_request_times)

        if is_write:
            utilization = write_count / self.max_write_requests_per_window
            if utilization > 0.8:
                return 0.5 * (utilization - 0.8) * 10

        utilization_total = total / self.max_total_requests_per_window
        if utilization_total > 0.8:
            return 0.5 * (utilization_total - 0.8) * 10

        return 0.0

    def _cleanup_locked(self) -> None:
        cutoff = self._now() - self.window_seconds
        while self._request_times and self._request_times[0] <= cutoff:
            self._request_times.popleft()
        while self._write_request_times and self._write_request_times[0] <= cutoff:
            self._write_request_times.popleft()


__all__ = ["RateLimiter", "RateLimiterStatus", "GRAPH_BATCH_LIMIT"]
