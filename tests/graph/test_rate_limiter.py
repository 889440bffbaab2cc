from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest

from intune_assignments.graph.errors import GraphAPIError, GraphErrorCategory, RateLimitError
from intune_assignments.graph.rate_limiter import GRAPH_BATCH_LIMIT, RateLimiter
from tests.factories import make_engine_settings
from tests.stubs import FakeClock


def _limiter(clock: FakeClock, monkeypatch: pytest.MonkeyPatch, **kwargs: object) -> RateLimiter:
    limiter = RateLimiter(sleep=clock.sleep, **kwargs)
    monkeypatch.setattr(limiter, "_now", clock.time)
    return limiter


@pytest.mark.asyncio
async def test_can_make_request_respects_limits(monkeypatch: pytest.MonkeyPatch) -> None:
    limiter = RateLimiter()
    limiter.max_total_requests_per_window = 2
    limiter.max_write_requests_per_window = 1
    base_time = 1.0
    monkeypatch.setattr(limiter, "_now", lambda: base_time)

    await limiter.record_request(is_write=False)
    await limiter.record_request(is_write=True)

    assert not await limiter.can_make_request(is_write=False)
    assert not await limiter.can_make_request(is_write=True)

    monkeypatch.setattr(
        limiter,
        "_now",
        lambda: base_time + limiter.window_seconds + 1,
    )
    assert await limiter.can_make_request(is_write=True)


@pytest.mark.asyncio
async def test_acquire_waits_for_write_slot(monkeypatch: pytest.MonkeyPatch) -> None:
    clock = FakeClock(start=100.0)
    limiter = _limiter(
        clock, monkeypatch, max_write_requests_per_window=2, window_seconds=20.0
    )

    await limiter.acquire(is_write=True)
    await limiter.acquire(is_write=True)
    assert clock.sleeps == []

    await limiter.acquire(is_write=True)

    assert clock.sleeps == [20.0]
    status = await limiter.status()
    assert status.writes_in_window == 1
    assert status.requests_in_window == 1


@pytest.mark.asyncio
async def test_reads_do_not_consume_write_capacity(monkeypatch: pytest.MonkeyPatch) -> None:
    clock = FakeClock()
    limiter = _limiter(clock, monkeypatch, max_write_requests_per_window=1)

    for _ in range(5):
        await limiter.acquire(is_write=False)
    await limiter.acquire(is_write=True)

    assert clock.sleeps == []
    status = await limiter.status()
    assert (status.requests_in_window, status.writes_in_window) == (6, 1)


@pytest.mark.asyncio
async def test_rate_limit_blocks_until_backoff_elapses(monkeypatch: pytest.MonkeyPatch) -> None:
    clock = FakeClock()
    limiter = _limiter(clock, monkeypatch)

    delay = await limiter.record_rate_limit("4")
    assert delay == 4.0
    assert not await limiter.can_make_request(is_write=True)
    assert (await limiter.status()).blocked_for == pytest.approx(4.0)

    started = clock.now
    await limiter.acquire(is_write=True)

    assert clock.now - started >= delay
    assert (await limiter.status()).consecutive_rate_limits == 1


@pytest.mark.asyncio
async def test_consecutive_rate_limits_back_off_exponentially(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    clock = FakeClock()
    limiter = _limiter(clock, monkeypatch, base_retry_delay=1.0, max_retry_delay=32.0)
    monkeypatch.setattr("random.uniform", lambda _a, _b: 1.0)

    delays = [await limiter.record_rate_limit() for _ in range(4)]

    assert delays == [1.0, 2.0, 4.0, 8.0]
    await limiter.reset_rate_limit_tracking()
    assert await limiter.record_rate_limit() == 1.0


@pytest.mark.asyncio
async def test_calculate_delay_and_rate_limit_tracking(monkeypatch: pytest.MonkeyPatch) -> None:
    limiter = RateLimiter()
    limiter.max_total_requests_per_window = 10
    base_time = 100.0
    monkeypatch.setattr(limiter, "_now", lambda: base_time)

    for _ in range(9):
        await limiter.record_request(is_write=False)

    delay = await limiter.calculate_delay(is_write=False)
    assert delay > 0.0

    await limiter.record_rate_limit("0")
    extra_delay = await limiter.calculate_delay(is_write=False)
    # Rate limit bump adds at least 2 seconds.
    assert extra_delay >= 2.0

    await limiter.reset_rate_limit_tracking()
    monkeypatch.setattr(
        limiter,
        "_now",
        lambda: base_time + limiter.window_seconds + 1,
    )
    assert await limiter.calculate_delay(is_write=False) == 0.0


@pytest.mark.asyncio
async def test_calculate_retry_delay(monkeypatch: pytest.MonkeyPatch) -> None:
    limiter = RateLimiter()

    delay = await limiter.calculate_retry_delay(attempt=1, retry_after_header="7")
    assert delay == 7.0

    monkeypatch.setattr("random.uniform", lambda _a, _b: 1.0)
    delay_no_header = await limiter.calculate_retry_delay(attempt=3)
    expected = min(
        limiter.base_retry_delay * (2 ** (3 - 1)) * 1.0,
        limiter.max_retry_delay,
    )
    assert delay_no_header == expected

    capped = await limiter.calculate_retry_delay(attempt=20, retry_after_header="soon")
    assert capped == limiter.max_retry_delay


@pytest.mark.asyncio
async def test_retry_after_accepts_http_dates() -> None:
    limiter = RateLimiter()
    header = format_datetime(datetime.now(timezone.utc) + timedelta(seconds=30), usegmt=True)

    delay = await limiter.calculate_retry_delay(attempt=1, retry_after_header=header)
    assert 25.0 < delay <= 30.0

    past = format_datetime(datetime.now(timezone.utc) - timedelta(minutes=5), usegmt=True)
    assert await limiter.calculate_retry_delay(attempt=1, retry_after_header=past) == 0.0


@pytest.mark.asyncio
async def test_should_retry_conditions() -> None:
    limiter = RateLimiter()

    assert await limiter.should_retry(attempt=1, error=asyncio.TimeoutError())

    rate_limit_error = RateLimitError()
    assert await limiter.should_retry(attempt=1, error=rate_limit_error)
    assert not await limiter.should_retry(
        attempt=limiter.max_retries + 1,
        error=rate_limit_error,
    )

    validation_error = GraphAPIError(
        message="Validation failed",
        category=GraphErrorCategory.VALIDATION,
    )
    assert not await limiter.should_retry(attempt=1, error=validation_error)
    assert not await limiter.should_retry(attempt=1, error=ValueError("nope"))


@pytest.mark.asyncio
async def test_split_into_batches_respects_capacity(monkeypatch: pytest.MonkeyPatch) -> None:
    limiter = RateLimiter()
    limiter.max_total_requests_per_window = 5
    limiter.max_write_requests_per_window = 4
    base_time = 500.0
    monkeypatch.setattr(limiter, "_now", lambda: base_time)

    await limiter.record_request(is_write=True)
    await limiter.record_request(is_write=False)

    batch_size = await limiter.calculate_optimal_batch_size()
    assert batch_size == 2

    batches = await limiter.split_into_batches(list(range(5)), is_write=True)
    assert [len(batch) for batch in batches] == [2, 2, 1]


@pytest.mark.asyncio
async def test_batch_size_never_exceeds_graph_limit() -> None:
    limiter = RateLimiter()

    assert await limiter.calculate_optimal_batch_size() == GRAPH_BATCH_LIMIT


def test_from_settings_copies_quotas(tmp_path) -> None:
    settings = make_engine_settings(
        tmp_path,
        max_write_requests_per_window=7,
        max_total_requests_per_window=70,
        window_seconds=5.0,
        max_attempts=4,
    )

    limiter = RateLimiter.from_settings(settings)

    assert limiter.max_write_requests_per_window == 7
    assert limiter.max_total_requests_per_window == 70
    assert limiter.window_seconds == 5.0
    assert limiter.max_retries == 4


def test_rejects_empty_window() -> None:
    with pytest.raises(ValueError):
        RateLimiter(max_write_requests_per_window=0)
