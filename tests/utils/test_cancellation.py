from __future__ import annotations

import asyncio

import pytest

from intune_assignments.utils.cancellation import (
    CancellationError,
    CancellationTokenSource,
)


def test_cancel_notifies_callbacks_once() -> None:
    source = CancellationTokenSource()
    seen: list[str | None] = []
    source.token.on_cancel(lambda token: seen.append(token.reason))

    assert source.cancel(reason="user")
    assert not source.cancel(reason="again")

    assert seen == ["user"]
    assert source.token.cancelled
    assert source.token.reason == "user"


def test_late_subscriber_is_called_immediately() -> None:
    source = CancellationTokenSource()
    source.cancel()
    seen: list[bool] = []

    source.token.on_cancel(lambda token: seen.append(token.cancelled))

    assert seen == [True]


def test_unsubscribed_callback_is_not_called() -> None:
    source = CancellationTokenSource()
    seen: list[object] = []
    unsubscribe = source.token.on_cancel(seen.append)

    unsubscribe()
    source.cancel()

    assert seen == []


def test_raise_if_cancelled_raises_cancelled_error() -> None:
    source = CancellationTokenSource()
    source.token.raise_if_cancelled()
    source.cancel(reason="stop")

    with pytest.raises(CancellationError) as excinfo:
        source.token.raise_if_cancelled()

    assert excinfo.value.reason == "stop"
    assert isinstance(excinfo.value, asyncio.CancelledError)
