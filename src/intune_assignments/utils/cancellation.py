from __future__ import annotations

import asyncio
from typing import Callable

from intune_assignments.utils.logging import get_logger


logger = get_logger(__name__)


class CancellationError(asyncio.CancelledError):
    """Raised when an operation has been cancelled via a cancellation token."""

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason


class _CancellationState:
    __slots__ = ("cancelled", "reason", "callbacks")

    def __init__(self) -> None:
        self.cancelled = False
        self.reason: str | None = None
        self.callbacks: list[Callable[["CancellationToken"], None]] = []


class CancellationToken:
    """Read-only handle that lets an operation observe cancellation requests.

    Cancellation is cooperative: holders check the token at their own
    suspension points and nothing already running is interrupted.
    """

    __slots__ = ("_state",)

    def __init__(self, state: _CancellationState) -> None:
        self._state = state

    @property
    def cancelled(self) -> bool:
        return self._state.cancelled

    @property
    def reason(self) -> str | None:
        return self._state.reason

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancellationError(self._state.reason)

    def on_cancel(self, callback: Callable[["CancellationToken"], None]) -> Callable[[], None]:
        if self.cancelled:
            callback(self)

            def noop() -> None:
                return None

            return noop

        self._state.callbacks.append(callback)

        def unsubscribe() -> None:
            try:
                self._state.callbacks.remove(callback)
            except ValueError:  # pragma: no cover - already removed
                pass

        return unsubscribe

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled}, reason={self.reason!r})"


class CancellationTokenSource:
    """Owns a cancellation token and triggers cancellation on request."""

    __slots__ = ("_state", "_token")

    def __init__(self) -> None:
        self._state = _CancellationState()
        self._token = CancellationToken(self._state)

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def cancelled(self) -> bool:
        return self._state.cancelled

    def cancel(self, *, reason: str | None = None) -> bool:
        """Signal cancellation; returns False when already cancelled."""
        if self._state.cancelled:
            return False
        self._state.reason = reason
        self._state.cancelled = True
        for callback in list(self._state.callbacks):
            try:
                callback(self._token)
            except Exception:  # pragma: no cover - callbacks must not block cancellation
                logger.exception("Cancellation callback raised an exception")
        return True


__all__ = ["CancellationError", "CancellationToken", "CancellationTokenSource"]
