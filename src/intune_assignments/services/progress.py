from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable


@dataclass(slots=True, frozen=True)
class AssignmentProgress:
    """Immutable view of a bulk operation's progress.

    ``completed`` counts successful assignments only; failures and
    cancellations are tracked separately so that
    ``completed + failed + cancelled + pending == total`` always holds.
    """

    total: int
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    current_application: str | None = None
    current_group: str | None = None
    started_at: float | None = None
    elapsed: float = 0.0
    finished: bool = False

    @property
    def pending(self) -> int:
        return max(self.total - (self.completed + self.failed + self.cancelled), 0)

    @property
    def processed(self) -> int:
        return self.completed + self.failed + self.cancelled

    @property
    def percent_complete(self) -> float:
        if not self.total:
            return 100.0 if self.finished else 0.0
        return min((self.processed / self.total) * 100, 100.0)

    @property
    def current_label(self) -> str | None:
        if self.current_application and self.current_group:
            return f"{self.current_application} → {self.current_group}"
        return self.current_application or self.current_group

    @classmethod
    def idle(cls) -> "AssignmentProgress":
        return cls(total=0)


class AssignmentProgressTracker:
    """Mutable counterpart that produces :class:`AssignmentProgress` snapshots.

    Callers serialise access; the tracker itself does no locking.
    """

    __slots__ = (
        "_total",
        "_completed",
        "_failed",
        "_cancelled",
        "_current_application",
        "_current_group",
        "_started_at",
        "_finished_at",
        "_clock",
    )

    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.monotonic
        self._total = 0
        self._completed = 0
        self._failed = 0
        self._cancelled = 0
        self._current_application: str | None = None
        self._current_group: str | None = None
        self._started_at: float | None = None
        self._finished_at: float | None = None

    def start(self, *, total: int) -> AssignmentProgress:
        if total < 0:
            raise ValueError("total must not be negative")
        self._total = total
        self._completed = 0
        self._failed = 0
        self._cancelled = 0
        self._current_application = None
        self._current_group = None
        self._started_at = self._clock()
        self._finished_at = None
        return self.snapshot()

    def set_current(
        self, *, application: str | None, group: str | None = None
    ) -> AssignmentProgress:
        self._current_application = application
        self._current_group = group
        return self.snapshot()

    def succeeded(self, count: int = 1) -> AssignmentProgress:
        self._completed += self._bounded(count)
        return self.snapshot()

    def failed(self, count: int = 1) -> AssignmentProgress:
        self._failed += self._bounded(count)
        return self.snapshot()

    def cancelled(self, count: int = 1) -> AssignmentProgress:
        self._cancelled += self._bounded(count)
        return self.snapshot()

    def finish(self) -> AssignmentProgress:
        self._finished_at = self._clock()
        self._current_application = None
        self._current_group = None
        return self.snapshot()

    def snapshot(self) -> AssignmentProgress:
        elapsed = 0.0
        if self._started_at is not None:
            end = self._finished_at if self._finished_at is not None else self._clock()
            elapsed = max(end - self._started_at, 0.0)
        return AssignmentProgress(
            total=self._total,
            completed=self._completed,
            failed=self._failed,
            cancelled=self._cancelled,
            current_application=self._current_application,
            current_group=self._current_group,
            started_at=self._started_at,
            elapsed=elapsed,
            finished=self._finished_at is not None,
        )

    def _bounded(self, count: int) -> int:
        if count < 0:
            raise ValueError("Progress counts only move forward")
        remaining = self._total - (self._completed + self._failed + self._cancelled)
        return min(count, max(remaining, 0))


__all__ = ["AssignmentProgress", "AssignmentProgressTracker"]
