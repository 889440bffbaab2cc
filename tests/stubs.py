from __future__ import annotations

import asyncio
from typing import Callable

from intune_assignments.data import MobileAppAssignment
from intune_assignments.services.gateway import AssignmentWrite, AssignmentWriteResult


HANG = "hang"
"""Queued outcome that makes ``execute`` stall until the caller times out."""


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += max(delay, 0.0)
        await asyncio.sleep(0)


class FakeAssignmentGateway:
    """In-memory stand-in for the Graph assign endpoint.

    Outcomes queued with :meth:`fail` are consumed one per ``execute`` call
    for the given app; once the queue is empty writes succeed and replace the
    stored assignment set, like the real endpoint.
    """

    def __init__(
        self,
        existing: dict[str, list[MobileAppAssignment]] | None = None,
    ) -> None:
        self.existing: dict[str, list[MobileAppAssignment]] = {
            app_id: list(items) for app_id, items in (existing or {}).items()
        }
        self.fetch_calls: list[str] = []
        self.fetch_errors: dict[str, Exception] = {}
        self._fetch_failures: dict[str, list[Exception]] = {}
        self.writes: list[AssignmentWrite] = []
        self.timeouts: list[float] = []
        self.on_execute: Callable[[AssignmentWrite], None] | None = None
        self.gate: asyncio.Event | None = None
        self._outcomes: dict[str, list[Exception | str]] = {}
        self._counter = 0

    def fail(self, application_id: str, *outcomes: Exception | str) -> None:
        self._outcomes.setdefault(application_id, []).extend(outcomes)

    def fail_fetch(self, application_id: str, *errors: Exception) -> None:
        """Queue errors raised by the next fetches for ``application_id``."""
        self._fetch_failures.setdefault(application_id, []).extend(errors)

    def writes_for(self, application_id: str) -> list[AssignmentWrite]:
        return [write for write in self.writes if write.application_id == application_id]

    async def fetch_current_assignments(
        self, application_id: str
    ) -> list[MobileAppAssignment]:
        self.fetch_calls.append(application_id)
        queued = self._fetch_failures.get(application_id)
        if queued:
            raise queued.pop(0)
        error = self.fetch_errors.get(application_id)
        if error is not None:
            raise error
        return list(self.existing.get(application_id, []))

    async def execute(
        self, write: AssignmentWrite, *, timeout: float
    ) -> AssignmentWriteResult:
        self.writes.append(write)
        self.timeouts.append(timeout)
        if self.on_execute is not None:
            self.on_execute(write)
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)

        queue = self._outcomes.get(write.application_id)
        if queue:
            outcome = queue.pop(0)
            if outcome == HANG:
                await asyncio.sleep(3600)
            elif isinstance(outcome, Exception):
                raise outcome

        stored: list[MobileAppAssignment] = []
        for item in write.desired:
            if item.id is None:
                self._counter += 1
                item = item.model_copy(update={"id": f"assigned-{self._counter}"})
            stored.append(item)
        self.existing[write.application_id] = stored
        return AssignmentWriteResult(
            application_id=write.application_id,
            assignments=tuple(stored),
        )
