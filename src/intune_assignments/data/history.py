from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from intune_assignments.config.settings import AssignmentEngineSettings
from intune_assignments.data.models.assignment import Assignment, AssignmentStatus
from intune_assignments.utils.logging import get_logger


logger = get_logger(__name__)

HISTORY_FORMAT_VERSION = 1


@dataclass(slots=True, frozen=True)
class AssignmentStatistics:
    total: int = 0
    completed: int = 0
    failed: int = 0
    pending: int = 0
    cancelled: int = 0
    by_intent: dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        finished = self.completed + self.failed
        if not finished:
            return 0.0
        return self.completed / finished


def summarize_assignments(records: Iterable[Assignment]) -> AssignmentStatistics:
    items = list(records)
    statuses = Counter(record.status for record in items)
    intents = Counter(record.intent.value for record in items)
    return AssignmentStatistics(
        total=len(items),
        completed=statuses.get(AssignmentStatus.COMPLETED, 0),
        failed=statuses.get(AssignmentStatus.FAILED, 0),
        pending=statuses.get(AssignmentStatus.PENDING, 0),
        cancelled=statuses.get(AssignmentStatus.CANCELLED, 0),
        by_intent=dict(intents),
    )


class AssignmentHistoryStore:
    """JSON file holding the most recent assignment outcomes.

    Records are keyed by assignment id, so a retried assignment replaces
    its earlier outcome instead of appearing twice.
    """

    def __init__(self, path: Path, *, limit: int = 1000) -> None:
        if limit < 1:
            raise ValueError("History limit must be at least 1")
        self._path = path
        self._limit = limit

    @classmethod
    def from_settings(cls, settings: AssignmentEngineSettings) -> "AssignmentHistoryStore":
        return cls(settings.history_path, limit=settings.history_limit)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[Assignment]:
        if not self._path.exists():
            return []
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Assignment history unreadable", path=str(self._path), error=str(exc))
            return []

        raw_items = payload.get("assignments", []) if isinstance(payload, dict) else []
        records: list[Assignment] = []
        for item in raw_items:
            if not isinstance(item, dict):
                continue
            try:
                records.append(Assignment.from_json_dict(item))
            except ValidationError as exc:
                logger.debug("Skipping malformed history entry", error=str(exc))
        return records

    def append(self, assignments: Iterable[Assignment]) -> int:
        """Merge outcomes into the history file and return the stored count."""

        incoming = list(assignments)
        if not incoming:
            return len(self.load())

        by_id: dict[str, Assignment] = {record.id: record for record in self.load()}
        for record in incoming:
            by_id.pop(record.id, None)
            by_id[record.id] = record.model_copy(deep=True)

        records = list(by_id.values())[-self._limit :]
        self._write(records)
        logger.debug(
            "Assignment history updated",
            added=len(incoming),
            stored=len(records),
            path=str(self._path),
        )
        return len(records)

    def clear(self) -> None:
        if self._path.exists():
            self._path.unlink()
            logger.info("Assignment history cleared", path=str(self._path))

    def statistics(self) -> AssignmentStatistics:
        return summarize_assignments(self.load())

    def _write(self, records: list[Assignment]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": HISTORY_FORMAT_VERSION,
            "assignments": [record.to_json_dict() for record in records],
        }
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp_path.replace(self._path)


__all__ = ["AssignmentHistoryStore", "AssignmentStatistics", "summarize_assignments"]
