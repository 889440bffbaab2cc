from __future__ import annotations

import json
from pathlib import Path

import pytest

from intune_assignments.data import Assignment, AssignmentHistoryStore, AssignmentIntent, AssignmentStatus


def _record(index: int, status: AssignmentStatus = AssignmentStatus.COMPLETED) -> Assignment:
    assignment = Assignment(
        id=f"assignment-{index}",
        application_id=f"app-{index}",
        application_name=f"App {index}",
        group_id="group-1",
        group_name="Pilot",
        intent=AssignmentIntent.REQUIRED if index % 2 else AssignmentIntent.AVAILABLE,
    )
    assignment.mark(status, error_message="boom" if status is AssignmentStatus.FAILED else None)
    return assignment


def test_missing_file_loads_empty(tmp_path: Path) -> None:
    store = AssignmentHistoryStore(tmp_path / "history.json")

    assert store.load() == []
    assert store.statistics().total == 0
    assert store.statistics().success_rate == 0.0


def test_append_persists_and_replaces_retried_records(tmp_path: Path) -> None:
    store = AssignmentHistoryStore(tmp_path / "nested" / "history.json")
    first = _record(1, AssignmentStatus.FAILED)
    store.append([first, _record(2)])

    retried = first.model_copy(deep=True)
    retried.mark(AssignmentStatus.COMPLETED)
    stored = store.append([retried])

    records = store.load()
    assert stored == 2
    assert [record.id for record in records] == ["assignment-2", "assignment-1"]
    assert records[-1].status is AssignmentStatus.COMPLETED
    payload = json.loads(store.path.read_text(encoding="utf-8"))
    assert payload["version"] == 1


def test_append_keeps_most_recent_records(tmp_path: Path) -> None:
    store = AssignmentHistoryStore(tmp_path / "history.json", limit=3)

    store.append(_record(index) for index in range(5))

    assert [record.id for record in store.load()] == [
        "assignment-2",
        "assignment-3",
        "assignment-4",
    ]


def test_unreadable_file_and_malformed_entries_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "history.json"
    path.write_text("{not json", encoding="utf-8")
    store = AssignmentHistoryStore(path)

    assert store.load() == []

    path.write_text(
        json.dumps(
            {
                "version": 1,
                "assignments": [
                    _record(1).to_json_dict(),
                    {"applicationId": "missing-fields"},
                    "garbage",
                ],
            }
        ),
        encoding="utf-8",
    )
    assert [record.id for record in store.load()] == ["assignment-1"]


def test_statistics_summarize_outcomes(tmp_path: Path) -> None:
    store = AssignmentHistoryStore(tmp_path / "history.json")
    store.append(
        [
            _record(1),
            _record(2),
            _record(3, AssignmentStatus.FAILED),
            _record(4, AssignmentStatus.CANCELLED),
        ]
    )

    stats = store.statistics()

    assert stats.total == 4
    assert stats.completed == 2
    assert stats.failed == 1
    assert stats.cancelled == 1
    assert stats.success_rate == pytest.approx(2 / 3)
    assert stats.by_intent == {"required": 2, "available": 2}


def test_clear_removes_file(tmp_path: Path) -> None:
    store = AssignmentHistoryStore(tmp_path / "history.json")
    store.append([_record(1)])

    store.clear()

    assert not store.path.exists()


def test_limit_must_be_positive(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        AssignmentHistoryStore(tmp_path / "history.json", limit=0)
