from __future__ import annotations

import pytest

from intune_assignments.services.progress import AssignmentProgress, AssignmentProgressTracker


class _Ticker:
    def __init__(self) -> None:
        self.value = 10.0

    def __call__(self) -> float:
        return self.value


def test_idle_progress_is_empty() -> None:
    progress = AssignmentProgress.idle()

    assert progress.total == 0
    assert progress.pending == 0
    assert progress.percent_complete == 0.0
    assert progress.current_label is None


def test_tracker_counts_outcomes_separately() -> None:
    ticker = _Ticker()
    tracker = AssignmentProgressTracker(clock=ticker)
    tracker.start(total=5)

    tracker.succeeded(2)
    tracker.failed()
    snapshot = tracker.cancelled()

    assert (snapshot.completed, snapshot.failed, snapshot.cancelled) == (2, 1, 1)
    assert snapshot.pending == 1
    assert snapshot.processed == 4
    assert snapshot.percent_complete == pytest.approx(80.0)


def test_counts_never_exceed_total() -> None:
    tracker = AssignmentProgressTracker()
    tracker.start(total=2)

    tracker.succeeded(5)
    snapshot = tracker.failed(1)

    assert snapshot.completed == 2
    assert snapshot.failed == 0
    assert snapshot.pending == 0


def test_negative_counts_are_rejected() -> None:
    tracker = AssignmentProgressTracker()
    tracker.start(total=2)

    with pytest.raises(ValueError):
        tracker.succeeded(-1)
    with pytest.raises(ValueError):
        tracker.start(total=-1)


def test_current_label_and_elapsed_time() -> None:
    ticker = _Ticker()
    tracker = AssignmentProgressTracker(clock=ticker)
    tracker.start(total=1)

    running = tracker.set_current(application="Company Portal", group="Sales")
    ticker.value = 14.5
    finished = tracker.finish()

    assert running.current_label == "Company Portal → Sales"
    assert finished.elapsed == pytest.approx(4.5)
    assert finished.finished
    assert finished.current_label is None


def test_finished_empty_operation_reports_complete() -> None:
    tracker = AssignmentProgressTracker()
    tracker.start(total=0)

    assert tracker.finish().percent_complete == 100.0
