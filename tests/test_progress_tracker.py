from datetime import datetime, timedelta, timezone

import pytest

from tokenbatch.config import Settings
from tokenbatch.errors import ErrorCode
from tokenbatch.models.task import BatchInfo, BatchKind, TaskDefinition, TaskPriority, TaskStatus
from tokenbatch.services.progress_tracker import ProgressTracker


class _Clock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def _task(task_id, priority=5.0, kind=BatchKind.SINGLE_FILE):
    return TaskDefinition(
        task_id=task_id,
        sequential_id=1,
        batch_kind=kind,
        batch_info=BatchInfo(kind=kind.value, estimated_tokens=1000, file_count=1),
        priority=TaskPriority(base=priority, calculated=priority),
        estimated_duration_seconds=40,
    )


def _tracker(count=3, config=None):
    clock = _Clock()
    tracker = ProgressTracker(config or Settings(), clock=clock)
    tracker.initialize_tracking([_task(f"task_{i}") for i in range(1, count + 1)])
    return tracker, clock


def _assert_buckets_sum(tracker):
    assert sum(tracker.status_counts.values()) == tracker.total


def test_initialize_seeds_pending_records():
    tracker, _ = _tracker()
    started = tracker.initialize_tracking([_task("a"), _task("b")])

    assert started.success
    assert started.total_tasks == 2
    assert started.initial_stats["pending"] == 2
    assert started.tracking_id.startswith("track_")
    _assert_buckets_sum(tracker)


def test_lifecycle_updates_average_and_prediction():
    tracker, clock = _tracker()

    assert tracker.update_status("task_1", TaskStatus.IN_PROGRESS).success
    clock.advance(10)
    result = tracker.update_status("task_1", "completed", {"result": {"ok": True}})

    assert result.success
    assert result.changed
    assert result.previous_status is TaskStatus.IN_PROGRESS
    assert tracker.average_duration_seconds == pytest.approx(10)

    progress = tracker.overall_progress()
    assert progress.completed == 1
    assert progress.pending == 2
    assert progress.completion_rate == pytest.approx(0.3333)
    assert not progress.is_complete
    assert progress.prediction.remaining_tasks == 2
    assert progress.prediction.estimated_remaining_seconds == pytest.approx(20)
    assert progress.prediction.confidence == pytest.approx(1 / 3)
    assert progress.prediction.estimated_completion_at == clock.now + timedelta(seconds=20)


def test_no_prediction_before_first_completion():
    tracker, _ = _tracker()
    tracker.update_status("task_1", TaskStatus.IN_PROGRESS)

    assert tracker.overall_progress().prediction is None


def test_prediction_confidence_is_capped():
    tracker, clock = _tracker(count=2)
    for task_id in ("task_1", "task_2"):
        tracker.update_status(task_id, TaskStatus.IN_PROGRESS)
        clock.advance(5)
        tracker.update_status(task_id, TaskStatus.COMPLETED)

    progress = tracker.overall_progress()
    assert progress.is_complete
    assert progress.prediction.confidence == pytest.approx(0.95)
    assert progress.prediction.remaining_tasks == 0


def test_bucket_counts_always_sum_to_total():
    tracker, clock = _tracker(count=4)
    steps = [
        ("task_1", TaskStatus.IN_PROGRESS),
        ("task_1", TaskStatus.COMPLETED),
        ("task_2", TaskStatus.SKIPPED),
        ("task_3", TaskStatus.IN_PROGRESS),
        ("task_3", TaskStatus.FAILED),
        ("task_3", TaskStatus.IN_PROGRESS),  # rejected
        ("task_4", TaskStatus.COMPLETED),  # rejected
        ("missing", TaskStatus.IN_PROGRESS),  # rejected
    ]
    for task_id, status in steps:
        clock.advance(1)
        tracker.update_status(task_id, status)
        _assert_buckets_sum(tracker)

    assert tracker.status_counts == {
        "pending": 1,
        "in_progress": 0,
        "completed": 1,
        "failed": 1,
        "skipped": 1,
    }


def test_repeating_terminal_status_is_a_no_op():
    tracker, _ = _tracker()
    tracker.update_status("task_1", TaskStatus.IN_PROGRESS)
    tracker.update_status("task_1", TaskStatus.COMPLETED)
    history_size = len(tracker.history)

    repeat = tracker.update_status("task_1", TaskStatus.COMPLETED)

    assert repeat.success
    assert not repeat.changed
    assert len(tracker.history) == history_size
    assert tracker.status_counts["completed"] == 1


def test_leaving_a_terminal_status_is_rejected():
    tracker, _ = _tracker()
    tracker.update_status("task_1", TaskStatus.IN_PROGRESS)
    tracker.update_status("task_1", TaskStatus.COMPLETED)

    result = tracker.update_status("task_1", TaskStatus.FAILED)

    assert not result.success
    assert result.error.code is ErrorCode.INVALID_TRANSITION
    assert tracker.status_counts["completed"] == 1
    assert tracker.status_counts["failed"] == 0


def test_pending_cannot_jump_to_completed():
    tracker, _ = _tracker()
    result = tracker.update_status("task_1", TaskStatus.COMPLETED)

    assert not result.success
    assert result.error.code is ErrorCode.INVALID_TRANSITION
    assert tracker.task_details("task_1").task.status is TaskStatus.PENDING


def test_pending_may_be_skipped_or_failed():
    tracker, _ = _tracker()

    assert tracker.update_status("task_1", TaskStatus.SKIPPED, {"reason": "vendored"}).success
    assert tracker.update_status("task_2", TaskStatus.FAILED, {"error": "unreadable"}).success
    assert tracker.task_details("task_1").task.error == "vendored"
    assert tracker.task_details("task_2").task.error == "unreadable"


def test_unknown_task_and_status_are_reported():
    tracker, _ = _tracker()

    unknown = tracker.update_status("task_99", TaskStatus.IN_PROGRESS)
    assert not unknown.success
    assert unknown.error.code is ErrorCode.UNKNOWN_TASK

    bad = tracker.update_status("task_1", "exploded")
    assert not bad.success
    assert bad.error.code is ErrorCode.INVALID_STATUS
    assert tracker.status_counts["pending"] == 3


def test_reset_task_returns_completed_task_to_pending():
    tracker, clock = _tracker()
    tracker.update_status("task_1", TaskStatus.IN_PROGRESS)
    clock.advance(10)
    tracker.update_status("task_1", TaskStatus.COMPLETED)

    result = tracker.reset_task("task_1")

    assert result.success
    assert result.previous_status is TaskStatus.COMPLETED
    assert tracker.status_counts["pending"] == 3
    assert tracker.status_counts["completed"] == 0
    assert tracker.average_duration_seconds == 0
    assert tracker.overall_progress().prediction is None
    assert tracker.update_status("task_1", TaskStatus.IN_PROGRESS).success


def test_reset_task_keeps_other_durations_in_average():
    tracker, clock = _tracker()
    for task_id, seconds in (("task_1", 10), ("task_2", 30)):
        tracker.update_status(task_id, TaskStatus.IN_PROGRESS)
        clock.advance(seconds)
        tracker.update_status(task_id, TaskStatus.COMPLETED)
    assert tracker.average_duration_seconds == pytest.approx(20)

    tracker.reset_task("task_2")

    assert tracker.average_duration_seconds == pytest.approx(10)


def test_history_is_bounded():
    tracker, _ = _tracker(count=2, config=Settings(history_max_records=3))
    for task_id in ("task_1", "task_2"):
        tracker.update_status(task_id, TaskStatus.IN_PROGRESS)
        tracker.update_status(task_id, TaskStatus.COMPLETED)

    history = tracker.history
    assert len(history) == 3
    assert history[-1].task_id == "task_2"
    assert history[-1].new_status is TaskStatus.COMPLETED


def test_queue_status_orders_pending_by_priority():
    clock = _Clock()
    tracker = ProgressTracker(Settings(), clock=clock)
    tracker.initialize_tracking([_task("low", 3.0), _task("high", 9.0), _task("mid", 6.0), _task("busy", 7.0)])
    tracker.update_status("busy", TaskStatus.IN_PROGRESS)
    clock.advance(4)

    queue = tracker.queue_status()

    assert [e.task_id for e in queue.pending] == ["high", "mid", "low"]
    assert [e.task_id for e in queue.in_progress] == ["busy"]
    assert queue.in_progress[0].elapsed_seconds == pytest.approx(4)
    assert queue.completed == 0


def test_trends_need_enough_history():
    tracker, _ = _tracker()
    tracker.update_status("task_1", TaskStatus.IN_PROGRESS)

    trends = tracker.performance_report().trends
    assert not trends.sufficient_data
    assert trends.message


def test_healthy_run_reports_positive_trend():
    tracker, clock = _tracker(count=5)
    for i in range(1, 6):
        tracker.update_status(f"task_{i}", TaskStatus.IN_PROGRESS)
        clock.advance(1)
        tracker.update_status(f"task_{i}", TaskStatus.COMPLETED)

    report = tracker.performance_report()

    assert report.success_rate == pytest.approx(1.0)
    assert report.timing.average_seconds == pytest.approx(1.0)
    assert report.by_kind["single_file"]["completed"] == 5
    assert report.by_priority["medium"]["completed"] == 5
    assert report.trends.sufficient_data
    assert report.trends.trend == "positive"
    assert report.trends.recommendations == ["Task execution is healthy"]


def test_failing_run_reports_concerning_trend():
    tracker, _ = _tracker(count=5)
    for i in range(1, 6):
        tracker.update_status(f"task_{i}", TaskStatus.IN_PROGRESS)
        tracker.update_status(f"task_{i}", TaskStatus.FAILED, {"error": "boom"})

    trends = tracker.performance_report().trends

    assert trends.trend == "concerning"
    assert trends.recent_failure_rate == pytest.approx(1.0)
    assert len(trends.recommendations) == 2


def test_task_details_report_waiting_and_processing_time():
    tracker, clock = _tracker()
    clock.advance(5)
    tracker.update_status("task_1", TaskStatus.IN_PROGRESS)
    clock.advance(3)

    details = tracker.task_details("task_1")

    assert details.success
    assert details.waiting_seconds == pytest.approx(5)
    assert details.processing_seconds == pytest.approx(3)
    assert details.task.attempts == 1

    missing = tracker.task_details("nope")
    assert not missing.success
    assert missing.error.code is ErrorCode.UNKNOWN_TASK
