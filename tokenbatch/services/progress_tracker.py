"""
ProgressTracker - Live task status, aggregate metrics and completion prediction.

Each task moves pending -> in_progress -> {completed | failed | skipped}.
Terminal states are sticky: repeating the same terminal status is a no-op,
anything else is rejected until ``reset_task`` is called explicitly.
"""

from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Union
from uuid import uuid4

from tokenbatch.config import Settings, settings as default_settings
from tokenbatch.errors import (
    ErrorCode,
    InvalidTransitionError,
    TokenBatchError,
    UnknownTaskError,
    error_info,
)
from tokenbatch.models.progress import (
    CompletionPrediction,
    HistoryEntry,
    OverallProgress,
    PerformanceReport,
    QueueEntry,
    QueueStatus,
    StatusUpdateResult,
    TaskDetails,
    TaskRecord,
    TimingStats,
    TrackingStarted,
    TrendAnalysis,
)
from tokenbatch.models.task import TaskDefinition, TaskStatus, utc_now
from tokenbatch.services.priority import priority_band
from tokenbatch.utils.logger import get_logger

logger = get_logger(__name__)


TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.SKIPPED, TaskStatus.FAILED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.SKIPPED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.SKIPPED: frozenset(),
}

PREDICTION_CONFIDENCE_CAP = 0.95
TREND_MIN_HISTORY = 10
TREND_WINDOW = 50
SLOW_TASK_SECONDS = 60


def validate_transition(current: TaskStatus, new: TaskStatus) -> None:
    """Raise InvalidTransitionError unless ``current -> new`` is allowed."""
    if new not in TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move task from {current.value} to {new.value}",
            current=current.value,
            requested=new.value,
        )


def _rate(part: int, whole: int) -> float:
    return round(part / whole, 4) if whole else 0.0


class ProgressTracker:
    """
    Bookkeeping for one run's tasks.

    Not safe for concurrent mutation; the execution driver reports
    transitions from a single place.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = config or default_settings
        self.clock = clock
        self._records: dict[str, TaskRecord] = {}
        self._counts: dict[TaskStatus, int] = {status: 0 for status in TaskStatus}
        self._history: deque[HistoryEntry] = deque(maxlen=self.settings.history_max_records)
        self._completed_runs = 0
        self._average_duration = 0.0
        self.started_at = self.clock()

    # ── Lifecycle ─────────────────────────────────────────────────

    def initialize_tracking(self, task_definitions: Iterable[TaskDefinition]) -> TrackingStarted:
        """Forget previous state and seed one pending record per task."""
        self.reset()
        now = self.started_at
        for task in task_definitions:
            self._records[task.task_id] = TaskRecord(
                task_id=task.task_id,
                batch_kind=task.batch_kind,
                priority=task.priority.calculated,
                estimated_duration_seconds=task.estimated_duration_seconds,
                file_count=task.file_info.total_files,
                token_count=task.batch_info.estimated_tokens,
                created_at=now,
                metadata=dict(task.metadata),
            )
        self._counts[TaskStatus.PENDING] = len(self._records)

        tracking_id = f"track_{uuid4().hex[:12]}"
        logger.info("tracking_initialized", tracking_id=tracking_id, tasks=len(self._records))
        return TrackingStarted(
            tracking_id=tracking_id,
            total_tasks=len(self._records),
            initial_stats=self.status_counts,
            started_at=now,
        )

    def update_status(
        self,
        task_id: str,
        new_status: Union[TaskStatus, str],
        data: Optional[dict[str, Any]] = None,
    ) -> StatusUpdateResult:
        """
        Record a status change reported by the execution driver.

        Args:
            task_id: Id from the build result
            new_status: Target status (enum or its string value)
            data: Optional ``result``, ``error``, ``reason`` and ``metadata``

        Returns:
            StatusUpdateResult; rejected updates leave all state unchanged
        """
        now = self.clock()
        try:
            status = TaskStatus(new_status)
        except ValueError:
            return StatusUpdateResult(
                success=False,
                task_id=task_id,
                timestamp=now,
                progress_stats=self.status_counts,
                error=error_info(ErrorCode.INVALID_STATUS, f"Unknown status: {new_status}", status=str(new_status)),
            )

        try:
            record = self._get(task_id)
            previous = record.status
            if status is previous:
                return StatusUpdateResult(
                    success=True,
                    task_id=task_id,
                    previous_status=previous,
                    new_status=status,
                    changed=False,
                    progress_stats=self.status_counts,
                    timestamp=now,
                )
            validate_transition(previous, status)
        except TokenBatchError as e:
            logger.warning("status_update_rejected", task_id=task_id, status=status.value, error=e.message)
            return StatusUpdateResult(
                success=False,
                task_id=task_id,
                new_status=status,
                progress_stats=self.status_counts,
                timestamp=now,
                error=e.to_info(),
            )

        self._apply(record, status, data or {}, now)
        self._move(previous, status)
        self._history.append(
            HistoryEntry(task_id=task_id, previous_status=previous, new_status=status, timestamp=now, data=data or {})
        )
        if status is TaskStatus.COMPLETED and record.started_at is not None:
            self._fold_duration((record.completed_at - record.started_at).total_seconds())

        logger.info("status_updated", task_id=task_id, previous=previous.value, status=status.value)
        return StatusUpdateResult(
            success=True,
            task_id=task_id,
            previous_status=previous,
            new_status=status,
            changed=True,
            progress_stats=self.status_counts,
            timestamp=now,
        )

    def reset_task(self, task_id: str) -> StatusUpdateResult:
        """Explicitly return a task to pending, whatever its state."""
        now = self.clock()
        try:
            record = self._get(task_id)
        except UnknownTaskError as e:
            return StatusUpdateResult(success=False, task_id=task_id, timestamp=now, error=e.to_info())

        previous = record.status
        if previous is TaskStatus.COMPLETED and record.started_at and record.completed_at:
            self._unfold_duration((record.completed_at - record.started_at).total_seconds())

        record.status = TaskStatus.PENDING
        record.started_at = None
        record.completed_at = None
        record.result = None
        record.error = None
        record.last_updated = now
        self._move(previous, TaskStatus.PENDING)
        self._history.append(
            HistoryEntry(
                task_id=task_id,
                previous_status=previous,
                new_status=TaskStatus.PENDING,
                timestamp=now,
                data={"reset": True},
            )
        )
        logger.info("task_reset", task_id=task_id, previous=previous.value)
        return StatusUpdateResult(
            success=True,
            task_id=task_id,
            previous_status=previous,
            new_status=TaskStatus.PENDING,
            changed=previous is not TaskStatus.PENDING,
            progress_stats=self.status_counts,
            timestamp=now,
        )

    def reset(self) -> None:
        """Drop all records, history and timing."""
        self._records.clear()
        self._counts = {status: 0 for status in TaskStatus}
        self._history.clear()
        self._completed_runs = 0
        self._average_duration = 0.0
        self.started_at = self.clock()

    # ── Queries ───────────────────────────────────────────────────

    @property
    def status_counts(self) -> dict[str, int]:
        return {status.value: count for status, count in self._counts.items()}

    @property
    def total(self) -> int:
        return len(self._records)

    @property
    def history(self) -> list[HistoryEntry]:
        return list(self._history)

    @property
    def average_duration_seconds(self) -> float:
        return self._average_duration

    def overall_progress(self) -> OverallProgress:
        now = self.clock()
        counts = self._counts
        total = self.total
        completed = counts[TaskStatus.COMPLETED]
        failed = counts[TaskStatus.FAILED]
        skipped = counts[TaskStatus.SKIPPED]

        return OverallProgress(
            total=total,
            pending=counts[TaskStatus.PENDING],
            in_progress=counts[TaskStatus.IN_PROGRESS],
            completed=completed,
            failed=failed,
            skipped=skipped,
            completion_rate=_rate(completed, total),
            failure_rate=_rate(failed, total),
            is_complete=completed + failed + skipped == total,
            elapsed_seconds=(now - self.started_at).total_seconds(),
            prediction=self._predict(now),
        )

    def performance_report(self) -> PerformanceReport:
        now = self.clock()
        records = list(self._records.values())
        durations = [
            (r.completed_at - r.started_at).total_seconds()
            for r in records
            if r.status is TaskStatus.COMPLETED and r.started_at and r.completed_at
        ]
        completed = self._counts[TaskStatus.COMPLETED]
        failed = self._counts[TaskStatus.FAILED]

        by_kind: dict[str, dict[str, int]] = {}
        by_priority = {band: {"total": 0, "completed": 0, "failed": 0} for band in ("high", "medium", "low")}
        for record in records:
            kind = by_kind.setdefault(record.batch_kind.value, {"total": 0, **{s.value: 0 for s in TaskStatus}})
            kind["total"] += 1
            kind[record.status.value] += 1

            band = by_priority[priority_band(record.priority)]
            band["total"] += 1
            if record.status is TaskStatus.COMPLETED:
                band["completed"] += 1
            elif record.status is TaskStatus.FAILED:
                band["failed"] += 1

        return PerformanceReport(
            total_tasks=len(records),
            completed_tasks=completed,
            failed_tasks=failed,
            success_rate=_rate(completed, len(records)),
            failure_rate=_rate(failed, len(records)),
            timing=TimingStats(
                average_seconds=round(sum(durations) / len(durations), 3) if durations else 0.0,
                min_seconds=min(durations, default=0.0),
                max_seconds=max(durations, default=0.0),
                total_elapsed_seconds=(now - self.started_at).total_seconds(),
            ),
            by_kind=by_kind,
            by_status=self.status_counts,
            by_priority=by_priority,
            trends=self._trends(),
        )

    def queue_status(self) -> QueueStatus:
        now = self.clock()
        records = list(self._records.values())
        pending = sorted(
            (r for r in records if r.status is TaskStatus.PENDING),
            key=lambda r: -r.priority,
        )
        return QueueStatus(
            pending=[
                QueueEntry(
                    task_id=r.task_id,
                    batch_kind=r.batch_kind,
                    priority=r.priority,
                    estimated_duration_seconds=r.estimated_duration_seconds,
                )
                for r in pending
            ],
            in_progress=[
                QueueEntry(
                    task_id=r.task_id,
                    batch_kind=r.batch_kind,
                    priority=r.priority,
                    estimated_duration_seconds=r.estimated_duration_seconds,
                    started_at=r.started_at,
                    elapsed_seconds=(now - r.started_at).total_seconds() if r.started_at else None,
                )
                for r in records
                if r.status is TaskStatus.IN_PROGRESS
            ],
            completed=self._counts[TaskStatus.COMPLETED],
            failed=self._counts[TaskStatus.FAILED],
            skipped=self._counts[TaskStatus.SKIPPED],
        )

    def task_details(self, task_id: str) -> TaskDetails:
        now = self.clock()
        try:
            record = self._get(task_id)
        except UnknownTaskError as e:
            return TaskDetails(success=False, error=e.to_info())

        if record.started_at is None:
            processing = 0.0
            waiting = (now - record.created_at).total_seconds()
        else:
            processing = ((record.completed_at or now) - record.started_at).total_seconds()
            waiting = (record.started_at - record.created_at).total_seconds()
        return TaskDetails(
            success=True,
            task=record.model_copy(deep=True),
            processing_seconds=processing,
            waiting_seconds=waiting,
        )

    # ── Internal ──────────────────────────────────────────────────

    def _get(self, task_id: str) -> TaskRecord:
        record = self._records.get(task_id)
        if record is None:
            raise UnknownTaskError(f"Task not found: {task_id}", task_id=task_id)
        return record

    def _move(self, previous: TaskStatus, new: TaskStatus) -> None:
        if previous is not new:
            self._counts[previous] -= 1
            self._counts[new] += 1

    @staticmethod
    def _apply(record: TaskRecord, status: TaskStatus, data: dict[str, Any], now: datetime) -> None:
        record.status = status
        record.last_updated = now
        if status is TaskStatus.IN_PROGRESS:
            record.started_at = record.started_at or now
            record.attempts += 1
        elif status is TaskStatus.COMPLETED:
            record.completed_at = now
            record.result = data.get("result")
        elif status is TaskStatus.FAILED:
            record.completed_at = now
            error = data.get("error")
            record.error = str(error) if error is not None else None
        elif status is TaskStatus.SKIPPED:
            record.completed_at = now
            record.error = str(data.get("reason") or "Skipped")

        if data.get("metadata"):
            record.metadata = {**record.metadata, **data["metadata"]}

    def _fold_duration(self, seconds: float) -> None:
        self._completed_runs += 1
        self._average_duration += (seconds - self._average_duration) / self._completed_runs

    def _unfold_duration(self, seconds: float) -> None:
        if self._completed_runs <= 1:
            self._completed_runs = 0
            self._average_duration = 0.0
            return
        total = self._average_duration * self._completed_runs - seconds
        self._completed_runs -= 1
        self._average_duration = total / self._completed_runs

    def _predict(self, now: datetime) -> Optional[CompletionPrediction]:
        completed = self._counts[TaskStatus.COMPLETED]
        if completed == 0:
            return None
        remaining = self._counts[TaskStatus.PENDING] + self._counts[TaskStatus.IN_PROGRESS]
        remaining_seconds = remaining * self._average_duration
        return CompletionPrediction(
            remaining_tasks=remaining,
            estimated_remaining_seconds=round(remaining_seconds, 3),
            estimated_completion_at=now + timedelta(seconds=remaining_seconds),
            confidence=min(completed / self.total, PREDICTION_CONFIDENCE_CAP),
        )

    def _trends(self) -> TrendAnalysis:
        if len(self._history) < TREND_MIN_HISTORY:
            return TrendAnalysis(message="Not enough history to analyze trends")

        recent = list(self._history)[-TREND_WINDOW:]
        finished = [h for h in recent if h.new_status.is_terminal]
        completion_rate = _rate(sum(1 for h in finished if h.new_status is TaskStatus.COMPLETED), len(finished))
        failure_rate = _rate(sum(1 for h in finished if h.new_status is TaskStatus.FAILED), len(finished))

        if completion_rate > 0.8:
            trend = "positive"
        elif completion_rate > 0.6:
            trend = "stable"
        else:
            trend = "concerning"

        recommendations = []
        if failure_rate > 0.2:
            recommendations.append("High failure rate; review task configuration and error handling")
        if completion_rate < 0.6:
            recommendations.append("Low completion rate; review the task processing flow")
        if self._average_duration > SLOW_TASK_SECONDS:
            recommendations.append("Long average processing time; split tasks further or run them in parallel")
        if not recommendations:
            recommendations.append("Task execution is healthy")

        return TrendAnalysis(
            sufficient_data=True,
            recent_completion_rate=completion_rate,
            recent_failure_rate=failure_rate,
            trend=trend,
            recommendations=recommendations,
        )
