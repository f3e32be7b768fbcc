"""
Progress tracking models.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from tokenbatch.errors import ErrorInfo
from tokenbatch.models.task import BatchKind, TaskStatus


class TaskRecord(BaseModel):
    """Live state of one tracked task."""
    task_id: str
    batch_kind: BatchKind
    status: TaskStatus = TaskStatus.PENDING
    priority: float = 0.0
    estimated_duration_seconds: int = 0
    file_count: int = 0
    token_count: int = 0
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    attempts: int = Field(default=0, ge=0)
    result: Any = None
    error: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class HistoryEntry(BaseModel):
    task_id: str
    previous_status: TaskStatus
    new_status: TaskStatus
    timestamp: datetime
    data: dict[str, Any] = Field(default_factory=dict)


class TrackingStarted(BaseModel):
    success: bool = True
    tracking_id: str
    total_tasks: int
    initial_stats: dict[str, int]
    started_at: datetime


class StatusUpdateResult(BaseModel):
    success: bool
    task_id: str
    previous_status: Optional[TaskStatus] = None
    new_status: Optional[TaskStatus] = None
    changed: bool = False
    progress_stats: dict[str, int] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None
    error: Optional[ErrorInfo] = None


class CompletionPrediction(BaseModel):
    remaining_tasks: int
    estimated_remaining_seconds: float
    estimated_completion_at: datetime
    confidence: float = Field(..., ge=0.0, le=0.95)


class OverallProgress(BaseModel):
    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    completion_rate: float = 0.0
    failure_rate: float = 0.0
    is_complete: bool = False
    elapsed_seconds: float = 0.0
    prediction: Optional[CompletionPrediction] = None


class TimingStats(BaseModel):
    average_seconds: float = 0.0
    min_seconds: float = 0.0
    max_seconds: float = 0.0
    total_elapsed_seconds: float = 0.0


class TrendAnalysis(BaseModel):
    sufficient_data: bool = False
    message: Optional[str] = None
    recent_completion_rate: Optional[float] = None
    recent_failure_rate: Optional[float] = None
    trend: Optional[str] = None
    recommendations: list[str] = Field(default_factory=list)


class PerformanceReport(BaseModel):
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    success_rate: float = 0.0
    failure_rate: float = 0.0
    timing: TimingStats = Field(default_factory=TimingStats)
    by_kind: dict[str, dict[str, int]] = Field(default_factory=dict)
    by_status: dict[str, int] = Field(default_factory=dict)
    by_priority: dict[str, dict[str, int]] = Field(default_factory=dict)
    trends: TrendAnalysis = Field(default_factory=TrendAnalysis)


class QueueEntry(BaseModel):
    task_id: str
    batch_kind: BatchKind
    priority: float = 0.0
    estimated_duration_seconds: int = 0
    started_at: Optional[datetime] = None
    elapsed_seconds: Optional[float] = None


class QueueStatus(BaseModel):
    pending: list[QueueEntry] = Field(default_factory=list)
    in_progress: list[QueueEntry] = Field(default_factory=list)
    completed: int = 0
    failed: int = 0
    skipped: int = 0


class TaskDetails(BaseModel):
    success: bool
    task: Optional[TaskRecord] = None
    processing_seconds: float = 0.0
    waiting_seconds: float = 0.0
    error: Optional[ErrorInfo] = None
