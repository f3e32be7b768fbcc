"""
Task definition and execution plan models.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from tokenbatch.errors import ErrorInfo
from tokenbatch.models.chunk import ChunkPlan
from tokenbatch.models.token import TokenEstimate


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BatchKind(str, Enum):
    COMBINED_FILES = "combined_files"
    SINGLE_FILE = "single_file"
    LARGE_FILE_CHUNK = "large_file_chunk"
    ERROR_RECOVERY = "error_recovery"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.SKIPPED)


# ── Batch input ───────────────────────────────────────────────────


class BatchFile(BaseModel):
    """A file as listed inside a batch group."""
    path: str
    token_count: int = Field(default=0, ge=0)
    importance: float = 0.0
    complexity: float = 0.0
    language: Optional[str] = None
    is_entry_point: bool = False


class ChunkMeta(BaseModel):
    """Where a large-file chunk sits inside its parent file."""
    chunk_index: int = Field(..., ge=1)
    total_chunks: int = Field(..., ge=1)
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    estimated_tokens: int = Field(default=0, ge=0)
    parent_path: Optional[str] = None
    parent_tokens: int = Field(default=0, ge=0)
    parent_ordinal: Optional[int] = Field(
        default=None,
        ge=1,
        description=(
            "1-indexed position of the parent file in the input file list. "
            "Ordinary task ids count groups instead, so after small files are "
            "combined a chunk id such as task_5_1 can share its leading number "
            "with an unrelated single-file task_5; ids stay unique and order "
            "by sequential_id, not by id text."
        ),
    )


class BatchGroup(BaseModel):
    """
    One unit of work produced by batch grouping.

    ``kind`` is kept as a plain string so unknown kinds reach the
    builder and can be reported instead of failing validation.
    """
    kind: str = BatchKind.SINGLE_FILE.value
    batch_id: Optional[str] = None
    estimated_tokens: int = Field(default=0, ge=0)
    files: list[BatchFile] = Field(default_factory=list)
    file_count: Optional[int] = Field(default=None, ge=0)
    chunk: Optional[ChunkMeta] = None
    reason: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def declared_file_count(self) -> int:
        return self.file_count if self.file_count is not None else len(self.files)


class ProjectContext(BaseModel):
    """Project-level facts copied into every task's metadata."""
    project_name: str = ""
    primary_language: str = "unknown"
    frameworks: list[str] = Field(default_factory=list)
    project_path: str = ""


# ── Task definition ───────────────────────────────────────────────


class TaskFile(BaseModel):
    path: str
    token_count: int = 0
    importance: float = 0.0
    complexity: float = 0.0
    is_chunk: bool = False
    chunk_index: Optional[int] = None
    total_chunks: Optional[int] = None
    parent_tokens: Optional[int] = None
    has_error: bool = False
    error_reason: Optional[str] = None


class FileInfo(BaseModel):
    files: list[TaskFile] = Field(default_factory=list)
    total_files: int = 0


class BatchInfo(BaseModel):
    batch_id: Optional[str] = None
    kind: str
    estimated_tokens: int = 0
    file_count: int = 0
    reason: Optional[str] = None


class TaskPriority(BaseModel):
    base: float = 0.0
    calculated: float = 0.0
    factors: dict[str, float] = Field(default_factory=dict)


class TaskDependencies(BaseModel):
    """Ordered, de-duplicated task id lists."""
    predecessors: list[str] = Field(default_factory=list)
    successors: list[str] = Field(default_factory=list)
    related: list[str] = Field(default_factory=list)


class TaskDefinition(BaseModel):
    """A schedulable unit of work with id, priority and dependencies."""
    task_id: str
    sequential_id: int = Field(..., ge=1)
    batch_kind: BatchKind
    batch_info: BatchInfo
    file_info: FileInfo = Field(default_factory=FileInfo)
    priority: TaskPriority = Field(default_factory=TaskPriority)
    dependencies: TaskDependencies = Field(default_factory=TaskDependencies)
    estimated_duration_seconds: int = Field(default=0, ge=0)
    status: TaskStatus = TaskStatus.PENDING
    build_error: Optional[ErrorInfo] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def file_count(self) -> int:
        return self.file_info.total_files

    @property
    def token_count(self) -> int:
        return self.batch_info.estimated_tokens


# ── Execution plan ────────────────────────────────────────────────


class ParallelGroup(BaseModel):
    """Tasks at the same dependency depth; none waits on another."""
    level: int = Field(..., ge=0)
    task_ids: list[str] = Field(default_factory=list)
    estimated_time_saving_seconds: int = 0


class ProcessingStep(BaseModel):
    task_id: str
    order: int
    estimated_duration_seconds: int = 0
    priority: float = 0.0


class ExecutionPhases(BaseModel):
    immediate: list[str] = Field(default_factory=list)
    dependent: list[str] = Field(default_factory=list)
    cleanup: list[str] = Field(default_factory=list)


class ExecutionPlan(BaseModel):
    total_tasks: int = 0
    estimated_total_time_seconds: int = 0
    phases: ExecutionPhases = Field(default_factory=ExecutionPhases)
    processing_order: list[ProcessingStep] = Field(default_factory=list)
    parallelization_opportunities: list[ParallelGroup] = Field(default_factory=list)


class BuildSummary(BaseModel):
    total_tasks: int = 0
    by_kind: dict[str, int] = Field(default_factory=dict)
    by_priority: dict[str, int] = Field(default_factory=lambda: {"high": 0, "medium": 0, "low": 0})
    invalid_tasks: int = 0
    estimated_total_time_seconds: int = 0
    average_task_time_seconds: int = 0
    parallelization_potential: bool = False
    total_files: int = 0
    total_tokens: int = 0
    average_tokens_per_task: int = 0


class BuildResult(BaseModel):
    success: bool = True
    tasks: list[TaskDefinition] = Field(default_factory=list)
    plan: Optional[ExecutionPlan] = None
    summary: Optional[BuildSummary] = None
    warnings: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    error: Optional[ErrorInfo] = None

    def get(self, task_id: str) -> Optional[TaskDefinition]:
        return next((t for t in self.tasks if t.task_id == task_id), None)


class BatchPlan(BaseModel):
    """Batch groups for one run plus the estimates and chunk plans behind them."""
    groups: list[BatchGroup] = Field(default_factory=list)
    estimates: list[TokenEstimate] = Field(default_factory=list)
    chunk_plans: dict[str, ChunkPlan] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    run_id: Optional[str] = None

    def count(self, kind: BatchKind) -> int:
        return sum(1 for g in self.groups if g.kind == kind.value)
