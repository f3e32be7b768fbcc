"""
Task priority scoring.

A task's calculated priority is its base priority (per batch kind) plus a
weighted sum of five factors. Everything here is a pure function of
``PriorityInputs`` so the scoring can be tested without building tasks.
"""

from typing import Mapping, Optional

from pydantic import BaseModel, Field

from tokenbatch.models.task import BatchKind, TaskPriority


BASE_PRIORITIES: dict[BatchKind, float] = {
    BatchKind.COMBINED_FILES: 5,
    BatchKind.SINGLE_FILE: 7,
    BatchKind.LARGE_FILE_CHUNK: 8,
    BatchKind.ERROR_RECOVERY: 7,
}

PRIORITY_WEIGHTS: dict[str, float] = {
    "file_importance": 0.3,
    "token_count": 0.2,
    "complexity": 0.2,
    "dependencies": 0.15,
    "urgency": 0.15,
}

# Path fragments that mark a file as more (or less) central to a project
IMPORTANCE_MARKERS: tuple[tuple[str, float], ...] = (
    ("index.", 5),
    ("main.", 4),
    ("app.", 4),
    ("server.", 3),
    ("config", 2),
    ("test", -2),
)

HIGH_PRIORITY = 8
MEDIUM_PRIORITY = 5


class PriorityInputs(BaseModel):
    """Everything the scoring looks at for one task."""
    batch_kind: BatchKind
    paths: list[str] = Field(default_factory=list)
    importances: list[float] = Field(default_factory=list)
    complexities: list[float] = Field(default_factory=list)
    total_files: int = 0
    estimated_tokens: int = 0
    predecessors: int = 0
    successors: int = 0
    related: int = 0
    chunk_index: Optional[int] = None
    total_chunks: Optional[int] = None
    is_entry_point: bool = False


def file_importance_factor(inputs: PriorityInputs) -> float:
    importance = 0.0
    for position, path in enumerate(inputs.paths):
        lowered = path.lower()
        for marker, score in IMPORTANCE_MARKERS:
            if marker in lowered:
                importance += score
        if position < len(inputs.importances) and inputs.importances[position]:
            importance += inputs.importances[position] / 10
    return min(importance, 10)


def token_count_factor(inputs: PriorityInputs) -> float:
    """Larger batches are deprioritized."""
    return -min(inputs.estimated_tokens / 10_000, 5)


def complexity_factor(inputs: PriorityInputs) -> float:
    complexity = 0.0
    if inputs.batch_kind is BatchKind.LARGE_FILE_CHUNK:
        complexity += 3
    elif inputs.batch_kind is BatchKind.COMBINED_FILES:
        complexity += min(inputs.total_files * 0.5, 3)
    complexity += sum(c / 20 for c in inputs.complexities if c)
    return min(complexity, 8)


def dependency_factor(inputs: PriorityInputs) -> float:
    factor = -0.5 * inputs.predecessors + 0.3 * inputs.successors
    factor += min(inputs.related * 0.2, 2)
    return max(factor, -3)


def urgency_factor(inputs: PriorityInputs) -> float:
    urgency = 0.0
    if inputs.batch_kind is BatchKind.ERROR_RECOVERY:
        urgency -= 2
    if (
        inputs.batch_kind is BatchKind.LARGE_FILE_CHUNK
        and inputs.chunk_index == 1
        and (inputs.total_chunks or 1) > 1
    ):
        urgency += 2
    if inputs.is_entry_point:
        urgency += 1
    return urgency


FACTORS = {
    "file_importance": file_importance_factor,
    "token_count": token_count_factor,
    "complexity": complexity_factor,
    "dependencies": dependency_factor,
    "urgency": urgency_factor,
}


def compute_priority(
    inputs: PriorityInputs,
    weights: Optional[Mapping[str, float]] = None,
) -> TaskPriority:
    """Base priority plus weighted factors, rounded to one decimal."""
    weights = PRIORITY_WEIGHTS if weights is None else weights
    base = BASE_PRIORITIES[inputs.batch_kind]
    factors = {name: round(fn(inputs), 3) for name, fn in FACTORS.items()}
    total = base + sum(value * weights.get(name, 0.0) for name, value in factors.items())
    return TaskPriority(base=base, calculated=round(total, 1), factors=factors)


def priority_band(value: float) -> str:
    if value >= HIGH_PRIORITY:
        return "high"
    if value >= MEDIUM_PRIORITY:
        return "medium"
    return "low"
