"""
TaskDefinitionBuilder - Turns batch groups into a prioritized task queue.

Pipeline:
1. Normalize and validate each batch group (invalid groups still yield a task)
2. Assign ids: task_<n> by position, task_<parentOrdinal>_<chunkIndex> for chunks
3. Link chunk chains and same-directory relations
4. Score priorities and stable-sort the queue
5. Derive phases, parallel groups and a run summary
"""

import posixpath
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from tokenbatch.config import Settings, settings as default_settings
from tokenbatch.errors import ConfigurationError, ErrorCode, ErrorInfo, InvalidBatchConfig, describe, error_info
from tokenbatch.models.task import (
    BatchGroup,
    BatchInfo,
    BatchKind,
    BuildResult,
    BuildSummary,
    ExecutionPhases,
    ExecutionPlan,
    FileInfo,
    ParallelGroup,
    ProcessingStep,
    ProjectContext,
    TaskDefinition,
    TaskFile,
    TaskPriority,
    TaskStatus,
)
from tokenbatch.services.priority import (
    BASE_PRIORITIES,
    PRIORITY_WEIGHTS,
    PriorityInputs,
    compute_priority,
    priority_band,
)
from tokenbatch.utils.logger import get_logger, run_context

logger = get_logger(__name__)


DURATION_MULTIPLIERS: dict[BatchKind, float] = {
    BatchKind.COMBINED_FILES: 1.2,
    BatchKind.SINGLE_FILE: 1.0,
    BatchKind.LARGE_FILE_CHUNK: 1.3,
    BatchKind.ERROR_RECOVERY: 0.5,
}

BatchGroupInput = Union[BatchGroup, Mapping[str, Any]]


def estimate_duration(kind: BatchKind, tokens: int, file_count: int) -> int:
    """Rough processing seconds for one task."""
    seconds = 30 + min(tokens / 1000, 60) + 10 * max(file_count, 1)
    return round(seconds * DURATION_MULTIPLIERS[kind])


def _directory(path: str) -> str:
    return posixpath.dirname(path.replace("\\", "/"))


def _append_unique(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)


class TaskDefinitionBuilder:
    """Builds task definitions and an execution plan from batch groups."""

    def __init__(self, config: Optional[Settings] = None):
        self.settings = config or default_settings
        self.weights = dict(PRIORITY_WEIGHTS)

    def build(
        self,
        batch_groups: Sequence[BatchGroupInput],
        project_context: Optional[ProjectContext] = None,
        config: Optional[Mapping[str, Any]] = None,
        run_id: Optional[str] = None,
    ) -> BuildResult:
        """
        Build the task queue for one run.

        Args:
            batch_groups: Groups in processing order (models or plain dicts)
            project_context: Project facts copied into task metadata
            config: Per-call overrides of builder settings
                (e.g. ``{"enable_dependency_analysis": False}``), validated
                like the settings themselves
            run_id: Id for this run's log events, usually ``BatchPlan.run_id``

        Returns:
            BuildResult; invalid groups become failed tasks and do not
            make the build fail, invalid overrides fail the whole build
        """
        with run_context(run_id) as rid:
            try:
                run_settings = self._run_settings(config)
                context = project_context or ProjectContext()
                warnings: list[str] = []

                logger.info("task_build_started", groups=len(batch_groups))

                tasks = self._create_tasks(batch_groups, context, run_settings, warnings)
                if run_settings.enable_dependency_analysis:
                    self._link_dependencies(tasks)
                if run_settings.enable_priority_optimization:
                    tasks = self._prioritize(tasks)
                else:
                    for task in tasks:
                        task.priority.calculated = task.priority.base

                plan = self._execution_plan(tasks, run_settings)
                summary = self._summary(tasks, plan)

                logger.info(
                    "task_build_complete",
                    tasks=len(tasks),
                    invalid=summary.invalid_tasks,
                    estimated_seconds=plan.estimated_total_time_seconds,
                )
                return BuildResult(
                    success=True,
                    tasks=tasks,
                    plan=plan,
                    summary=summary,
                    warnings=warnings,
                    metadata={
                        "total_tasks": len(tasks),
                        "generated_at": datetime.now(timezone.utc).isoformat(),
                        "project_path": context.project_path,
                        "builder_version": run_settings.app_version,
                        "run_id": rid,
                    },
                )
            except Exception as e:
                logger.error("task_build_failed", error=str(e))
                return BuildResult(
                    success=False,
                    metadata={"run_id": rid},
                    error=describe(e, ErrorCode.BUILD_ERROR),
                )

    def _run_settings(self, overrides: Optional[Mapping[str, Any]]) -> Settings:
        """Builder settings with per-call overrides applied and re-validated."""
        if not overrides:
            return self.settings
        unknown = sorted(set(overrides) - set(Settings.model_fields))
        if unknown:
            raise ConfigurationError(f"Unknown builder settings: {', '.join(unknown)}", keys=unknown)
        try:
            return Settings(**{**self.settings.model_dump(), **overrides})
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid builder settings: {e.errors()[0]['msg']}",
                keys=sorted(overrides),
                errors=e.error_count(),
            ) from e

    # ── Task creation ─────────────────────────────────────────────

    def _create_tasks(
        self,
        batch_groups: Sequence[BatchGroupInput],
        context: ProjectContext,
        run_settings: Settings,
        warnings: list[str],
    ) -> list[TaskDefinition]:
        prefix = run_settings.task_id_prefix
        tasks: list[TaskDefinition] = []
        used_ids: set[str] = set()
        first_chunk_ordinal: dict[str, int] = {}

        for position, raw in enumerate(batch_groups):
            sequential_id = position + 1

            try:
                group = raw if isinstance(raw, BatchGroup) else BatchGroup.model_validate(raw)
            except ValidationError as e:
                logger.warning("batch_group_rejected", position=sequential_id, errors=e.error_count())
                task = self._rejected_task(raw, sequential_id, prefix, e)
                used_ids.add(task.task_id)
                tasks.append(task)
                continue

            kind = self._resolve_kind(group, sequential_id, warnings)
            problem: Optional[ErrorInfo] = None
            try:
                self._validate(group, kind)
            except InvalidBatchConfig as e:
                problem = e.to_info()

            task_id = f"{prefix}_{sequential_id}"
            if kind is BatchKind.LARGE_FILE_CHUNK and group.chunk is not None:
                parent = self._parent_path(group)
                ordinal = group.chunk.parent_ordinal or first_chunk_ordinal.setdefault(parent, sequential_id)
                chunk_id = f"{prefix}_{ordinal}_{group.chunk.chunk_index}"
                if chunk_id in used_ids:
                    problem = problem or error_info(
                        ErrorCode.INVALID_BATCH_CONFIG,
                        f"Duplicate chunk id {chunk_id}",
                        position=sequential_id,
                    )
                else:
                    task_id = chunk_id

            task = self._task(group, kind, task_id, sequential_id, context)
            if problem is not None:
                task.status = TaskStatus.FAILED
                task.build_error = problem
                logger.warning("batch_group_invalid", task_id=task_id, error=problem.message)
            used_ids.add(task.task_id)
            tasks.append(task)

        return tasks

    @staticmethod
    def _resolve_kind(group: BatchGroup, sequential_id: int, warnings: list[str]) -> BatchKind:
        try:
            return BatchKind(group.kind)
        except ValueError:
            warnings.append(f"Unknown batch kind {group.kind!r} at position {sequential_id}; treated as single_file")
            logger.warning("batch_kind_unknown", kind=group.kind, position=sequential_id)
            return BatchKind.SINGLE_FILE

    @staticmethod
    def _validate(group: BatchGroup, kind: BatchKind) -> None:
        if group.file_count is not None and group.file_count != len(group.files):
            raise InvalidBatchConfig(
                f"Declared file_count {group.file_count} but {len(group.files)} files listed",
                declared=group.file_count,
                listed=len(group.files),
            )
        if kind is BatchKind.LARGE_FILE_CHUNK:
            if group.chunk is None:
                raise InvalidBatchConfig("Chunk group without chunk metadata")
            if group.chunk.chunk_index > group.chunk.total_chunks:
                raise InvalidBatchConfig(
                    f"Chunk index {group.chunk.chunk_index} exceeds total {group.chunk.total_chunks}",
                    chunk_index=group.chunk.chunk_index,
                )

    @staticmethod
    def _parent_path(group: BatchGroup) -> str:
        if group.chunk is not None and group.chunk.parent_path:
            return group.chunk.parent_path
        return group.files[0].path if group.files else ""

    def _task(
        self,
        group: BatchGroup,
        kind: BatchKind,
        task_id: str,
        sequential_id: int,
        context: ProjectContext,
    ) -> TaskDefinition:
        files = self._task_files(group, kind)
        file_info = FileInfo(files=files, total_files=len(files))
        return TaskDefinition(
            task_id=task_id,
            sequential_id=sequential_id,
            batch_kind=kind,
            batch_info=BatchInfo(
                batch_id=group.batch_id,
                kind=kind.value,
                estimated_tokens=group.estimated_tokens,
                file_count=group.declared_file_count,
                reason=group.reason,
            ),
            file_info=file_info,
            priority=TaskPriority(base=BASE_PRIORITIES[kind]),
            estimated_duration_seconds=estimate_duration(kind, group.estimated_tokens, len(files)),
            metadata=self._task_metadata(group, kind, context),
        )

    def _task_files(self, group: BatchGroup, kind: BatchKind) -> list[TaskFile]:
        if kind is BatchKind.LARGE_FILE_CHUNK and group.chunk is not None:
            chunk = group.chunk
            return [
                TaskFile(
                    path=self._parent_path(group),
                    token_count=chunk.estimated_tokens or group.estimated_tokens,
                    importance=group.files[0].importance if group.files else 0.0,
                    complexity=group.files[0].complexity if group.files else 0.0,
                    is_chunk=True,
                    chunk_index=chunk.chunk_index,
                    total_chunks=chunk.total_chunks,
                    parent_tokens=chunk.parent_tokens,
                )
            ]
        if kind is BatchKind.ERROR_RECOVERY:
            return [
                TaskFile(path=f.path, token_count=0, has_error=True, error_reason=group.reason)
                for f in group.files
            ]
        return [
            TaskFile(
                path=f.path,
                token_count=f.token_count,
                importance=f.importance,
                complexity=f.complexity,
            )
            for f in group.files
        ]

    @staticmethod
    def _task_metadata(group: BatchGroup, kind: BatchKind, context: ProjectContext) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "batch_metadata": dict(group.metadata),
            "project_context": {
                "project_name": context.project_name,
                "language": context.primary_language,
                "framework": context.frameworks[0] if context.frameworks else "unknown",
            },
        }

        if kind is BatchKind.COMBINED_FILES:
            paths = [f.path for f in group.files]
            metadata["combined_files"] = {
                "directories": sorted({_directory(p) for p in paths}),
                "extensions": sorted({posixpath.splitext(p)[1] for p in paths if posixpath.splitext(p)[1]}),
                "avg_tokens_per_file": round(group.estimated_tokens / len(paths)) if paths else 0,
            }
        elif kind is BatchKind.SINGLE_FILE and group.files:
            only = group.files[0]
            metadata["single_file"] = {
                "file_name": posixpath.basename(only.path),
                "directory": _directory(only.path),
                "language": only.language or "unknown",
                "is_entry_point": only.is_entry_point,
            }
        elif kind is BatchKind.LARGE_FILE_CHUNK and group.chunk is not None:
            metadata["chunk"] = group.chunk.model_dump(exclude_none=True)

        return metadata

    def _rejected_task(
        self,
        raw: Any,
        sequential_id: int,
        prefix: str,
        error: ValidationError,
    ) -> TaskDefinition:
        """A failed error_recovery task standing in for an unparseable group."""
        path = None
        if isinstance(raw, Mapping):
            listed = raw.get("files")
            if isinstance(listed, list) and listed and isinstance(listed[0], Mapping):
                path = listed[0].get("path")
        files = [TaskFile(path=str(path), has_error=True, error_reason="invalid batch group")] if path else []
        kind = BatchKind.ERROR_RECOVERY
        return TaskDefinition(
            task_id=f"{prefix}_{sequential_id}",
            sequential_id=sequential_id,
            batch_kind=kind,
            batch_info=BatchInfo(kind=kind.value, file_count=len(files), reason="invalid batch group"),
            file_info=FileInfo(files=files, total_files=len(files)),
            priority=TaskPriority(base=BASE_PRIORITIES[kind]),
            estimated_duration_seconds=estimate_duration(kind, 0, len(files)),
            status=TaskStatus.FAILED,
            build_error=error_info(
                ErrorCode.INVALID_BATCH_CONFIG,
                "Batch group failed validation",
                errors=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in error.errors()],
            ),
        )

    # ── Dependencies ──────────────────────────────────────────────

    @staticmethod
    def _link_dependencies(tasks: list[TaskDefinition]) -> None:
        chains: dict[str, list[TaskDefinition]] = {}
        for task in tasks:
            if task.batch_kind is BatchKind.LARGE_FILE_CHUNK and task.file_info.files:
                chains.setdefault(task.file_info.files[0].path, []).append(task)

        for chain in chains.values():
            chain.sort(key=lambda t: t.file_info.files[0].chunk_index or 0)
            for previous, current in zip(chain, chain[1:]):
                _append_unique(current.dependencies.predecessors, previous.task_id)
                _append_unique(previous.dependencies.successors, current.task_id)

        by_directory: dict[str, list[str]] = {}
        for task in tasks:
            for directory in {_directory(f.path) for f in task.file_info.files}:
                by_directory.setdefault(directory, []).append(task.task_id)

        order = {task.task_id: position for position, task in enumerate(tasks)}
        for task in tasks:
            related: set[str] = set()
            for directory in {_directory(f.path) for f in task.file_info.files}:
                related.update(by_directory[directory])
            related.discard(task.task_id)
            task.dependencies.related = sorted(related, key=order.__getitem__)

    # ── Priority ──────────────────────────────────────────────────

    def _prioritize(self, tasks: list[TaskDefinition]) -> list[TaskDefinition]:
        for task in tasks:
            files = task.file_info.files
            first = files[0] if files else None
            single = task.metadata.get("single_file", {})
            inputs = PriorityInputs(
                batch_kind=task.batch_kind,
                paths=[f.path for f in files],
                importances=[f.importance for f in files],
                complexities=[f.complexity for f in files],
                total_files=task.file_info.total_files,
                estimated_tokens=task.batch_info.estimated_tokens,
                predecessors=len(task.dependencies.predecessors),
                successors=len(task.dependencies.successors),
                related=len(task.dependencies.related),
                chunk_index=first.chunk_index if first else None,
                total_chunks=first.total_chunks if first else None,
                is_entry_point=bool(single.get("is_entry_point")),
            )
            task.priority = compute_priority(inputs, self.weights)

        # sorted() is stable: equal priorities keep input order
        return sorted(tasks, key=lambda t: -t.priority.calculated)

    # ── Plan & summary ────────────────────────────────────────────

    @staticmethod
    def _chain_depths(tasks: list[TaskDefinition]) -> dict[str, int]:
        """Longest predecessor chain above each task (0 for roots)."""
        known = {task.task_id for task in tasks}
        predecessors = {
            task.task_id: [p for p in task.dependencies.predecessors if p in known] for task in tasks
        }

        depths: dict[str, int] = {}
        for task in tasks:
            stack = [task.task_id]
            while stack:
                current = stack[-1]
                if current in depths:
                    stack.pop()
                    continue
                waiting = [p for p in predecessors[current] if p not in depths]
                if waiting:
                    stack.extend(waiting)
                    continue
                depths[current] = 1 + max((depths[p] for p in predecessors[current]), default=-1)
                stack.pop()
        return depths

    def _execution_plan(self, tasks: list[TaskDefinition], run_settings: Settings) -> ExecutionPlan:
        phases = ExecutionPhases()
        for task in tasks:
            if task.batch_kind is BatchKind.ERROR_RECOVERY:
                phases.cleanup.append(task.task_id)
            elif task.dependencies.predecessors:
                phases.dependent.append(task.task_id)
            else:
                phases.immediate.append(task.task_id)

        runnable = [task for task in tasks if task.build_error is None]
        depths = self._chain_depths(runnable)
        levels: dict[int, list[TaskDefinition]] = {}
        for task in runnable:
            levels.setdefault(depths[task.task_id], []).append(task)

        opportunities = [
            ParallelGroup(
                level=level,
                task_ids=[t.task_id for t in members],
                estimated_time_saving_seconds=round(
                    sum(t.estimated_duration_seconds for t in members) * run_settings.parallel_time_saving_ratio
                ),
            )
            for level, members in sorted(levels.items())
            if len(members) > 1
        ]

        return ExecutionPlan(
            total_tasks=len(tasks),
            estimated_total_time_seconds=sum(t.estimated_duration_seconds for t in tasks),
            phases=phases,
            processing_order=[
                ProcessingStep(
                    task_id=task.task_id,
                    order=position + 1,
                    estimated_duration_seconds=task.estimated_duration_seconds,
                    priority=task.priority.calculated,
                )
                for position, task in enumerate(tasks)
            ],
            parallelization_opportunities=opportunities,
        )

    @staticmethod
    def _summary(tasks: list[TaskDefinition], plan: ExecutionPlan) -> BuildSummary:
        summary = BuildSummary(total_tasks=len(tasks))
        for task in tasks:
            kind = task.batch_kind.value
            summary.by_kind[kind] = summary.by_kind.get(kind, 0) + 1
            summary.by_priority[priority_band(task.priority.calculated)] += 1
            if task.build_error is not None:
                summary.invalid_tasks += 1

        total_tokens = sum(t.batch_info.estimated_tokens for t in tasks)
        summary.estimated_total_time_seconds = plan.estimated_total_time_seconds
        summary.average_task_time_seconds = round(plan.estimated_total_time_seconds / len(tasks)) if tasks else 0
        summary.parallelization_potential = bool(plan.parallelization_opportunities)
        summary.total_files = sum(t.file_info.total_files for t in tasks)
        summary.total_tokens = total_tokens
        summary.average_tokens_per_task = round(total_tokens / len(tasks)) if tasks else 0
        return summary
