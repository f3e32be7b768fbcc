import asyncio
import json

import structlog

from tokenbatch.config import Settings
from tokenbatch.errors import ErrorCode
from tokenbatch.models.task import (
    BatchFile,
    BatchGroup,
    BatchKind,
    ChunkMeta,
    ProjectContext,
    TaskStatus,
)
from tokenbatch.models.token import FileInput
from tokenbatch.services.batcher import BatchGrouper
from tokenbatch.services.task_builder import TaskDefinitionBuilder, estimate_duration
from tokenbatch.utils.logger import get_run_id, run_id_ctx, setup_logging


def _single(path, tokens=1000, **extra):
    return BatchGroup(
        kind=BatchKind.SINGLE_FILE.value,
        estimated_tokens=tokens,
        files=[BatchFile(path=path, token_count=tokens)],
        file_count=1,
        **extra,
    )


def _chunk(path, index, total, tokens=4000, ordinal=None):
    return BatchGroup(
        kind=BatchKind.LARGE_FILE_CHUNK.value,
        estimated_tokens=tokens,
        files=[BatchFile(path=path, token_count=tokens * total)],
        file_count=1,
        chunk=ChunkMeta(
            chunk_index=index,
            total_chunks=total,
            estimated_tokens=tokens,
            parent_path=path,
            parent_tokens=tokens * total,
            parent_ordinal=ordinal,
        ),
    )


def _builder():
    return TaskDefinitionBuilder(Settings())


def test_task_ids_follow_position_and_parent_ordinal():
    groups = [
        _single("src/a.js"),
        _chunk("src/big.js", 1, 2),
        _chunk("src/big.js", 2, 2),
        _single("src/c.js"),
    ]
    result = _builder().build(groups)

    assert result.success
    by_sequence = sorted(result.tasks, key=lambda t: t.sequential_id)
    assert [t.task_id for t in by_sequence] == ["task_1", "task_2_1", "task_2_2", "task_4"]


def test_explicit_parent_ordinal_is_used_for_chunk_ids():
    result = _builder().build([_single("a.js"), _chunk("big.js", 1, 1, ordinal=7)])

    assert result.get("task_7_1") is not None


def test_duplicate_chunk_ids_are_kept_unique():
    groups = [_chunk("big.js", 1, 2, ordinal=1), _chunk("big.js", 1, 2, ordinal=1)]
    result = _builder().build(groups)

    ids = [t.task_id for t in result.tasks]
    assert len(set(ids)) == 2
    duplicate = result.get("task_2")
    assert duplicate is not None
    assert duplicate.status is TaskStatus.FAILED
    assert duplicate.build_error.code is ErrorCode.INVALID_BATCH_CONFIG


def test_inconsistent_file_count_yields_failed_task():
    group = BatchGroup(
        kind=BatchKind.COMBINED_FILES.value,
        estimated_tokens=500,
        files=[BatchFile(path="src/a.js", token_count=500)],
        file_count=2,
    )
    result = _builder().build([group])

    assert result.success
    assert len(result.tasks) == 1
    task = result.tasks[0]
    assert task.status is TaskStatus.FAILED
    assert task.build_error.code is ErrorCode.INVALID_BATCH_CONFIG
    assert result.summary.invalid_tasks == 1


def test_unparseable_group_becomes_error_recovery_task():
    raw = {"kind": "single_file", "estimated_tokens": -5, "files": [{"path": "src/x.js"}]}
    result = _builder().build([raw, _single("src/y.js")])

    assert result.success
    rejected = result.get("task_1")
    assert rejected.batch_kind is BatchKind.ERROR_RECOVERY
    assert rejected.status is TaskStatus.FAILED
    assert rejected.file_info.files[0].path == "src/x.js"
    assert rejected.build_error.details["errors"]


def test_plain_dict_groups_are_accepted():
    raw = {"kind": "single_file", "estimated_tokens": 100, "files": [{"path": "src/x.js", "token_count": 100}]}
    result = _builder().build([raw])

    assert result.tasks[0].task_id == "task_1"
    assert result.tasks[0].build_error is None


def test_unknown_kind_is_reported_and_treated_as_single_file():
    raw = {"kind": "mystery", "files": [{"path": "src/x.js"}]}
    result = _builder().build([raw])

    assert result.tasks[0].batch_kind is BatchKind.SINGLE_FILE
    assert any("mystery" in w for w in result.warnings)


def test_chunk_chain_is_linked_in_index_order():
    groups = [
        _chunk("src/big.js", 3, 3, ordinal=1),
        _chunk("src/big.js", 1, 3, ordinal=1),
        _chunk("src/big.js", 2, 3, ordinal=1),
    ]
    result = _builder().build(groups)

    first, second, third = (result.get(f"task_1_{i}") for i in (1, 2, 3))
    assert first.dependencies.predecessors == []
    assert first.dependencies.successors == ["task_1_2"]
    assert second.dependencies.predecessors == ["task_1_1"]
    assert third.dependencies.predecessors == ["task_1_2"]
    assert third.dependencies.successors == []


def test_related_tasks_share_a_directory():
    result = _builder().build([_single("src/a.js"), _single("lib/b.js"), _single("src/c.js")])

    assert result.get("task_1").dependencies.related == ["task_3"]
    assert result.get("task_2").dependencies.related == []


def test_equal_priorities_keep_input_order():
    groups = [_single("a/one.txt"), _single("src/index.js"), _single("b/two.txt")]
    result = _builder().build(groups)

    assert [t.task_id for t in result.tasks] == ["task_2", "task_1", "task_3"]
    assert [s.order for s in result.plan.processing_order] == [1, 2, 3]


def test_priority_optimization_can_be_disabled_per_call():
    groups = [_single("a/one.txt"), _single("src/index.js")]
    result = _builder().build(groups, config={"enable_priority_optimization": False})

    assert [t.task_id for t in result.tasks] == ["task_1", "task_2"]
    assert all(t.priority.calculated == t.priority.base for t in result.tasks)


def test_dependency_analysis_can_be_disabled_per_call():
    groups = [_chunk("big.js", 1, 2), _chunk("big.js", 2, 2)]
    result = _builder().build(groups, config={"enable_dependency_analysis": False})

    assert all(not t.dependencies.predecessors for t in result.tasks)


def test_out_of_range_override_fails_the_build():
    groups = [_single("a.js"), _single("b.js")]
    result = _builder().build(groups, config={"parallel_time_saving_ratio": 5.0})

    assert not result.success
    assert result.error.code is ErrorCode.CONFIGURATION_ERROR
    assert result.tasks == []


def test_misspelled_override_fails_the_build():
    result = _builder().build([_single("a.js")], config={"enable_priority_optimisation": False})

    assert not result.success
    assert result.error.code is ErrorCode.CONFIGURATION_ERROR
    assert "enable_priority_optimisation" in result.error.message


def test_override_breaking_chunk_size_order_fails_the_build():
    result = _builder().build([_single("a.js")], config={"target_chunk_tokens": 10})

    assert not result.success
    assert result.error.code is ErrorCode.CONFIGURATION_ERROR


def test_build_events_carry_the_run_id(capsys):
    setup_logging(debug=False)
    structlog.configure(cache_logger_on_first_use=False)
    try:
        before = get_run_id()
        result = _builder().build([_single("a.js")], run_id="plan-17")

        entries = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
        events = {e["event"]: e for e in entries}
        assert events["task_build_started"]["run_id"] == "plan-17"
        assert events["task_build_complete"]["run_id"] == "plan-17"
        assert result.metadata["run_id"] == "plan-17"
        assert get_run_id() == before
    finally:
        structlog.reset_defaults()


def test_run_id_is_generated_when_none_is_set():
    token = run_id_ctx.set("no-run")
    try:
        result = _builder().build([_single("a.js")])
    finally:
        run_id_ctx.reset(token)

    assert len(result.metadata["run_id"]) == 8


def test_grouping_run_id_flows_into_the_build():
    plan = asyncio.run(
        BatchGrouper(Settings(combine_small_files=False)).group(
            [FileInput(path="a.js", content="const a = 1;\n")], run_id="nightly"
        )
    )
    result = _builder().build(plan.groups, run_id=plan.run_id)

    assert plan.run_id == "nightly"
    assert result.metadata["run_id"] == "nightly"


def test_chunk_ordinal_may_share_a_number_with_a_group_position():
    # five groups precede the chunk, its parent was the fifth input file
    groups = [_single(f"src/f{i}.js") for i in range(5)] + [_chunk("src/big.js", 1, 1, ordinal=5)]
    result = _builder().build(groups)

    ids = [t.task_id for t in sorted(result.tasks, key=lambda t: t.sequential_id)]
    assert ids[4:] == ["task_5", "task_5_1"]
    assert len(set(ids)) == len(ids)


def test_execution_phases_and_parallel_groups():
    groups = [
        _single("a/x.js"),
        _single("b/y.js"),
        _chunk("c/big.js", 1, 2),
        _chunk("c/big.js", 2, 2),
        BatchGroup(
            kind=BatchKind.ERROR_RECOVERY.value,
            files=[BatchFile(path="d/broken.js")],
            file_count=1,
            reason="Content unavailable",
        ),
    ]
    result = _builder().build(groups)
    phases = result.plan.phases

    assert set(phases.immediate) == {"task_1", "task_2", "task_3_1"}
    assert phases.dependent == ["task_3_2"]
    assert phases.cleanup == ["task_5"]

    opportunities = result.plan.parallelization_opportunities
    level_zero = [g for g in opportunities if g.level == 0]
    assert len(level_zero) == 1
    assert "task_3_2" not in level_zero[0].task_ids
    members = [result.get(t) for t in level_zero[0].task_ids]
    expected_saving = round(sum(t.estimated_duration_seconds for t in members) * 0.3)
    assert level_zero[0].estimated_time_saving_seconds == expected_saving
    assert result.summary.parallelization_potential


def test_failed_tasks_are_not_offered_for_parallel_runs():
    bad = BatchGroup(
        kind=BatchKind.SINGLE_FILE.value,
        files=[BatchFile(path="src/a.js")],
        file_count=3,
    )
    result = _builder().build([bad, _single("src/b.js"), _single("src/c.js")])

    for group in result.plan.parallelization_opportunities:
        assert "task_1" not in group.task_ids


def test_duration_estimates():
    assert estimate_duration(BatchKind.SINGLE_FILE, 1000, 1) == 41
    assert estimate_duration(BatchKind.LARGE_FILE_CHUNK, 4000, 1) == 57
    assert estimate_duration(BatchKind.ERROR_RECOVERY, 0, 0) == 20

    result = _builder().build([_single("src/a.js", tokens=1000)])
    assert result.tasks[0].estimated_duration_seconds == 41


def test_summary_counts():
    groups = [_single("src/index.js"), _single("src/util.js"), _chunk("src/big.js", 1, 1)]
    result = _builder().build(groups)
    summary = result.summary

    assert summary.total_tasks == 3
    assert summary.by_kind == {"single_file": 2, "large_file_chunk": 1}
    assert sum(summary.by_priority.values()) == 3
    assert summary.total_files == 3
    assert summary.total_tokens == 6000
    assert summary.average_tokens_per_task == 2000
    assert summary.estimated_total_time_seconds == sum(t.estimated_duration_seconds for t in result.tasks)


def test_project_context_and_kind_metadata():
    context = ProjectContext(project_name="demo", primary_language="javascript", frameworks=["express"])
    result = _builder().build(
        [_single("src/server.js", metadata={"directory": "src"}), _chunk("src/big.js", 1, 1)],
        project_context=context,
    )

    single = result.get("task_1")
    assert single.metadata["project_context"] == {
        "project_name": "demo",
        "language": "javascript",
        "framework": "express",
    }
    assert single.metadata["batch_metadata"] == {"directory": "src"}
    assert single.metadata["single_file"]["file_name"] == "server.js"

    chunk = result.get("task_2_1")
    assert chunk.metadata["chunk"]["parent_path"] == "src/big.js"
    assert chunk.file_info.files[0].is_chunk


def test_custom_prefix_applies_to_all_ids():
    result = TaskDefinitionBuilder(Settings(task_id_prefix="job")).build(
        [_single("a.js"), _chunk("big.js", 1, 1)]
    )

    assert {t.task_id for t in result.tasks} == {"job_1", "job_2_1"}
