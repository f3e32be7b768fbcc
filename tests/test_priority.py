import pytest

from tokenbatch.models.task import BatchKind
from tokenbatch.services.priority import (
    PriorityInputs,
    compute_priority,
    dependency_factor,
    file_importance_factor,
    priority_band,
    urgency_factor,
)


def test_entry_file_scores_above_base():
    inputs = PriorityInputs(
        batch_kind=BatchKind.SINGLE_FILE,
        paths=["src/index.js"],
        total_files=1,
        estimated_tokens=1000,
    )
    priority = compute_priority(inputs)

    assert priority.base == 7
    assert priority.factors["file_importance"] == 5
    assert priority.factors["token_count"] == pytest.approx(-0.1)
    assert priority.calculated == pytest.approx(8.5)


def test_error_recovery_is_deprioritized():
    inputs = PriorityInputs(batch_kind=BatchKind.ERROR_RECOVERY, paths=["lib/util.js"], total_files=1)

    assert compute_priority(inputs).calculated == pytest.approx(6.7)


def test_test_paths_lower_importance():
    inputs = PriorityInputs(batch_kind=BatchKind.SINGLE_FILE, paths=["tests/helpers.py"])

    assert file_importance_factor(inputs) == -2


def test_importance_is_capped():
    inputs = PriorityInputs(
        batch_kind=BatchKind.COMBINED_FILES,
        paths=["src/index.js", "src/main.js", "src/app.js"],
    )

    assert file_importance_factor(inputs) == 10


def test_dependency_factor_has_a_floor():
    inputs = PriorityInputs(batch_kind=BatchKind.LARGE_FILE_CHUNK, predecessors=10)

    assert dependency_factor(inputs) == -3


def test_related_tasks_add_a_bounded_bonus():
    inputs = PriorityInputs(batch_kind=BatchKind.SINGLE_FILE, related=50)

    assert dependency_factor(inputs) == 2


@pytest.mark.parametrize(
    "chunk_index,total_chunks,expected",
    [(1, 3, 2), (2, 3, 0), (1, 1, 0)],
)
def test_first_of_several_chunks_is_urgent(chunk_index, total_chunks, expected):
    inputs = PriorityInputs(
        batch_kind=BatchKind.LARGE_FILE_CHUNK,
        chunk_index=chunk_index,
        total_chunks=total_chunks,
    )

    assert urgency_factor(inputs) == expected


def test_custom_weights_replace_defaults():
    inputs = PriorityInputs(batch_kind=BatchKind.SINGLE_FILE, paths=["src/index.js"])

    assert compute_priority(inputs, weights={"file_importance": 1.0}).calculated == pytest.approx(12.0)


@pytest.mark.parametrize("value,band", [(8, "high"), (9.4, "high"), (5, "medium"), (4.9, "low")])
def test_priority_bands(value, band):
    assert priority_band(value) == band
