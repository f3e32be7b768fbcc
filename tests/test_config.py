import pytest
from pydantic import ValidationError

from tokenbatch.config import Settings


def test_defaults_match_documented_values():
    s = Settings()

    assert s.target_chunk_tokens == 18000
    assert s.min_chunk_tokens == 1000
    assert s.max_chunk_tokens == 22000
    assert s.chunk_overlap_lines == 3
    assert s.blend_ratio == 0.7
    assert s.cache_max_entries == 1000
    assert s.task_id_prefix == "task"
    assert s.model_token_limits["default"] == 100000


def test_environment_overrides_use_prefix(monkeypatch):
    monkeypatch.setenv("TOKENBATCH_TARGET_CHUNK_TOKENS", "9000")
    monkeypatch.setenv("TOKENBATCH_COMBINE_SMALL_FILES", "false")

    s = Settings()

    assert s.target_chunk_tokens == 9000
    assert s.combine_small_files is False


@pytest.mark.parametrize(
    "overrides",
    [
        {"min_chunk_tokens": 5000, "target_chunk_tokens": 4000},
        {"target_chunk_tokens": 30000},
        {"blend_ratio": 1.5},
        {"chunk_overlap_lines": -1},
        {"cache_max_entries": 0},
    ],
)
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_blank_task_prefix_falls_back():
    assert Settings(task_id_prefix="   ").task_id_prefix == "task"
    assert Settings(task_id_prefix=" job ").task_id_prefix == "job"
