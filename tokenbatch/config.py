"""
Configuration settings for tokenbatch.
Loads from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator, model_validator
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv


def _resolve_project_root() -> Path:
    """Resolve repo root for local and installed layouts."""
    return Path(__file__).resolve().parents[1]


PROJECT_ROOT = _resolve_project_root()

# Explicitly load .env from project root
env_path = PROJECT_ROOT / ".env"
load_dotenv(env_path)


class Settings(BaseSettings):
    """Planner settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=env_path,
        env_file_encoding="utf-8",
        env_prefix="TOKENBATCH_",
        case_sensitive=False,
        extra="ignore"
    )

    app_name: str = "tokenbatch"
    app_version: str = "0.1.0"
    debug: bool = False

    # Chunking
    target_chunk_tokens: int = 18000
    min_chunk_tokens: int = 1000
    max_chunk_tokens: int = 22000
    chunk_overlap_lines: int = 3
    preserve_imports: bool = True

    # Token estimation
    cache_enabled: bool = True
    cache_max_entries: int = 1000
    token_safety_buffer: float = 0.1
    blend_ratio: float = 0.7
    estimate_batch_size: int = 10
    # Per-language overrides, merged over the built-in weight tables
    language_weights: dict[str, dict[str, float]] = Field(default_factory=dict)
    model_token_limits: dict[str, int] = Field(
        default_factory=lambda: {
            "gpt-4": 128000,
            "gpt-4-turbo": 128000,
            "gpt-3.5-turbo": 16000,
            "default": 100000,
        }
    )

    # Batch grouping
    small_file_tokens: int = 2000
    combine_small_files: bool = True
    combined_batch_tokens: int = 8000

    # Task building
    task_id_prefix: str = "task"
    enable_priority_optimization: bool = True
    enable_dependency_analysis: bool = True
    parallel_time_saving_ratio: float = 0.3

    # Progress tracking
    history_max_records: int = 1000

    @field_validator(
        "target_chunk_tokens",
        "min_chunk_tokens",
        "max_chunk_tokens",
        "cache_max_entries",
        "estimate_batch_size",
        "history_max_records",
        "small_file_tokens",
        "combined_batch_tokens",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("chunk_overlap_lines")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @field_validator("blend_ratio", "token_safety_buffer", "parallel_time_saving_ratio")
    @classmethod
    def _unit_interval(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("must be between 0 and 1")
        return value

    @field_validator("task_id_prefix", mode="before")
    @classmethod
    def _normalize_prefix(cls, value: Optional[str]) -> str:
        cleaned = str(value or "").strip()
        return cleaned or "task"

    @model_validator(mode="after")
    def _check_chunk_sizes(self) -> "Settings":
        if not self.min_chunk_tokens <= self.target_chunk_tokens <= self.max_chunk_tokens:
            raise ValueError(
                "chunk sizes must satisfy min_chunk_tokens <= target_chunk_tokens <= max_chunk_tokens"
            )
        return self


# Global settings instance
settings = Settings()
