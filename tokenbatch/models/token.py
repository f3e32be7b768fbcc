"""
Token estimation models.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from tokenbatch.errors import ErrorInfo


class Language(str, Enum):
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    PYTHON = "python"
    JAVA = "java"
    GO = "go"
    RUST = "rust"
    CSHARP = "csharp"
    JSON = "json"
    MARKDOWN = "markdown"
    YAML = "yaml"
    DEFAULT = "default"


class TokenBreakdown(BaseModel):
    """Character counts per category plus their weighted token sub-counts."""
    model_config = ConfigDict(frozen=True)

    total_chars: int = 0
    lines: int = 0
    comments: int = 0
    strings: int = 0
    keywords: int = 0
    symbols: int = 0
    identifiers: int = 0
    whitespace: int = 0
    tokens: dict[str, int] = Field(default_factory=dict)


class TokenEstimate(BaseModel):
    """Immutable token estimate for one file."""
    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="File path the estimate belongs to")
    total_tokens: int = Field(default=0, ge=0, description="Blended token estimate")
    estimated_tokens: int = Field(default=0, ge=0, description="Character-ratio estimate")
    safe_token_count: int = Field(default=0, ge=0, description="Total plus safety buffer")
    breakdown: TokenBreakdown = Field(default_factory=TokenBreakdown)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    language: Language = Language.DEFAULT
    source_size: int = Field(default=0, ge=0, description="Content length in characters")
    cache_key: str = ""
    from_cache: bool = False
    error: Optional[ErrorInfo] = None

    @property
    def success(self) -> bool:
        return self.error is None


class FileInput(BaseModel):
    """A file handed to the estimator or batch grouper."""
    path: str
    content: Optional[str] = None
    language_hint: Optional[str] = None
    importance: float = 0.0
    complexity: float = 0.0
    is_entry_point: bool = False
