"""
Chunk planning models.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from tokenbatch.errors import ErrorInfo


class BoundaryKind(str, Enum):
    FUNCTION = "function"
    CLASS = "class"
    INTERFACE = "interface"
    TYPE = "type"
    MODULE = "module"
    COMMENT = "comment"
    OTHER = "other"


class ChunkKind(str, Enum):
    FUNCTION_FOCUSED = "function-focused"
    CLASS_FOCUSED = "class-focused"
    MODULE_FOCUSED = "module-focused"
    MIXED = "mixed"
    REMAINDER = "remainder"
    FALLBACK = "fallback"


class ChunkStrategy(str, Enum):
    BOUNDARY_AWARE = "boundary-aware"
    SIMPLE_SPLIT = "simple-split"


class BoundaryCandidate(BaseModel):
    """A line where a cut would not break a syntactic unit."""
    line_number: int = Field(..., ge=1)
    kind: BoundaryKind = BoundaryKind.OTHER
    indent_level: int = Field(default=0, ge=0)
    priority: int = 0
    source: str = "pattern"


class OutlineSymbol(BaseModel):
    """One function/class location supplied by an external parser."""
    name: str = ""
    kind: BoundaryKind = BoundaryKind.FUNCTION
    start_line: int
    end_line: Optional[int] = None


class StructuralOutline(BaseModel):
    """Precise structure for a file, produced outside this package."""
    language: Optional[str] = None
    symbols: list[OutlineSymbol] = Field(default_factory=list)


class Chunk(BaseModel):
    """A contiguous, token-bounded slice of one file."""
    index: int = Field(..., ge=1)
    start_line: int = Field(..., ge=1)
    end_line: int = Field(..., ge=1)
    estimated_tokens: int = Field(default=0, ge=0)
    content: str = Field(default="", description="Source lines start_line..end_line")
    included_context_lines: list[str] = Field(default_factory=list)
    overlap_lines: int = Field(default=0, ge=0, description="Leading lines repeated from the previous chunk")
    kind: ChunkKind = ChunkKind.MIXED
    boundaries: list[BoundaryCandidate] = Field(default_factory=list)
    oversized: bool = False

    @model_validator(mode="after")
    def _check_range(self) -> "Chunk":
        if self.start_line > self.end_line:
            raise ValueError("start_line must be <= end_line")
        return self

    @property
    def line_range(self) -> str:
        """Human-readable line range."""
        return f"L{self.start_line}-L{self.end_line}"

    def render(self) -> str:
        """Content as handed to the model: context lines, then the chunk."""
        if not self.included_context_lines:
            return self.content
        return "\n".join([*self.included_context_lines, "", self.content])


class ChunkPlan(BaseModel):
    """Ordered chunks for one file plus how they were produced."""
    path: str
    language: str = "default"
    strategy: ChunkStrategy = ChunkStrategy.BOUNDARY_AWARE
    chunks: list[Chunk] = Field(default_factory=list)
    imports: list[str] = Field(default_factory=list)
    total_lines: int = 0
    total_tokens: int = 0
    candidate_count: int = 0
    warnings: list[str] = Field(default_factory=list)
    success: bool = True
    error: Optional[ErrorInfo] = None

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)

    @property
    def avg_chunk_tokens(self) -> int:
        if not self.chunks:
            return 0
        return round(sum(c.estimated_tokens for c in self.chunks) / len(self.chunks))

    def reconstruct(self) -> str:
        """Rebuild the source text, dropping overlap and duplicated imports."""
        lines: list[str] = []
        for chunk in self.chunks:
            chunk_lines = chunk.content.split("\n")
            lines.extend(chunk_lines[chunk.overlap_lines:])
        return "\n".join(lines)
