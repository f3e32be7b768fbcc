"""
Error taxonomy shared by the estimator, chunker, builder and tracker.

Recoverable conditions are converted into ``ErrorInfo`` entries on result
objects; only ``ConfigurationError`` is raised out of a constructor.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    ESTIMATION_ERROR = "ESTIMATION_ERROR"
    CHUNK_PLANNING_ERROR = "CHUNK_PLANNING_ERROR"
    INVALID_BATCH_CONFIG = "INVALID_BATCH_CONFIG"
    UNKNOWN_TASK = "UNKNOWN_TASK"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_STATUS = "INVALID_STATUS"
    ACCESS_ERROR = "ACCESS_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    BUILD_ERROR = "BUILD_ERROR"


class ErrorInfo(BaseModel):
    """Serializable error description attached to results."""
    code: ErrorCode
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class TokenBatchError(Exception):
    """Base exception for tokenbatch errors."""

    code: ErrorCode = ErrorCode.BUILD_ERROR

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_info(self) -> ErrorInfo:
        return ErrorInfo(code=self.code, message=self.message, details=self.details)


class EstimationError(TokenBatchError):
    """Content could not be estimated (absent or unreadable)."""

    code = ErrorCode.ESTIMATION_ERROR


class ChunkPlanningError(TokenBatchError):
    """Structural outline is malformed for the given content."""

    code = ErrorCode.CHUNK_PLANNING_ERROR


class InvalidBatchConfig(TokenBatchError):
    """Batch group contradicts itself (e.g. file count vs. file list)."""

    code = ErrorCode.INVALID_BATCH_CONFIG


class UnknownTaskError(TokenBatchError):
    """Status update for an id the tracker never registered."""

    code = ErrorCode.UNKNOWN_TASK


class InvalidTransitionError(TokenBatchError):
    """Status change not allowed by the task state machine."""

    code = ErrorCode.INVALID_TRANSITION


class AccessError(TokenBatchError):
    """I/O failure surfaced by a content-access collaborator."""

    code = ErrorCode.ACCESS_ERROR


class ConfigurationError(TokenBatchError):
    """Invalid component configuration."""

    code = ErrorCode.CONFIGURATION_ERROR


def error_info(code: ErrorCode, message: str, **details: Any) -> ErrorInfo:
    return ErrorInfo(code=code, message=message, details=details)


def describe(exc: BaseException, default: ErrorCode = ErrorCode.BUILD_ERROR) -> ErrorInfo:
    """Render any exception as an ``ErrorInfo``."""
    if isinstance(exc, TokenBatchError):
        return exc.to_info()
    return ErrorInfo(
        code=default,
        message=str(exc) or exc.__class__.__name__,
        details={"exception": exc.__class__.__name__},
    )

