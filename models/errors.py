"""Pipeline failure taxonomy and the standardized API error envelope.

Pipeline failures carry the phase (the step name family) and, for Phase 2,
the index of the candidate whose extraction failed, so an operator can fix
the cause and resume the run from that candidate.

Error response format:
{
    "error": "ExtractionFailure",
    "message": "extract-decision-3 failed: ...",
    "details": {"phase": "extract-decision", "candidateIndex": 3},
    "timestamp": "2026-01-29T12:00:00Z",
    "path": "/api/workflows/abc/resume"
}
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class PipelinePhase(str, Enum):
    PARSE = "parse-content"
    TRANSCRIPT = "build-transcript"
    IDENTIFY = "identify-decisions"
    EXTRACT = "extract-decision"
    STORE = "store-results"


class PipelineError(Exception):
    """Base class for failures that halt an extraction run."""

    phase: PipelinePhase = PipelinePhase.PARSE

    def __init__(
        self,
        message: str,
        candidate_index: Optional[int] = None,
        cause: Optional[BaseException] = None,
        phase: Optional[PipelinePhase] = None,
    ):
        self.message = message
        if phase is not None:
            self.phase = phase
        self.candidate_index = candidate_index
        self.cause = cause
        super().__init__(message)

    def to_details(self) -> dict[str, Any]:
        details: dict[str, Any] = {"phase": self.phase.value}
        if self.candidate_index is not None:
            details["candidateIndex"] = self.candidate_index
        return details


class ParseFailure(PipelineError):
    """The conversation content could not be parsed at all."""

    phase = PipelinePhase.PARSE


class IdentificationFailure(PipelineError):
    """Phase 1 produced no schema-valid response within its retry budget."""

    phase = PipelinePhase.IDENTIFY


class ExtractionFailure(PipelineError):
    """Phase 2 failed for one candidate; nothing was committed."""

    phase = PipelinePhase.EXTRACT

    def __init__(
        self,
        message: str,
        candidate_index: int,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, candidate_index=candidate_index, cause=cause)


class StoreFailure(PipelineError):
    """The atomic commit failed; extraction results remain checkpointed."""

    phase = PipelinePhase.STORE


class ErrorResponse(BaseModel):
    """Standard error response schema for all API endpoints."""

    error: str = Field(
        ...,
        description="Error type/code (e.g., 'ValidationError', 'NotFound')",
        examples=["ExtractionFailure", "NotFound"],
    )
    message: str = Field(..., description="Human-readable error message")
    details: Optional[dict[str, Any]] = Field(
        default=None,
        description="Additional error context (phase, candidate index, etc.)",
    )
    timestamp: str = Field(
        default_factory=lambda: datetime.now(UTC).isoformat(),
        description="When the error occurred (ISO 8601)",
    )
    path: Optional[str] = Field(
        default=None,
        description="Request path that caused the error",
        examples=["/api/workflows/123"],
    )


class ErrorType:
    """Standard error type codes."""

    VALIDATION_ERROR = "ValidationError"
    BAD_REQUEST = "BadRequest"
    NOT_FOUND = "NotFound"
    CONFLICT = "Conflict"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    INTERNAL_ERROR = "InternalError"


def create_error_response(
    error: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
    path: Optional[str] = None,
) -> dict[str, Any]:
    """Create a standardized error response dictionary.

    Returns:
        Dictionary suitable for JSONResponse content
    """
    response = ErrorResponse(
        error=error,
        message=message,
        details=details,
        path=path,
    )
    return response.model_dump(exclude_none=True)
