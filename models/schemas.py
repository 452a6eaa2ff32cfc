"""Pydantic schemas for the extraction pipeline.

The LLM-facing models (``IdentificationResponse``, ``ExtractionResponse``)
double as the response schemas handed to the structured LLM client, so their
JSON field names are the camelCase names used in the prompts.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from models.conversation import ConversationSource


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AppearanceKind(str, Enum):
    INTRODUCED = "introduced"
    ELABORATED = "elaborated"
    MODIFIED = "modified"
    REAFFIRMED = "reaffirmed"


class DecisionStatus(str, Enum):
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    TENTATIVE = "tentative"


# ---------------------------------------------------------------------------
# Phase 1: identification
# ---------------------------------------------------------------------------


class Appearance(CamelModel):
    """One span of messages where a decision surfaces (inclusive bounds)."""

    message_start: int
    message_end: int
    # The persisted column is named "type", so accept that key as well
    kind: AppearanceKind = Field(
        validation_alias=AliasChoices("kind", "type"),
        serialization_alias="kind",
    )


class DecisionCandidate(CamelModel):
    temp_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    appearances: list[Appearance]
    confidence: float = Field(..., ge=0.0, le=1.0)


class IdentificationResponse(CamelModel):
    decisions: list[DecisionCandidate]


# ---------------------------------------------------------------------------
# Phase 2: extraction
# ---------------------------------------------------------------------------


class Alternative(CamelModel):
    description: str
    why_rejected: str


class ExtractionResponse(CamelModel):
    summary: str
    reasoning: str
    alternatives_considered: list[Alternative] = Field(default_factory=list)
    status: DecisionStatus
    depends_on: list[str] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)


class ExtractedDecision(CamelModel):
    """A Phase-1 candidate composed with its Phase-2 extraction."""

    temp_id: str
    title: str
    appearances: list[Appearance]
    summary: str
    reasoning: str
    alternatives_considered: list[Alternative] = Field(default_factory=list)
    status: DecisionStatus
    depends_on: list[str] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)

    @classmethod
    def compose(
        cls, candidate: DecisionCandidate, extraction: ExtractionResponse
    ) -> "ExtractedDecision":
        return cls(
            temp_id=candidate.temp_id,
            title=candidate.title,
            appearances=candidate.appearances,
            **extraction.model_dump(),
        )


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class ResolvedDecision(CamelModel):
    """An extracted decision that has been given its durable id."""

    id: str
    decision: ExtractedDecision


class DependencyEdge(CamelModel):
    from_decision_id: str
    to_decision_ref: str


class ResolvedGraph(CamelModel):
    decisions: list[ResolvedDecision]
    edges: list[DependencyEdge]
    # dependsOn entries that matched no candidate and are not external URIs
    unresolved_refs: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Pipeline input / output
# ---------------------------------------------------------------------------


class ExtractConversationRequest(CamelModel):
    org_id: str = Field(..., min_length=1, max_length=100)
    workspace_id: str = Field(..., min_length=1, max_length=100)
    content: str
    source_path: str = Field(..., max_length=1024)
    source: ConversationSource = ConversationSource.CLAUDE_CODE


class ExtractionResult(CamelModel):
    conversation_id: str
    decision_count: int


class PipelineState(str, Enum):
    PARSING = "parsing"
    TRANSCRIPT_BUILT = "transcript_built"
    IDENTIFIED = "identified"
    EXTRACTING = "extracting"
    STORED = "stored"
    DONE = "done"
    FAILED = "failed"


class WorkflowErrorInfo(CamelModel):
    phase: str
    message: str
    candidate_index: Optional[int] = None


class WorkflowStatus(CamelModel):
    run_id: str
    state: PipelineState
    candidate_count: int = 0
    extracted_count: int = 0
    conversation_id: Optional[str] = None
    decision_count: Optional[int] = None
    error: Optional[WorkflowErrorInfo] = None
    updated_at: datetime

    @model_validator(mode="after")
    def check_failure_has_error(self) -> "WorkflowStatus":
        if self.state == PipelineState.FAILED and self.error is None:
            raise ValueError("failed status requires error details")
        return self


class ExtractionStartedResponse(CamelModel):
    workflow_id: str
    status: str = "started"
