"""Reviewer output schema and consensus results.

Reviewer replies are untrusted. ``TreeReview`` is validated strictly: unknown
keys are rejected and confidence deltas must sit inside -10..10.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class FlagType(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    CONFIRMATION = "confirmation"


class ReviewFlag(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: FlagType
    message: str = Field(max_length=2000)
    suggested_correction: str | None = Field(default=None, max_length=500)


class AncestorReview(BaseModel):
    model_config = ConfigDict(extra="forbid")

    asc: int = Field(ge=1)
    name: str = Field(default="")
    flags: list[ReviewFlag] = Field(default_factory=list)
    freebmd_assessment: str = Field(default="")
    confidence_adjustment: int = Field(default=0, ge=-10, le=10)
    manual_lookup_suggestions: list[str] = Field(default_factory=list)


class ReviewOverall(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tree_consistency: str = Field(default="fair", pattern="^(good|fair|poor)$")
    summary: str = Field(default="")
    critical_issues: list[str] = Field(default_factory=list)


class GapSuggestion(BaseModel):
    model_config = ConfigDict(extra="forbid")

    asc: int = Field(ge=1)
    role: str = Field(default="")
    suggestion: str = Field(default="")


class TreeReview(BaseModel):
    """One reviewer's structured review of a whole tree."""

    model_config = ConfigDict(extra="forbid")

    reviewer: str = Field(default="")
    overall: ReviewOverall = Field(default_factory=ReviewOverall)
    ancestor_reviews: list[AncestorReview] = Field(default_factory=list)
    gap_analysis: list[GapSuggestion] = Field(default_factory=list)

    def for_position(self, asc: int) -> AncestorReview | None:
        for review in self.ancestor_reviews:
            if review.asc == asc:
                return review
        return None


class SuggestionKind(str, Enum):
    CONFIDENCE_ADJUSTMENT = "confidence_adjustment"
    FIELD_CORRECTION = "field_correction"


class Suggestion(BaseModel):
    """A reviewer proposal left for a human to accept or ignore."""

    asc: int
    name: str = Field(default="")
    kind: SuggestionKind
    field: str = Field(default="confidence_score")
    current_value: str | int | None = None
    suggested_value: str | int | None = None
    deltas: dict[str, int] = Field(default_factory=dict, description="Reviewer name -> delta")
    messages: dict[str, str] = Field(default_factory=dict, description="Reviewer name -> message")
    confirmed: bool = False
    single_reviewer: bool = False


class AppliedCorrection(BaseModel):
    asc: int
    name: str = Field(default="")
    correction_id: str
    kind: SuggestionKind
    field: str
    old_value: str | int | None = None
    new_value: str | int | None = None


class ConsensusOutcome(BaseModel):
    """Result of reconciling the reviews for one job."""

    corrections: list[AppliedCorrection] = Field(default_factory=list)
    suggestions: list[Suggestion] = Field(default_factory=list)
    reviewer_errors: dict[str, str] = Field(default_factory=dict)
