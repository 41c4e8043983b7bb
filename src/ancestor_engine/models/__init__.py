"""Pydantic data models."""

from .ancestor import (
    CUSTOMER_DATA,
    Ancestor,
    Citation,
    ConfidenceLevel,
    CorrectionLogEntry,
    PositionState,
    SearchLogEntry,
    child_of,
    clamp_score,
    expected_gender,
    father_of,
    generation_of,
    is_in_subtree,
    level_for_score,
    mother_of,
    role_label,
)
from .candidate import (
    Candidate,
    KnownFacts,
    ParentPair,
    PersonFacts,
    SearchCandidateRecord,
    SearchQuery,
    VitalEntry,
)
from .job import (
    FeedbackAction,
    FeedbackEntry,
    IntakeRequest,
    JobStatus,
    JobSummary,
    ResearchJob,
    ReviewStatus,
)
from .review import (
    AncestorReview,
    AppliedCorrection,
    ConsensusOutcome,
    ReviewFlag,
    Suggestion,
    SuggestionKind,
    TreeReview,
)

__all__ = [
    "CUSTOMER_DATA",
    "Ancestor",
    "Citation",
    "ConfidenceLevel",
    "CorrectionLogEntry",
    "PositionState",
    "SearchLogEntry",
    "child_of",
    "clamp_score",
    "expected_gender",
    "father_of",
    "generation_of",
    "is_in_subtree",
    "level_for_score",
    "mother_of",
    "role_label",
    "Candidate",
    "KnownFacts",
    "ParentPair",
    "PersonFacts",
    "SearchCandidateRecord",
    "SearchQuery",
    "VitalEntry",
    "FeedbackAction",
    "FeedbackEntry",
    "IntakeRequest",
    "JobStatus",
    "JobSummary",
    "ResearchJob",
    "ReviewStatus",
    "AncestorReview",
    "AppliedCorrection",
    "ConsensusOutcome",
    "ReviewFlag",
    "Suggestion",
    "SuggestionKind",
    "TreeReview",
]
