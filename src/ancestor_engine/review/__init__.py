"""Tree review: civil-registration cross-reference, reviewers and consensus."""

from .consensus import (
    ConsensusConfig,
    ConsensusEngine,
    ConsensusInProgressError,
    average_delta,
    delta_tolerance,
    deltas_agree,
)
from .corrections import (
    ParsedCorrection,
    apply_field_change,
    confirmation_supports,
    corrections_agree,
    fuzzy_match_correction,
    parse_correction,
)
from .cross_reference import cross_reference_job, cross_reference_position
from .llm import AnthropicReviewer, MockReviewer, OpenAIReviewer, ReviewerClient, ReviewerError, parse_review
from .payload import build_review_payload

__all__ = [
    "AnthropicReviewer",
    "ConsensusConfig",
    "ConsensusEngine",
    "ConsensusInProgressError",
    "MockReviewer",
    "OpenAIReviewer",
    "ParsedCorrection",
    "ReviewerClient",
    "ReviewerError",
    "apply_field_change",
    "average_delta",
    "build_review_payload",
    "confirmation_supports",
    "corrections_agree",
    "cross_reference_job",
    "cross_reference_position",
    "delta_tolerance",
    "deltas_agree",
    "fuzzy_match_correction",
    "parse_correction",
    "parse_review",
]
