"""Entity resolution: scoring, merging and confidence."""

from .confidence import ConfidenceResolver, Resolution, ResolverConfig, is_blacklisted, multi_source_bonus
from .evidence import DEFAULT_EVIDENCE_WEIGHTS, EvidenceScore, classify_citation, score_evidence
from .merger import candidate_key, merge_candidates, names_similar
from .scorer import CandidateScorer, ScoreBreakdown, ScoringWeights, is_plausible_parent_gap

__all__ = [
    "CandidateScorer",
    "ConfidenceResolver",
    "DEFAULT_EVIDENCE_WEIGHTS",
    "EvidenceScore",
    "Resolution",
    "ResolverConfig",
    "ScoreBreakdown",
    "ScoringWeights",
    "candidate_key",
    "classify_citation",
    "is_blacklisted",
    "is_plausible_parent_gap",
    "merge_candidates",
    "multi_source_bonus",
    "names_similar",
    "score_evidence",
]
