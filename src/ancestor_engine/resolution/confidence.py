"""Final confidence for a chosen candidate.

Applied in order: scorer value, evidence blend, tree-link adjustment,
multi-source bonus, confirmation bonus, blacklist. The result is clamped to
0..100 and mapped to a level.
"""
from __future__ import annotations

from dataclasses import dataclass, field

import structlog
from pydantic import BaseModel, Field

from ..models.ancestor import Citation, ConfidenceLevel, clamp_score, level_for_score
from ..models.candidate import Candidate, KnownFacts
from ..sources.base import Capability, RecordSource, SourceError
from ..utils.normalize import year_difference
from ..utils.places import DEFAULT_GAZETTEER, Gazetteer, PlaceMatch, is_clearly_non_uk, place_specificity
from .evidence import DEFAULT_EVIDENCE_WEIGHTS, EvidenceScore, score_evidence

logger = structlog.get_logger(__name__)


class ResolverConfig(BaseModel):
    """Evidence weights, bonuses and decision thresholds."""

    evidence_weights: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_EVIDENCE_WEIGHTS))
    scorer_share: float = Field(default=0.6, ge=0.0, le=1.0, description="Scorer share of the blend; evidence gets the rest")

    strong_link_bonus: int = Field(default=15, description="Tree link with close date and county-or-better place")
    strong_link_floor: int = Field(default=70)
    moderate_link_bonus: int = Field(default=8, description="Tree link with some date or place agreement")
    moderate_link_floor: int = Field(default=60)
    unlinked_non_uk_penalty: int = Field(default=-20, description="Uncorroborated tree link placed outside the UK")
    close_year_diff: int = Field(default=2)
    near_year_diff: int = Field(default=5)
    estimated_year_diff: int = Field(default=10, description="Tolerance against an estimated (not known) birth year")

    multi_source_bonus_two: int = Field(default=10)
    multi_source_bonus_many: int = Field(default=15, description="Found by three or more adapters")
    confirmation_bonus: int = Field(default=8, description="Per vital-record confirmation")

    acceptance_threshold: int = Field(default=55, ge=0, le=100)
    enrichment_threshold: int = Field(default=65, ge=0, le=100)
    short_circuit_score: int = Field(default=80, ge=0, le=100)


@dataclass
class Resolution:
    """Outcome of resolving one candidate."""

    candidate: Candidate
    score: int
    level: ConfidenceLevel
    base_score: int
    evidence_score: int = 0
    evidence: list[Citation] = field(default_factory=list)
    adjustments: dict[str, int] = field(default_factory=dict)
    blacklisted: bool = False

    def meets(self, threshold: int) -> bool:
        return not self.blacklisted and self.score >= threshold


def multi_source_bonus(sources: list[str], config: ResolverConfig | None = None) -> int:
    config = config or ResolverConfig()
    count = len(set(sources or []))
    if count <= 1:
        return 0
    return config.multi_source_bonus_many if count >= 3 else config.multi_source_bonus_two


def is_blacklisted(candidate: Candidate, blacklist: set[str] | frozenset[str]) -> bool:
    if not blacklist:
        return False
    return candidate.id in blacklist or any(pid in blacklist for pid in candidate.source_ids.values())


class ConfidenceResolver:
    def __init__(self, config: ResolverConfig | None = None, gazetteer: Gazetteer = DEFAULT_GAZETTEER) -> None:
        self.config = config or ResolverConfig()
        self.gazetteer = gazetteer

    async def gather_evidence(self, candidate: Candidate, sources: list[RecordSource]) -> EvidenceScore:
        """Fetch citations from every citation-capable source that knows the candidate."""
        all_citations: list[dict[str, str]] = []
        providers: list[str] = []
        for source in sources:
            if Capability.CITATIONS not in source.capabilities or not source.is_available():
                continue
            person_id = candidate.source_ids.get(source.name)
            if not person_id:
                continue
            try:
                citations = await source.get_person_sources(person_id)
            except SourceError as e:
                logger.warning("resolver.citations_failed", provider=source.name, person_id=person_id, error=str(e))
                continue
            all_citations.extend(citations)
            providers.extend([source.name] * len(citations))
        combined = score_evidence(all_citations, weights=self.config.evidence_weights)
        for citation, provider in zip(combined.citations, providers):
            citation.provider = provider
        return combined

    def tree_link_adjustment(self, candidate: Candidate, known: KnownFacts) -> tuple[int, int | None]:
        """(bonus or penalty, score floor) for a tree-derived candidate."""
        cfg = self.config
        if not candidate.via_tree:
            return 0, None

        diff = year_difference(candidate.birth_date, known.birth_date)
        est_diff = None
        if diff is None and known.estimated_birth_year and candidate.birth_year:
            est_diff = abs(candidate.birth_year - known.estimated_birth_year)
        place = place_specificity(candidate.birth_place, known.birth_place, self.gazetteer)

        date_close = diff is not None and diff <= cfg.close_year_diff
        date_near = (diff is not None and diff <= cfg.near_year_diff) or (
            est_diff is not None and est_diff <= cfg.estimated_year_diff
        )
        if date_close and place >= PlaceMatch.COUNTY:
            return cfg.strong_link_bonus, cfg.strong_link_floor
        if date_close or date_near or place >= PlaceMatch.PARTIAL:
            return cfg.moderate_link_bonus, cfg.moderate_link_floor
        if is_clearly_non_uk(candidate.birth_place):
            return cfg.unlinked_non_uk_penalty, None
        return 0, None

    def resolve(
        self,
        candidate: Candidate,
        base_score: int,
        known: KnownFacts,
        evidence: EvidenceScore | None = None,
        confirmations: int = 0,
        blacklist: set[str] | frozenset[str] = frozenset(),
    ) -> Resolution:
        cfg = self.config
        adjustments: dict[str, int] = {}
        score: float = base_score

        if evidence is not None and evidence.citations:
            score = base_score * cfg.scorer_share + evidence.score * (1 - cfg.scorer_share)
            adjustments["evidence_blend"] = round(score - base_score)

        link_bonus, floor = self.tree_link_adjustment(candidate, known)
        if link_bonus:
            score += link_bonus
            adjustments["tree_link"] = link_bonus
        if floor is not None and score < floor:
            adjustments["tree_link_floor"] = round(floor - score)
            score = floor

        source_bonus = multi_source_bonus(candidate.sources, cfg)
        if source_bonus:
            score += source_bonus
            adjustments["multi_source"] = source_bonus

        if confirmations > 0:
            bonus = cfg.confirmation_bonus * confirmations
            score += bonus
            adjustments["confirmations"] = bonus

        blacklisted = is_blacklisted(candidate, blacklist)
        if blacklisted:
            score = 0
            adjustments["blacklisted"] = 0

        final = clamp_score(score)
        return Resolution(
            candidate=candidate,
            score=final,
            level=level_for_score(final),
            base_score=base_score,
            evidence_score=evidence.score if evidence else 0,
            evidence=list(evidence.citations) if evidence else [],
            adjustments=adjustments,
            blacklisted=blacklisted,
        )
