"""Candidate scoring: is this provider record the person we are looking for?

The score is a weighted sum of independent channels (name, birth date, birth
place, recorded parents) followed by penalties and quality gates. Channel
maxima live in ``ScoringWeights``; when no parent names are known the parent
channel drops out and the other channels are scaled up so the addressable
total stays at 100.
"""
from __future__ import annotations

import structlog
from pydantic import BaseModel, Field

from ..models.ancestor import clamp_score
from ..models.candidate import Candidate, KnownFacts
from ..utils.name_variants import is_name_variant, surnames_equivalent
from ..utils.normalize import first_given_name, initials_of, is_initials, normalize_name, parse_name_parts
from ..utils.places import DEFAULT_GAZETTEER, Gazetteer, PlaceMatch, is_clearly_non_uk, is_uk_place, place_specificity

logger = structlog.get_logger(__name__)


class ScoringWeights(BaseModel):
    """Channel maxima, match fractions, penalties and gates for the scorer."""

    # Channel maxima
    surname_max: int = Field(default=20, description="Points for an exact surname match")
    given_max: int = Field(default=15, description="Points for an exact given-name match")
    date_max: int = Field(default=30, description="Points for an exact birth year")
    place_max: int = Field(default=15, description="Points for the same birth town")
    parents_max: int = Field(default=20, description="Points for matching both recorded parents")

    # Name fractions
    surname_variant: float = Field(default=0.6, description="Spelling-rule or Soundex surname match")
    given_first_only: float = Field(default=0.9, description="First given name matches, middle names differ")
    given_nickname: float = Field(default=0.75, description="Nickname / formal-name variant")
    given_initials: float = Field(default=0.4, description="Initials-only form agrees")

    # Date bands: (max year difference, fraction), checked in order
    date_bands: list[tuple[int, float]] = Field(default=[(0, 1.0), (1, 0.85), (2, 0.7), (5, 0.4)])
    date_far_years: int = Field(default=10, description="Beyond this difference the date is a penalty")
    date_far_penalty: int = Field(default=-15)

    # Place fractions
    place_fractions: dict[str, float] = Field(
        default={"TOWN": 1.0, "COUNTY": 0.7, "COUNTRY": 0.35, "PARTIAL": 0.25}
    )
    non_uk_vs_uk_penalty: int = Field(default=-25, description="Known UK place, candidate clearly outside the UK")
    non_uk_default_penalty: int = Field(default=-15, description="No known place, candidate clearly outside the UK")

    # Parents
    parent_full_match: int = Field(default=10)
    parent_partial_match: int = Field(default=5, description="Only the given name or only the surname agrees")
    parent_conflict_penalty: int = Field(default=-15, description="Recorded parent name contradicts the known one")

    # Plausibility and gender
    parent_age_min: int = Field(default=12, description="Youngest plausible parent age at the child's birth")
    parent_age_max: int = Field(default=55, description="Oldest plausible parent age at the child's birth")
    implausible_parent_penalty: int = Field(default=-20)
    gender_mismatch_penalty: int = Field(default=-30)

    # Quality gates
    no_match_cap: int = Field(default=25, description="Cap when neither name nor birth year matches")
    year_mismatch_cap: int = Field(default=45, description="Cap when a name matched but the birth year did not")

    @property
    def base_total(self) -> int:
        return self.surname_max + self.given_max + self.date_max + self.place_max + self.parents_max

    @property
    def no_parents_scale(self) -> float:
        return self.base_total / (self.base_total - self.parents_max)


class ScoreBreakdown(BaseModel):
    """Per-channel contributions behind one score."""

    total: int = 0
    name: float = 0.0
    date: float = 0.0
    place: float = 0.0
    parents: float = 0.0
    scale: float = 1.0
    penalties: dict[str, int] = Field(default_factory=dict)
    caps: list[str] = Field(default_factory=list)
    name_matched: bool = False
    year_matched: bool = False


def is_plausible_parent_gap(parent_birth_year: int | None, child_birth_year: int | None, min_gap: int = 12, max_gap: int = 55) -> bool:
    """True unless both years are known and the gap falls outside [min_gap, max_gap]."""
    if parent_birth_year is None or child_birth_year is None:
        return True
    gap = child_birth_year - parent_birth_year
    return min_gap <= gap <= max_gap


class CandidateScorer:
    """Scores one candidate against the known facts for one tree position."""

    def __init__(self, weights: ScoringWeights | None = None, gazetteer: Gazetteer = DEFAULT_GAZETTEER) -> None:
        self.weights = weights or ScoringWeights()
        self.gazetteer = gazetteer

    def score(self, candidate: Candidate, known: KnownFacts, expected_gender: str | None) -> int:
        return self.breakdown(candidate, known, expected_gender).total

    def breakdown(self, candidate: Candidate, known: KnownFacts, expected_gender: str | None) -> ScoreBreakdown:
        w = self.weights
        out = ScoreBreakdown()

        surname_frac = self._surname_fraction(candidate.surname, known.surname)
        given_frac = self._given_fraction(candidate.given_name, known.given_name)
        out.name = w.surname_max * surname_frac + w.given_max * given_frac
        out.name_matched = surname_frac > 0 or given_frac > 0

        known_year = known.birth_year
        cand_year = candidate.birth_year
        if known_year is not None and cand_year is not None:
            diff = abs(known_year - cand_year)
            for max_diff, fraction in w.date_bands:
                if diff <= max_diff:
                    out.date = w.date_max * fraction
                    out.year_matched = True
                    break
            if diff > w.date_far_years:
                out.penalties["date_far"] = w.date_far_penalty

        match = place_specificity(candidate.birth_place, known.birth_place, self.gazetteer)
        if match is not PlaceMatch.NONE:
            out.place = w.place_max * w.place_fractions.get(match.name, 0.0)
        if is_clearly_non_uk(candidate.birth_place):
            if known.birth_place and is_uk_place(known.birth_place):
                out.penalties["non_uk"] = w.non_uk_vs_uk_penalty
            elif not known.birth_place:
                out.penalties["non_uk"] = w.non_uk_default_penalty

        has_parents = bool(known.father_name or known.mother_name)
        if has_parents:
            for role, known_name, cand_name in (
                ("father", known.father_name, candidate.father_name),
                ("mother", known.mother_name, candidate.mother_name),
            ):
                result = self._parent_points(cand_name, known_name)
                if result > 0:
                    out.parents += result
                elif result < 0:
                    out.penalties[f"{role}_conflict"] = result
        else:
            out.scale = w.no_parents_scale

        if not is_plausible_parent_gap(cand_year, known.child_birth_year, w.parent_age_min, w.parent_age_max):
            out.penalties["implausible_parent"] = w.implausible_parent_penalty

        if expected_gender and candidate.gender in ("Male", "Female") and candidate.gender != expected_gender:
            out.penalties["gender"] = w.gender_mismatch_penalty

        raw = (out.name + out.date + out.place) * out.scale + out.parents + sum(out.penalties.values())
        total = clamp_score(raw)

        if not out.name_matched and not out.year_matched:
            if total > w.no_match_cap:
                out.caps.append("no_match")
            total = min(total, w.no_match_cap)
        elif out.name_matched and known_year is not None and cand_year is not None and not out.year_matched:
            if total > w.year_mismatch_cap:
                out.caps.append("year_mismatch")
            total = min(total, w.year_mismatch_cap)

        out.total = total
        return out

    # ------------------------------------------------------------------
    # Channel helpers
    # ------------------------------------------------------------------

    def _surname_fraction(self, candidate: str, known: str) -> float:
        a, b = normalize_name(candidate), normalize_name(known)
        if not a or not b:
            return 0.0
        if a == b:
            return 1.0
        if surnames_equivalent(a, b):
            return self.weights.surname_variant
        return 0.0

    def _given_fraction(self, candidate: str, known: str) -> float:
        w = self.weights
        a, b = normalize_name(candidate), normalize_name(known)
        if not a or not b:
            return 0.0
        if a == b:
            return 1.0
        if first_given_name(a) == first_given_name(b):
            return w.given_first_only
        if is_name_variant(a, b):
            return w.given_nickname
        if is_initials(candidate) or is_initials(known):
            ia, ib = initials_of(candidate), initials_of(known)
            if ia and ib and (ia.startswith(ib) or ib.startswith(ia)):
                return w.given_initials
        return 0.0

    def _parent_points(self, candidate_name: str, known_name: str) -> int:
        """Positive for agreement, negative for an active conflict, 0 when either side is blank."""
        w = self.weights
        if not candidate_name or not known_name:
            return 0
        cg, cs = parse_name_parts(candidate_name)
        kg, ks = parse_name_parts(known_name)
        given_ok = bool(cg and kg and is_name_variant(cg, kg))
        surname_ok = bool(cs and ks and surnames_equivalent(cs, ks))
        if given_ok and (surname_ok or not cs or not ks):
            return w.parent_full_match
        if given_ok or surname_ok:
            return w.parent_partial_match
        return w.parent_conflict_penalty
