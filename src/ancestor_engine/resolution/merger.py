"""Cross-source candidate deduplication."""
from __future__ import annotations

from typing import Iterable

import structlog

from ..models.candidate import Candidate
from ..utils.normalize import extract_year

logger = structlog.get_logger(__name__)

FUZZY_YEAR_TOLERANCE = 3

_GAP_FIELDS = (
    "birth_date",
    "birth_place",
    "death_date",
    "death_place",
    "father_name",
    "mother_name",
    "father_id",
    "mother_id",
)


def _name_ends(name: str) -> tuple[str, str]:
    parts = (name or "").lower().split()
    if not parts:
        return "", ""
    return parts[0], parts[-1]


def candidate_key(candidate: Candidate) -> str:
    """``first|last|year`` with ``?`` for an unknown birth year."""
    first, last = _name_ends(candidate.name)
    year = extract_year(candidate.birth_date)
    return f"{first}|{last}|{year if year is not None else '?'}"


def names_similar(a: str, b: str) -> bool:
    """Exact, prefix of one another, or sharing the first three letters."""
    a, b = (a or "").strip().lower(), (b or "").strip().lower()
    if not a or not b:
        return False
    if a == b or a.startswith(b) or b.startswith(a):
        return True
    return len(a) >= 3 and len(b) >= 3 and a[:3] == b[:3]


def _fuzzy_match(candidate: Candidate, merged: dict[str, Candidate]) -> str | None:
    first, last = _name_ends(candidate.name)
    year = extract_year(candidate.birth_date)
    for key, existing in merged.items():
        e_first, e_last = _name_ends(existing.name)
        if not (names_similar(first, e_first) and names_similar(last, e_last)):
            continue
        e_year = extract_year(existing.birth_date)
        if year is None or e_year is None or abs(year - e_year) <= FUZZY_YEAR_TOLERANCE:
            return key
    return None


def _absorb(existing: Candidate, other: Candidate) -> None:
    for provider in other.sources:
        if provider not in existing.sources:
            existing.sources.append(provider)
    for provider, person_id in other.source_ids.items():
        existing.source_ids.setdefault(provider, person_id)
    for field in _GAP_FIELDS:
        if not getattr(existing, field) and getattr(other, field):
            setattr(existing, field, getattr(other, field))
    if other.via_tree:
        existing.via_tree = True
    if other.provider_score is not None and (existing.provider_score is None or other.provider_score > existing.provider_score):
        existing.provider_score = other.provider_score


def merge_candidates(candidate_lists: Iterable[Iterable[Candidate]]) -> list[Candidate]:
    """Deduplicate candidates from any number of lists.

    The first occurrence of a person wins and absorbs later duplicates:
    blank fields are filled, and the providers and identifiers of every
    duplicate are accumulated in ``sources`` / ``source_ids``. Inputs are
    not modified.
    """
    merged: dict[str, Candidate] = {}
    total = 0
    for candidates in candidate_lists:
        for candidate in candidates:
            total += 1
            key = candidate_key(candidate)
            target = key if key in merged else _fuzzy_match(candidate, merged)
            if target is None:
                merged[key] = candidate.model_copy(deep=True)
            else:
                _absorb(merged[target], candidate)
    if total != len(merged):
        logger.debug("merger.deduplicated", received=total, kept=len(merged))
    return list(merged.values())
