"""Reviewer correction parsing, matching and application.

Parsing is deliberately narrow: only explicit "birth/death year/place should be
X" phrasings yield a correction. Missing an agreement costs a manual review;
inventing one would silently change the tree.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from ..models.ancestor import Ancestor, CorrectionLogEntry, level_for_score
from ..sources.freebmd import district_matches
from ..store import RecordStore
from ..utils.places import extract_district

_YEAR = r"(1[6-9]\d{2}|20[0-2]\d)"
_VERB = r"(?:should\s*be|:|-|→|->|to)"

_YEAR_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("birth_date", re.compile(rf"birth\s*(?:year|date)\s*{_VERB}\s*~?\s*{_YEAR}", re.IGNORECASE)),
    ("death_date", re.compile(rf"death\s*(?:year|date)\s*{_VERB}\s*~?\s*{_YEAR}", re.IGNORECASE)),
)
_PLACE_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("birth_place", re.compile(rf"birth\s*place\s*{_VERB}\s*[\"']?([^\"'\n]+?)[\"']?\.?\s*$", re.IGNORECASE)),
    ("death_place", re.compile(rf"death\s*place\s*{_VERB}\s*[\"']?([^\"'\n]+?)[\"']?\.?\s*$", re.IGNORECASE)),
)

_NORMALIZE_RE = re.compile(r"[^a-z0-9 ]")
_YEAR_RE = re.compile(rf"\b{_YEAR}\b")

CORRECTABLE_FIELDS = frozenset({"birth_date", "death_date", "birth_place", "death_place"})


@dataclass(frozen=True)
class ParsedCorrection:
    field: str
    value: str


def parse_correction(text: str | None) -> ParsedCorrection | None:
    """Structured (field, value) from a reviewer's suggested correction, or None."""
    if not text:
        return None
    for field, pattern in _YEAR_PATTERNS:
        m = pattern.search(text)
        if m:
            return ParsedCorrection(field, m.group(1))
    for field, pattern in _PLACE_PATTERNS:
        m = pattern.search(text)
        if m and m.group(1).strip():
            return ParsedCorrection(field, m.group(1).strip())
    return None


def _normalize(text: str) -> str:
    return " ".join(_NORMALIZE_RE.sub("", text.lower()).split())


def fuzzy_match_correction(a: str | None, b: str | None) -> bool:
    """True when two suggested corrections say the same thing.

    Equal after normalising, one containing the other as whole words, or the
    same year with at least two shared words longer than two characters.
    """
    if not a or not b:
        return False
    na, nb = _normalize(a), _normalize(b)
    if not na or not nb:
        return False
    if na == nb or f" {na} " in f" {nb} " or f" {nb} " in f" {na} ":
        return True
    ya, yb = _YEAR_RE.search(na), _YEAR_RE.search(nb)
    if ya and yb and ya.group(1) == yb.group(1):
        shared = {w for w in na.split() if len(w) > 2} & {w for w in nb.split() if len(w) > 2}
        return len(shared) >= 2
    return False


def corrections_agree(a: str | None, b: str | None) -> bool:
    """Both texts match and parse to the same field with the same value."""
    if not fuzzy_match_correction(a, b):
        return False
    pa, pb = parse_correction(a), parse_correction(b)
    if pa is None or pb is None or pa.field != pb.field:
        return False
    return _normalize(pa.value) == _normalize(pb.value)


def confirmation_supports(correction: ParsedCorrection, confirmation_results: dict | None) -> bool:
    """Whether the stored cross-reference independently gives the same value.

    Only the index matching the corrected field counts: a birth-year correction
    needs a matched birth entry in that year.
    """
    if not confirmation_results:
        return False
    kind = "birth" if correction.field.startswith("birth") else "death"
    result = confirmation_results.get(kind) or {}
    if not result.get("matched"):
        return False
    if correction.field.endswith("_date"):
        return str(result.get("year") or "") == correction.value
    district = result.get("district") or ""
    place = extract_district(correction.value)
    if not district or not place:
        return False
    return district_matches(place, district) or district.lower() in correction.value.lower()


def apply_field_change(
    store: RecordStore,
    ancestor: Ancestor,
    *,
    field: str,
    new_value: str | int,
    kind: str,
    source: str,
    deltas: list[int] | None = None,
    messages: list[str] | None = None,
    confirmed: bool = False,
) -> CorrectionLogEntry:
    """Write one change and append its reversible log entry."""
    entry = CorrectionLogEntry(
        type=kind,
        source=source,
        field=field,
        old_value=getattr(ancestor, field),
        new_value=new_value,
        deltas=deltas or [],
        messages=messages or [],
        confirmed=confirmed,
    )
    fields: dict = {field: new_value, "corrections_log": [*ancestor.corrections_log, entry]}
    if field == "confidence_score":
        fields["confidence_level"] = level_for_score(int(new_value))
    store.update_ancestor(ancestor.job_id, ancestor.ascendancy_number, fields)
    return entry
