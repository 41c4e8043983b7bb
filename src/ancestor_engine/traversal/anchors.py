"""Customer anchors: partial facts for positions not yet resolved.

Anchors come from the intake's father/mother names and from free-text
notes ("Paternal GP: Charles Jackson (1909-1963) and Ethel Skinner
(1912-1990)"). They seed searches and cross-check provider parents; they are
never stored as positions themselves.
"""
from __future__ import annotations

import re

from ..models.candidate import PersonFacts
from ..models.job import IntakeRequest

_NAME = r"([A-Z][a-zA-Z\s]+?)"
_LIFESPAN = r"\s*\((\d{4})\s*[-–]\s*(\d{4}|present|living)?\)"
_OPT_LIFESPAN = r"(?:\s*\((\d{4})\s*[-–]\s*(\d{4})?\))?"
_END = r"(?:,|\.|born|from|and|$)"
_END_NO_AND = r"(?:,|\.|born|from|$)"

_PATTERNS: dict[int, list[re.Pattern[str]]] = {
    2: [re.compile(rf"father\s*[:\-–]?\s*{_NAME}{_LIFESPAN}", re.IGNORECASE)],
    3: [re.compile(rf"mother\s*[:\-–]?\s*{_NAME}{_LIFESPAN}", re.IGNORECASE)],
    4: [
        re.compile(rf"paternal\s+(?:gp|grandparents?)\s*[:\-–]\s*{_NAME}{_LIFESPAN}", re.IGNORECASE),
        re.compile(rf"(?<!maternal )(?:paternal\s+)?grandfather\s*(?:was|:|-)\s*{_NAME}{_OPT_LIFESPAN}{_END}", re.IGNORECASE),
    ],
    5: [
        re.compile(rf"paternal\s+(?:gp|grandparents?)\s*[:\-–].*?and\s+{_NAME}{_LIFESPAN}", re.IGNORECASE),
        re.compile(rf"(?<!maternal )(?:paternal\s+)?grandmother\s*(?:was|:|-)\s*{_NAME}{_OPT_LIFESPAN}{_END_NO_AND}", re.IGNORECASE),
    ],
    6: [
        re.compile(rf"maternal\s+(?:gp|grandparents?)\s*[:\-–]\s*{_NAME}{_LIFESPAN}", re.IGNORECASE),
        re.compile(rf"maternal\s+grandfather\s*(?:was|:|-)\s*{_NAME}{_OPT_LIFESPAN}{_END}", re.IGNORECASE),
    ],
    7: [
        re.compile(rf"maternal\s+(?:gp|grandparents?)\s*[:\-–].*?and\s+{_NAME}{_LIFESPAN}", re.IGNORECASE),
        re.compile(rf"maternal\s+grandmother\s*(?:was|:|-)\s*{_NAME}{_OPT_LIFESPAN}{_END_NO_AND}", re.IGNORECASE),
    ],
}

_BORN_RE = re.compile(
    r"born\s+(?:(?:on|in)\s+)?(\d{1,2}[./-]\d{1,2}[./-]\d{2,4}|\d{4}|[A-Z][a-z]+\s+\d{4})",
    re.IGNORECASE,
)
_PLACE_RE = re.compile(r"(?:from|in|of)\s+([A-Z][a-zA-Z\s,]+?)(?:\.|;|born|$)", re.IGNORECASE | re.MULTILINE)
_CONTEXT_CHARS = 50


def _death_year(raw: str | None) -> str:
    if not raw or raw.lower() in ("present", "living"):
        return ""
    return raw


def parse_notes_for_anchors(notes: str) -> dict[int, PersonFacts]:
    """Anchors for positions 2-7 found in free-text notes.

    A "born ..." date or a "from/in/of Place" phrase within a few words after
    an anchor's surname fills that anchor's blank birth date or place.
    """
    if not notes:
        return {}

    anchors: dict[int, PersonFacts] = {}
    for asc, patterns in _PATTERNS.items():
        for pattern in patterns:
            match = pattern.search(notes)
            if match:
                anchors[asc] = PersonFacts.from_name(
                    match.group(1).strip(),
                    birth_date=match.group(2) or "",
                    death_date=_death_year(match.group(3)),
                )
                break

    for match in _BORN_RE.finditer(notes):
        context = notes[max(0, match.start() - _CONTEXT_CHARS): match.start()].lower()
        for anchor in anchors.values():
            if anchor.surname and not anchor.birth_date and anchor.surname.lower() in context:
                anchor.birth_date = match.group(1)

    for match in _PLACE_RE.finditer(notes):
        context = notes[max(0, match.start() - _CONTEXT_CHARS): match.start()].lower()
        for anchor in anchors.values():
            if anchor.surname and not anchor.birth_place and anchor.surname.lower() in context:
                anchor.birth_place = match.group(1).strip().rstrip(",")

    return anchors


def build_anchors(intake: IntakeRequest) -> dict[int, PersonFacts]:
    """Intake father/mother names overlaid with anything the notes add."""
    anchors: dict[int, PersonFacts] = {}
    if intake.father_name:
        anchors[2] = PersonFacts.from_name(intake.father_name, gender="Male")
    if intake.mother_name:
        anchors[3] = PersonFacts.from_name(intake.mother_name, gender="Female")
    for asc, facts in parse_notes_for_anchors(intake.notes).items():
        existing = anchors.get(asc)
        anchors[asc] = facts.merged_with(existing) if existing else facts
    for asc, facts in intake.customer_ancestors.items():
        existing = anchors.get(asc)
        anchors[asc] = facts.merged_with(existing) if existing else facts
    return anchors
