"""Citation classification and evidence scoring."""
from __future__ import annotations

import re
from dataclasses import dataclass, field

from ..models.ancestor import Citation

DEFAULT_EVIDENCE_WEIGHTS: dict[str, int] = {
    "birth_record": 25,
    "marriage_record": 20,
    "death_record": 20,
    "census": 15,
    "parish_record": 18,
    "military_record": 10,
    "immigration": 10,
    "other": 5,
}

# Checked in order; first hit wins
EVIDENCE_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("birth_record", re.compile(r"\bbirth\b|\bchrist(en|in)")),
    ("marriage_record", re.compile(r"\bmarriage\b|\bmarri")),
    ("death_record", re.compile(r"\bdeath\b|\bburial\b|\bprobate\b")),
    ("census", re.compile(r"\bcensus\b")),
    ("parish_record", re.compile(r"\bparish\b|\bchurch\b|\bbaptis")),
    ("military_record", re.compile(r"\bmilitary\b|\barmy\b|\bnavy\b|\braf\b")),
    ("immigration", re.compile(r"\bimmigra|\bpassenger\b|\bemigra")),
]

DIVERSITY_MIN_TYPES = 3
DIVERSITY_BONUS = 10


def classify_citation(title: str, citation: str = "") -> str:
    text = f"{title or ''} {citation or ''}".lower()
    for source_type, pattern in EVIDENCE_PATTERNS:
        if pattern.search(text):
            return source_type
    return "other"


@dataclass
class EvidenceScore:
    score: int = 0
    citations: list[Citation] = field(default_factory=list)
    types: set[str] = field(default_factory=set)


def score_evidence(
    raw_citations: list[dict[str, str]],
    provider: str = "",
    weights: dict[str, int] | None = None,
) -> EvidenceScore:
    """Classify citations and sum their weights.

    The sum is capped at 100; three or more distinct record types earn a
    diversity bonus (still capped).
    """
    weights = weights or DEFAULT_EVIDENCE_WEIGHTS
    result = EvidenceScore()
    total = 0
    for raw in raw_citations or []:
        source_type = classify_citation(raw.get("title", ""), raw.get("citation", ""))
        weight = weights.get(source_type, weights.get("other", 0))
        total += weight
        result.types.add(source_type)
        result.citations.append(
            Citation(
                title=raw.get("title", ""),
                url=raw.get("url", ""),
                citation=raw.get("citation", ""),
                source_type=source_type,
                weight=weight,
                provider=provider,
            )
        )
    score = min(total, 100)
    if len(result.types) >= DIVERSITY_MIN_TYPES:
        score = min(score + DIVERSITY_BONUS, 100)
    result.score = score
    return result
