"""Tree position models and Ahnentafel arithmetic."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

CUSTOMER_DATA = "Customer Data"


class ConfidenceLevel(str, Enum):
    """Category derived from a 0-100 confidence score."""

    VERIFIED = "Verified"
    PROBABLE = "Probable"
    POSSIBLE = "Possible"
    REJECTED = "Rejected"
    CUSTOMER_DATA = CUSTOMER_DATA


class PositionState(str, Enum):
    """Terminal state of a tree position after a traversal pass."""

    ACCEPTED = "accepted"
    NOT_FOUND = "not_found"
    CUSTOMER_DATA = "customer_data"


# Score floors per level, checked top-down
LEVEL_THRESHOLDS: tuple[tuple[int, ConfidenceLevel], ...] = (
    (90, ConfidenceLevel.VERIFIED),
    (75, ConfidenceLevel.PROBABLE),
    (55, ConfidenceLevel.POSSIBLE),
)


def clamp_score(value: float | int) -> int:
    return int(max(0, min(100, round(value))))


def level_for_score(score: int) -> ConfidenceLevel:
    """Map a numeric score to its level; never returns Customer Data."""
    for floor, level in LEVEL_THRESHOLDS:
        if score >= floor:
            return level
    return ConfidenceLevel.REJECTED


# =============================================================================
# Ahnentafel numbering
# =============================================================================


def father_of(asc: int) -> int:
    return asc * 2


def mother_of(asc: int) -> int:
    return asc * 2 + 1


def child_of(asc: int) -> int:
    return asc // 2


def spouse_of(asc: int) -> int:
    return asc ^ 1


def generation_of(asc: int) -> int:
    """floor(log2(asc)); the subject is generation 0."""
    if asc < 1:
        raise ValueError(f"Ahnentafel numbers start at 1, got {asc}")
    return asc.bit_length() - 1


def expected_gender(asc: int) -> str | None:
    """Male for even positions, Female for odd ones, None for the subject."""
    if asc == 1:
        return None
    return "Male" if asc % 2 == 0 else "Female"


def is_in_subtree(root: int, asc: int) -> bool:
    """True when ``asc`` is ``root`` or one of its ancestors."""
    if asc < root:
        return False
    shift = generation_of(asc) - generation_of(root)
    return (asc >> shift) == root


def lineage_path(asc: int) -> list[str]:
    """Steps from the subject to ``asc``: ["father", "mother", ...]."""
    path: list[str] = []
    n = asc
    while n > 1:
        path.append("father" if n % 2 == 0 else "mother")
        n //= 2
    path.reverse()
    return path


def role_label(asc: int) -> str:
    """Human label with lineage, e.g. "Grandfather (father -> father)"."""
    if asc == 1:
        return "Subject"
    if asc in (2, 3):
        return "Father" if asc == 2 else "Mother"
    gen = generation_of(asc)
    base = "Grandfather" if asc % 2 == 0 else "Grandmother"
    if gen == 2:
        role = base
    elif gen == 3:
        role = f"Great-{base}"
    else:
        role = f"{gen - 2}x Great-{base}"
    return f"{role} ({' -> '.join(lineage_path(asc))})"


def positions_for_depth(generations: int) -> range:
    """All positions of a tree ``generations`` deep beyond the subject."""
    return range(1, 2 ** (generations + 1))


# =============================================================================
# Logs and evidence
# =============================================================================


class Citation(BaseModel):
    """A supporting record citation attached to a position."""

    title: str = Field(default="")
    url: str = Field(default="")
    citation: str = Field(default="")
    source_type: str = Field(default="other", description="Classified evidence type")
    weight: int = Field(default=0)
    provider: str = Field(default="")


class SearchLogEntry(BaseModel):
    """One search pass attempted for a position."""

    pass_name: str
    provider: str
    query: dict = Field(default_factory=dict)
    result_count: int = 0
    best_score: int | None = None
    error: str | None = None
    at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class CorrectionLogEntry(BaseModel):
    """An automated or manual change to a position, reversible via undo."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    type: str = Field(description="confidence_adjustment or field_correction")
    source: str = Field(description="consensus, admin or enrichment")
    field: str
    old_value: str | int | None = None
    new_value: str | int | None = None
    deltas: list[int] = Field(default_factory=list, description="Reviewer deltas behind an adjustment")
    messages: list[str] = Field(default_factory=list, description="Reviewer messages behind a correction")
    confirmed: bool = Field(default=False, description="Corroborated by the confirmation source")
    applied_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    undone: bool = False
    undone_at: datetime | None = None


# =============================================================================
# Ancestor
# =============================================================================


class Ancestor(BaseModel):
    """One tree position for one job."""

    job_id: str
    ascendancy_number: int = Field(ge=1, description="Ahnentafel index; subject is 1")
    name: str = Field(default="")
    gender: str = Field(default="Unknown")
    birth_date: str = Field(default="")
    birth_place: str = Field(default="")
    death_date: str = Field(default="")
    death_place: str = Field(default="")
    confidence_score: int = Field(default=0, ge=0, le=100)
    confidence_level: ConfidenceLevel = Field(default=ConfidenceLevel.REJECTED)
    state: PositionState = Field(default=PositionState.ACCEPTED)
    source_person_id: str = Field(default="", description="Identifier at the tree-origin provider")
    source_provider: str = Field(default="", description="Provider that owns source_person_id")
    sources: list[str] = Field(default_factory=list, description="Providers that produced this match")
    match_ids: dict[str, str] = Field(
        default_factory=dict, description="Provider -> identifier of each record merged into this match"
    )
    discovery_method: str = Field(default="", description="tree, search, enrichment or intake")
    father_name: str = Field(default="", description="Parent name recorded by the provider")
    mother_name: str = Field(default="")
    evidence_chain: list[Citation] = Field(default_factory=list)
    search_log: list[SearchLogEntry] = Field(default_factory=list)
    corrections_log: list[CorrectionLogEntry] = Field(default_factory=list)
    confirmation_results: dict = Field(default_factory=dict)
    review: dict = Field(default_factory=dict)
    verification_notes: str = Field(default="")

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _coerce_score(cls, v):
        return clamp_score(v) if isinstance(v, (int, float)) else v

    @property
    def generation(self) -> int:
        return generation_of(self.ascendancy_number)

    @property
    def is_customer_data(self) -> bool:
        return self.confidence_level == ConfidenceLevel.CUSTOMER_DATA

    @property
    def is_placeholder(self) -> bool:
        return self.state == PositionState.NOT_FOUND

    def identities(self) -> dict[str, str]:
        """Every provider record behind this position, as identifier -> provider."""
        found = {self.source_person_id: self.source_provider} if self.source_person_id else {}
        for provider, person_id in self.match_ids.items():
            if person_id:
                found.setdefault(person_id, provider)
        return found
