"""Search queries, provider candidates and known-fact models."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from ..utils.normalize import extract_year, parse_name_parts


class PersonFacts(BaseModel):
    """What is known (or claimed) about one person before searching."""

    given_name: str = Field(default="")
    surname: str = Field(default="")
    gender: str | None = Field(default=None)
    birth_date: str = Field(default="")
    birth_place: str = Field(default="")
    death_date: str = Field(default="")
    death_place: str = Field(default="")
    father_name: str = Field(default="")
    mother_name: str = Field(default="")

    @classmethod
    def from_name(cls, full_name: str, **kwargs) -> PersonFacts:
        given, surname = parse_name_parts(full_name)
        return cls(given_name=given, surname=surname, **kwargs)

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.given_name, self.surname) if p)

    @property
    def birth_year(self) -> int | None:
        return extract_year(self.birth_date)

    @property
    def death_year(self) -> int | None:
        return extract_year(self.death_date)

    def merged_with(self, other: PersonFacts | None) -> PersonFacts:
        """Fill blank fields from ``other`` without overriding anything set."""
        if other is None:
            return self
        data = self.model_dump()
        for key, value in other.model_dump().items():
            if not data.get(key) and value:
                data[key] = value
        return PersonFacts(**data)


class KnownFacts(PersonFacts):
    """Facts used to score candidates for one tree position."""

    child_birth_year: int | None = Field(
        default=None, description="Birth year of the child whose parent is sought"
    )
    estimated_birth_year: int | None = Field(
        default=None, description="Child's birth year minus a typical parent age"
    )
    anchor: PersonFacts | None = Field(
        default=None, description="Customer-supplied anchor for this exact position"
    )


class SearchQuery(BaseModel):
    """Query for a provider's person search."""

    given_name: str = Field(default="")
    surname: str = Field(default="")
    birth_year: int | None = Field(default=None)
    birth_year_range: int = Field(default=2, description="± years to search")
    birth_place: str = Field(default="")
    death_year: int | None = Field(default=None)
    father_given_name: str = Field(default="")
    father_surname: str = Field(default="")
    mother_given_name: str = Field(default="")
    mother_surname: str = Field(default="")
    count: int = Field(default=10)

    def describe(self) -> dict:
        """Non-empty fields, for search logs."""
        return {k: v for k, v in self.model_dump().items() if v not in (None, "", 0) and k != "count"}


class Candidate(BaseModel):
    """A person returned by a provider, normalised to one shape."""

    id: str = Field(description="Identifier within the providing source")
    provider: str = Field(description="Source that returned this candidate")
    name: str = Field(default="")
    gender: str = Field(default="Unknown")
    birth_date: str = Field(default="")
    birth_place: str = Field(default="")
    death_date: str = Field(default="")
    death_place: str = Field(default="")
    father_name: str = Field(default="")
    mother_name: str = Field(default="")
    father_id: str = Field(default="")
    mother_id: str = Field(default="")
    provider_score: float | None = Field(default=None, description="Source's own relevance score")
    sources: list[str] = Field(default_factory=list, description="Every provider that returned it")
    source_ids: dict[str, str] = Field(default_factory=dict, description="Provider -> identifier")
    via_tree: bool = Field(default=False, description="Reached through a provider's parent link")
    raw: dict = Field(default_factory=dict)

    def model_post_init(self, __context) -> None:
        if not self.sources:
            self.sources = [self.provider]
        if self.provider not in self.source_ids:
            self.source_ids[self.provider] = self.id

    @property
    def birth_year(self) -> int | None:
        return extract_year(self.birth_date)

    @property
    def given_name(self) -> str:
        return parse_name_parts(self.name)[0]

    @property
    def surname(self) -> str:
        return parse_name_parts(self.name)[1]


class ParentPair(BaseModel):
    """Provider-recorded parents of one person."""

    father: Candidate | None = None
    mother: Candidate | None = None

    @property
    def is_empty(self) -> bool:
        return self.father is None and self.mother is None


class VitalEntry(BaseModel):
    """A civil-registration index entry returned by a confirmation source."""

    entry_type: str = Field(description="birth, death or marriage")
    surname: str = Field(default="")
    forenames: str = Field(default="")
    spouse_surname: str = Field(default="")
    year: int | None = None
    quarter: str = Field(default="")
    district: str = Field(default="")
    volume: str = Field(default="")
    page: str = Field(default="")
    provider: str = Field(default="FreeBMD")

    @property
    def display(self) -> str:
        parts = [self.entry_type.capitalize()]
        if self.forenames and self.surname:
            parts.append(f"{self.forenames} {self.surname}")
        if self.spouse_surname:
            parts.append(f"married {self.spouse_surname}")
        if self.year:
            parts.append(str(self.year))
        if self.quarter:
            parts.append(f"Q{self.quarter}")
        if self.district:
            parts.append(self.district)
        return ", ".join(parts)


class SearchCandidateRecord(BaseModel):
    """Audit record of one candidate considered for a position."""

    job_id: str
    ascendancy_number: int
    candidate: Candidate
    provider_score: float | None = None
    computed_score: int = 0
    pass_name: str = Field(default="")
    query: dict = Field(default_factory=dict)
    selected: bool = False
    rejection_reason: str | None = None
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
