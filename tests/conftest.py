"""Shared fixtures: an in-memory store and scripted record sources."""

from __future__ import annotations

import pytest

from ancestor_engine.models.ancestor import Ancestor, ConfidenceLevel, PositionState, level_for_score
from ancestor_engine.models.candidate import Candidate, ParentPair, PersonFacts, SearchQuery, VitalEntry
from ancestor_engine.models.job import IntakeRequest, ResearchJob
from ancestor_engine.sources.base import Capability
from ancestor_engine.store import MemoryRecordStore
from ancestor_engine.utils.normalize import first_given_name


class FakeSource:
    """Scripted adapter satisfying ``RecordSource`` without any HTTP.

    ``people`` are matched on surname and first given name (a query without a
    given name matches on surname alone). ``errors`` maps an operation name to
    the exception it raises.
    """

    def __init__(
        self,
        name: str,
        capabilities=(Capability.SEARCH, Capability.TREE),
        people: list[Candidate] | None = None,
        parents: dict[str, ParentPair] | None = None,
        citations: dict[str, list[dict]] | None = None,
        vitals: dict[tuple, VitalEntry] | None = None,
        errors: dict[str, Exception] | None = None,
    ):
        self.name = name
        self.capabilities = frozenset(capabilities)
        self.people = people or []
        self.parents = parents or {}
        self.citations = citations or {}
        self.vitals = vitals or {}
        self.errors = errors or {}
        self.available = True
        self.calls: list[tuple] = []
        self.closed = False

    def is_available(self) -> bool:
        return self.available

    def _maybe_raise(self, operation: str) -> None:
        error = self.errors.get(operation)
        if error is not None:
            raise error

    async def search_person(self, query: SearchQuery) -> list[Candidate]:
        self.calls.append(("search_person", query))
        self._maybe_raise("search_person")
        wanted_given = first_given_name(query.given_name).lower()
        found = []
        for person in self.people:
            if person.surname.lower() != query.surname.lower():
                continue
            if wanted_given and first_given_name(person.given_name).lower() != wanted_given:
                continue
            found.append(person.model_copy(deep=True))
        return found

    async def get_parents(self, person_id: str) -> ParentPair:
        self.calls.append(("get_parents", person_id))
        self._maybe_raise("get_parents")
        return self.parents.get(person_id, ParentPair()).model_copy(deep=True)

    async def get_ancestry(self, person_id: str, generations: int = 1) -> list[Candidate]:
        self.calls.append(("get_ancestry", person_id))
        self._maybe_raise("get_ancestry")
        return []

    async def get_person_sources(self, person_id: str) -> list[dict[str, str]]:
        self.calls.append(("get_person_sources", person_id))
        self._maybe_raise("get_person_sources")
        return list(self.citations.get(person_id, []))

    async def confirm_birth(self, first_name: str, last_name: str, year: int, place: str = "") -> VitalEntry | None:
        self.calls.append(("confirm_birth", first_name, last_name, year))
        self._maybe_raise("confirm_birth")
        return self.vitals.get(("birth", last_name.lower(), year))

    async def confirm_death(self, first_name: str, last_name: str, year: int) -> VitalEntry | None:
        self.calls.append(("confirm_death", first_name, last_name, year))
        self._maybe_raise("confirm_death")
        return self.vitals.get(("death", last_name.lower(), year))

    async def find_marriage(
        self,
        surname: str,
        first_name: str,
        spouse_surname: str = "",
        year_from: int | None = None,
        year_to: int | None = None,
        district: str = "",
    ) -> VitalEntry | None:
        self.calls.append(("find_marriage", surname, spouse_surname, year_from, year_to))
        self._maybe_raise("find_marriage")
        return self.vitals.get(("marriage", surname.lower()))

    async def close(self) -> None:
        self.closed = True

    def called(self, operation: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == operation]


def person(provider: str, person_id: str, name: str, born: str = "", place: str = "", **kwargs) -> Candidate:
    """Candidate shorthand."""
    return Candidate(id=person_id, provider=provider, name=name, birth_date=born, birth_place=place, **kwargs)


def stored_ancestor(job_id: str, asc: int, name: str, score: int = 70, **kwargs) -> Ancestor:
    """An accepted position as traversal would leave it."""
    defaults = {
        "gender": "Male" if asc % 2 == 0 else "Female",
        "confidence_score": score,
        "confidence_level": level_for_score(score),
        "state": PositionState.ACCEPTED,
        "source_person_id": f"FS-{asc}",
        "source_provider": "FamilySearch",
        "sources": ["FamilySearch"],
        "discovery_method": "tree",
    }
    defaults.update(kwargs)
    return Ancestor(job_id=job_id, ascendancy_number=asc, name=name, **defaults)


def customer_ancestor(job_id: str, asc: int, name: str, **kwargs) -> Ancestor:
    return Ancestor(
        job_id=job_id,
        ascendancy_number=asc,
        name=name,
        confidence_score=100,
        confidence_level=ConfidenceLevel.CUSTOMER_DATA,
        state=PositionState.CUSTOMER_DATA,
        discovery_method="intake",
        **kwargs,
    )


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def job(store):
    """A stored job with no positions yet."""
    return store.create_job(ResearchJob(id="job-1", customer_name="Jane Smith", generations=2))


@pytest.fixture
def derby_intake():
    """Subject born 1959 in Derby with both parents named."""
    return IntakeRequest(
        job_id="job-1",
        customer_name="Jane Smith",
        generations=2,
        subject=PersonFacts(given_name="John", surname="Smith", birth_date="01.09.59", birth_place="Derby"),
        father_name="Robert Smith",
        mother_name="Mary Jones",
    )


@pytest.fixture
def tree(store, job):
    """Customer positions 1-3, an accepted grandfather and a placeholder grandmother."""
    store.create_ancestor(customer_ancestor("job-1", 1, "John Smith", birth_date="1959"))
    store.create_ancestor(customer_ancestor("job-1", 2, "Robert Smith", birth_date="1930"))
    store.create_ancestor(customer_ancestor("job-1", 3, "Mary Jones"))
    store.create_ancestor(
        stored_ancestor("job-1", 4, "William Smith", birth_date="1902", birth_place="Derby, Derbyshire")
    )
    store.create_ancestor(
        stored_ancestor("job-1", 5, "Ada Brown (not found)", score=0, state=PositionState.NOT_FOUND, source_person_id="")
    )
    return store
