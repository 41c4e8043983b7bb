"""FamilySearch Family Tree connector (GEDCOM X JSON)."""
from __future__ import annotations

import structlog

from ..models.candidate import Candidate, ParentPair, SearchQuery
from ..net import RateLimitConfig
from .base import BaseSource, Capability

logger = structlog.get_logger(__name__)

SEARCH_ACCEPT = "application/x-gedcomx-atom+json"
TREE_ACCEPT = "application/x-gedcomx-v1+json"
PARENT_CHILD = "http://gedcomx.org/ParentChild"


class FamilySearchSource(BaseSource):
    """FamilySearch.org shared Family Tree.

    Requires an OAuth2 access token; obtaining one is the caller's business.
    Search results carry the parents FamilySearch has recorded for each hit,
    so a search candidate can seed the next generation directly.
    """

    name = "FamilySearch"
    base_url = "https://api.familysearch.org"
    capabilities = frozenset({Capability.SEARCH, Capability.TREE, Capability.CITATIONS})
    default_rate_limit = RateLimitConfig(max_calls=10, window_seconds=10.0, min_interval=0.5, max_retries=3)

    def requires_auth(self) -> bool:
        return True

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["Accept"] = TREE_ACCEPT
        return headers

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def _search_params(self, query: SearchQuery) -> dict[str, str]:
        params: dict[str, str] = {}
        if query.given_name:
            params["q.givenName"] = query.given_name
        if query.surname:
            params["q.surname"] = query.surname
        if query.birth_year:
            if query.birth_year_range:
                params["q.birthLikeDate.from"] = str(query.birth_year - query.birth_year_range)
                params["q.birthLikeDate.to"] = str(query.birth_year + query.birth_year_range)
            else:
                params["q.birthLikeDate"] = str(query.birth_year)
        if query.birth_place:
            params["q.birthLikePlace"] = query.birth_place
        if query.death_year:
            params["q.deathLikeDate"] = str(query.death_year)
        if query.father_given_name:
            params["q.fatherGivenName"] = query.father_given_name
        if query.father_surname:
            params["q.fatherSurname"] = query.father_surname
        if query.mother_given_name:
            params["q.motherGivenName"] = query.mother_given_name
        if query.mother_surname:
            params["q.motherSurname"] = query.mother_surname
        params["count"] = str(query.count)
        return params

    async def search_person(self, query: SearchQuery) -> list[Candidate]:
        """Search the Family Tree; returns candidates in FamilySearch's ranking order."""
        data = await self._request(
            "GET",
            f"{self.base_url}/platform/tree/search",
            params=self._search_params(query),
            headers={"Accept": SEARCH_ACCEPT},
        )
        if not data:
            return []
        candidates = self._parse_search(data)
        logger.debug("familysearch.search", query=query.describe(), results=len(candidates))
        return candidates

    def _parse_search(self, data: dict) -> list[Candidate]:
        candidates: list[Candidate] = []
        for entry in data.get("entries", []) or []:
            gedcomx = (entry.get("content") or {}).get("gedcomx") or {}
            persons = gedcomx.get("persons") or []
            if not persons:
                continue
            person = persons[0]
            by_id = {p.get("id"): p for p in persons}

            father: dict = {}
            mother: dict = {}
            for rel in gedcomx.get("relationships") or []:
                if rel.get("type") != PARENT_CHILD:
                    continue
                child_ref = rel.get("person2") or {}
                if child_ref.get("resourceId") != person.get("id") and person.get("id", "") not in (child_ref.get("resource") or ""):
                    continue
                parent = by_id.get((rel.get("person1") or {}).get("resourceId"))
                if not parent:
                    continue
                gender = ((parent.get("display") or {}).get("gender") or "").lower()
                if gender == "male" and not father:
                    father = parent
                elif gender == "female" and not mother:
                    mother = parent

            candidate = self._person_to_candidate(person, score=entry.get("score"))
            if candidate is None:
                continue
            candidate.father_name = (father.get("display") or {}).get("name", "") if father else ""
            candidate.mother_name = (mother.get("display") or {}).get("name", "") if mother else ""
            candidate.father_id = father.get("id", "") if father else ""
            candidate.mother_id = mother.get("id", "") if mother else ""
            candidates.append(candidate)
        return candidates

    def _person_to_candidate(self, person: dict, score: float | None = None, via_tree: bool = False) -> Candidate | None:
        person_id = person.get("id")
        if not person_id:
            return None
        display = person.get("display") or {}
        gender = display.get("gender") or ""
        if not gender:
            gender_type = (person.get("gender") or {}).get("type", "")
            if gender_type.endswith("Male") and not gender_type.endswith("Female"):
                gender = "Male"
            elif gender_type.endswith("Female"):
                gender = "Female"
        return Candidate(
            id=person_id,
            provider=self.name,
            name=display.get("name") or "Unknown",
            gender=gender.capitalize() if gender else "Unknown",
            birth_date=display.get("birthDate") or "",
            birth_place=display.get("birthPlace") or "",
            death_date=display.get("deathDate") or "",
            death_place=display.get("deathPlace") or "",
            provider_score=score,
            via_tree=via_tree,
            raw={"ascendancy": display.get("ascendancyNumber")} if display.get("ascendancyNumber") else {},
        )

    # ------------------------------------------------------------------
    # Tree
    # ------------------------------------------------------------------

    async def get_parents(self, person_id: str) -> ParentPair:
        """Recorded parents, preferring the biological relationship."""
        data = await self._request("GET", f"{self.base_url}/platform/tree/persons/{person_id}/parents")
        if not data:
            return ParentPair()

        by_id = {p.get("id"): p for p in data.get("persons") or []}
        relationships = data.get("childAndParentsRelationships") or []
        if not relationships:
            return ParentPair()
        rel = next(
            (r for r in relationships if not r.get("type") or "Biological" in r["type"] or "Birth" in r["type"]),
            relationships[0],
        )

        parent_ids: list[str] = []
        for key in ("father", "mother", "parent1", "parent2"):
            pid = (rel.get(key) or {}).get("resourceId")
            if pid and pid not in parent_ids:
                parent_ids.append(pid)

        pair = ParentPair()
        for pid in parent_ids:
            person = by_id.get(pid)
            if not person:
                continue
            candidate = self._person_to_candidate(person, via_tree=True)
            if candidate is None:
                continue
            if candidate.gender == "Male" and pair.father is None:
                pair.father = candidate
            elif candidate.gender == "Female" and pair.mother is None:
                pair.mother = candidate
            elif pair.father is None:
                pair.father = candidate
            elif pair.mother is None:
                pair.mother = candidate
        return pair

    async def get_ancestry(self, person_id: str, generations: int = 1) -> list[Candidate]:
        """Ancestry pedigree; each candidate's ``raw["ascendancy"]`` is relative to ``person_id``."""
        data = await self._request(
            "GET",
            f"{self.base_url}/platform/tree/ancestry",
            params={"person": person_id, "generations": str(generations)},
        )
        if not data:
            return []
        out: list[Candidate] = []
        for person in data.get("persons") or []:
            if person.get("id") == person_id:
                continue
            candidate = self._person_to_candidate(person, via_tree=True)
            if candidate is not None:
                out.append(candidate)
        return out

    # ------------------------------------------------------------------
    # Citations
    # ------------------------------------------------------------------

    async def get_person_sources(self, person_id: str) -> list[dict[str, str]]:
        """Source citations attached to a tree person."""
        data = await self._request("GET", f"{self.base_url}/platform/tree/persons/{person_id}/sources")
        if not data:
            return []

        descriptions = data.get("sourceDescriptions") or []
        by_id = {d.get("id"): d for d in descriptions}
        refs = ((data.get("persons") or [{}])[0]).get("sources") or []

        def _describe(desc: dict, fallback: str = "") -> dict[str, str]:
            titles = desc.get("titles") or []
            citations = desc.get("citations") or []
            return {
                "title": (titles[0].get("value") if titles else "") or desc.get("about") or fallback or "Unknown source",
                "url": desc.get("about") or "",
                "citation": citations[0].get("value", "") if citations else "",
            }

        if refs and descriptions:
            out = []
            for ref in refs:
                desc_id = ref.get("descriptionId") or ""
                if not desc_id and ref.get("description"):
                    desc_id = ref["description"].rsplit("#", 1)[-1]
                out.append(_describe(by_id.get(desc_id, {}), desc_id))
            return out
        return [_describe(d) for d in descriptions]
