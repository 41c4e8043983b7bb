"""Geni World Family Tree connector."""
from __future__ import annotations

from typing import Any

import structlog

from ..models.candidate import Candidate, ParentPair, SearchQuery
from ..net import RateLimitConfig
from .base import BaseSource, Capability

logger = structlog.get_logger(__name__)


def _node_id(ref: Any) -> str:
    """Last path segment of a Geni node reference."""
    if not ref:
        return ""
    ref = str(ref)
    if "/" in ref:
        return ref.rstrip("/").rsplit("/", 1)[-1]
    return ref


def _profile_ref(person_id: str) -> str:
    return person_id if person_id.startswith("profile") else f"profile-{person_id}"


def _parse_gender(raw: str | None) -> str:
    g = (raw or "").strip().lower()
    if g in ("male", "m"):
        return "Male"
    if g in ("female", "f"):
        return "Female"
    return g.capitalize() if g else "Unknown"


def _event_date(event: dict | None) -> str:
    if not isinstance(event, dict):
        return ""
    date = event.get("date")
    if isinstance(date, dict):
        year, month, day = date.get("year"), date.get("month"), date.get("day")
        if year and month and day:
            return f"{int(day):02d}/{int(month):02d}/{year}"
        if year and month:
            return f"{int(month):02d}/{year}"
        return str(year) if year else ""
    return date if isinstance(date, str) else ""


def _event_place(event: dict | None) -> str:
    if not isinstance(event, dict):
        return ""
    location = event.get("location")
    if isinstance(location, dict):
        parts: list[str] = []
        for key in ("city", "state", "country"):
            value = location.get(key)
            if value and value not in parts:
                parts.append(value)
        return ", ".join(parts)
    return location if isinstance(location, str) else ""


def build_parent_map(unions: dict[str, dict], profiles: dict[str, dict]) -> dict[str, dict[str, str]]:
    """Child profile id -> {"father": id, "mother": id} from Geni union nodes.

    Handles the current ``edges`` format and the older ``partners``/``children``
    arrays.
    """
    parent_map: dict[str, dict[str, str]] = {}
    for union in unions.values():
        if not isinstance(union, dict):
            continue
        partners: list[str] = []
        children: list[str] = []
        for edge_id, info in (union.get("edges") or {}).items():
            if not isinstance(info, dict):
                continue
            if info.get("rel") == "partner":
                partners.append(_node_id(edge_id))
            elif info.get("rel") == "child":
                children.append(_node_id(edge_id))
        if not partners and not children:
            partners = [_node_id(p) for p in union.get("partners") or [] if p]
            children = [_node_id(c) for c in union.get("children") or [] if c]
        if not partners or not children:
            continue

        father_id = mother_id = None
        for pid in partners:
            gender = _parse_gender((profiles.get(pid) or {}).get("gender"))
            if gender == "Male" and not father_id:
                father_id = pid
            elif gender == "Female" and not mother_id:
                mother_id = pid

        for cid in children:
            links = parent_map.setdefault(cid, {})
            if father_id:
                links["father"] = father_id
            if mother_id:
                links["mother"] = mother_id
    return parent_map


def _split_nodes(nodes: dict) -> tuple[dict[str, dict], dict[str, dict]]:
    profiles: dict[str, dict] = {}
    unions: dict[str, dict] = {}
    for node_id, node in (nodes or {}).items():
        if not isinstance(node, dict):
            continue
        if node_id.startswith("union-"):
            unions[node_id] = node
        elif node_id.startswith("profile-"):
            profiles[node_id] = node
    return profiles, unions


class GeniSource(BaseSource):
    """Geni.com World Family Tree.

    Needs a user OAuth token. Geni only searches by name, so date and place
    filtering is left to the scorer.
    """

    name = "Geni"
    base_url = "https://www.geni.com/api"
    capabilities = frozenset({Capability.SEARCH, Capability.TREE})
    default_rate_limit = RateLimitConfig(max_calls=1, window_seconds=1.0, min_interval=1.0, max_retries=3)

    def requires_auth(self) -> bool:
        return True

    def _headers(self) -> dict[str, str]:
        # Geni takes the token as a query parameter
        return {"Accept": "application/json"}

    def _params(self, **params: Any) -> dict[str, Any]:
        return {"access_token": self.access_token or "", **params}

    def _profile_to_candidate(self, data: dict, via_tree: bool = False) -> Candidate | None:
        profile_id = str(data.get("id") or "")
        if not profile_id:
            return None
        name = " ".join(p for p in (data.get("first_name"), data.get("middle_name"), data.get("last_name")) if p)
        return Candidate(
            id=profile_id,
            provider=self.name,
            name=name or data.get("maiden_name") or "Unknown",
            gender=_parse_gender(data.get("gender")),
            birth_date=_event_date(data.get("birth")),
            birth_place=_event_place(data.get("birth")),
            death_date=_event_date(data.get("death")),
            death_place=_event_place(data.get("death")),
            via_tree=via_tree,
        )

    async def search_person(self, query: SearchQuery) -> list[Candidate]:
        names = " ".join(p for p in (query.given_name, query.surname) if p)
        if not names:
            return []
        data = await self._request("GET", f"{self.base_url}/profile/search", params=self._params(names=names))
        if not data:
            return []
        items = data.get("results") if isinstance(data.get("results"), list) else [data]

        candidates: list[Candidate] = []
        for item in items:
            candidate = self._profile_to_candidate(item)
            if candidate is None:
                continue
            # Geni ignores dates in search; trim the obvious misses here
            if query.birth_year and candidate.birth_year:
                if abs(candidate.birth_year - query.birth_year) > max(query.birth_year_range, 10):
                    continue
            candidates.append(candidate)
        return candidates[: query.count]

    async def get_parents(self, person_id: str) -> ParentPair:
        ref = _profile_ref(person_id)
        data = await self._request("GET", f"{self.base_url}/{ref}/immediate-family", params=self._params())
        if not data or not data.get("nodes"):
            return ParentPair()

        focus_raw = data.get("focus")
        if isinstance(focus_raw, dict):
            focus = str(focus_raw.get("id") or "")
        else:
            focus = _node_id(focus_raw)

        profiles, unions = _split_nodes(data["nodes"])
        parent_map = build_parent_map(unions, profiles)
        links = parent_map.get(focus) or parent_map.get(ref) or parent_map.get(person_id) or {}

        pair = ParentPair()
        if links.get("father") in profiles:
            pair.father = self._profile_to_candidate(profiles[links["father"]], via_tree=True)
        if links.get("mother") in profiles:
            pair.mother = self._profile_to_candidate(profiles[links["mother"]], via_tree=True)
        return pair

    async def get_ancestry(self, person_id: str, generations: int = 1) -> list[Candidate]:
        """Profiles from ``/ancestors``; direct parents are tagged ``raw["ascendancy"]`` 2 / 3."""
        ref = _profile_ref(person_id)
        data = await self._request(
            "GET", f"{self.base_url}/{ref}/ancestors", params=self._params(generations=generations)
        )
        if not data or data.get("error") or not data.get("nodes"):
            return []

        profiles, unions = _split_nodes(data["nodes"])
        parent_map = build_parent_map(unions, profiles)
        direct = parent_map.get(ref, {})

        out: list[Candidate] = []
        for node_id, profile in profiles.items():
            if node_id == ref:
                continue
            candidate = self._profile_to_candidate(profile, via_tree=True)
            if candidate is None:
                continue
            links = parent_map.get(node_id, {})
            candidate.father_id = links.get("father", "")
            candidate.mother_id = links.get("mother", "")
            if node_id == direct.get("father"):
                candidate.raw["ascendancy"] = 2
            elif node_id == direct.get("mother"):
                candidate.raw["ascendancy"] = 3
            out.append(candidate)
        return out
