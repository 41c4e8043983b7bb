"""Ordered search passes, most specific first."""
from __future__ import annotations

from dataclasses import dataclass

from ..models.candidate import KnownFacts, SearchQuery
from ..utils.name_variants import given_name_variants, surname_variants
from ..utils.normalize import first_given_name, is_initials, parse_name_parts

EXACT = "exact"
RELAXED = "relaxed"
FIRST_GIVEN = "first_given_name"
INITIALS = "initials"
BIRTH_YEAR_ONLY = "birth_year_only"
SURNAME_VARIANTS = "surname_variants"
PLACE_ONLY = "place_only"
NICKNAMES = "nicknames"
SUPPLEMENTARY = "supplementary"

PASS_ORDER = (EXACT, RELAXED, FIRST_GIVEN, INITIALS, BIRTH_YEAR_ONLY, SURNAME_VARIANTS, PLACE_ONLY, NICKNAMES)


@dataclass
class SearchPass:
    name: str
    query: SearchQuery


def build_search_passes(known: KnownFacts, max_variants: int = 3, count: int = 10) -> list[SearchPass]:
    """Search passes for one position; identical queries are emitted once."""
    given = known.given_name.strip()
    surname = known.surname.strip()
    if not given and not surname:
        return []

    year = known.birth_year or known.estimated_birth_year
    year_is_estimate = known.birth_year is None and year is not None
    first = first_given_name(given)
    passes: list[SearchPass] = []

    def add(name: str, **fields) -> None:
        passes.append(SearchPass(name, SearchQuery(count=count, **fields)))

    father_given, father_surname = parse_name_parts(known.father_name)
    mother_given, mother_surname = parse_name_parts(known.mother_name)
    add(
        EXACT,
        given_name=given,
        surname=surname,
        birth_year=year,
        birth_year_range=5 if year_is_estimate else 1,
        birth_place=known.birth_place,
        death_year=known.death_year,
        father_given_name=father_given,
        father_surname=father_surname,
        mother_given_name=mother_given,
        mother_surname=mother_surname,
    )
    add(RELAXED, given_name=given, surname=surname, birth_year=year, birth_year_range=5)

    if first and first != given and not is_initials(given):
        add(FIRST_GIVEN, given_name=first, surname=surname, birth_year=year, birth_year_range=5)

    if is_initials(given) and surname:
        add(INITIALS, given_name=given.replace(".", " ").split()[0], surname=surname, birth_year=year, birth_year_range=5)

    if surname and year:
        add(BIRTH_YEAR_ONLY, surname=surname, birth_year=year, birth_year_range=5)

    for variant in surname_variants(surname)[:max_variants]:
        add(SURNAME_VARIANTS, given_name=first or given, surname=variant, birth_year=year, birth_year_range=5)

    if surname and known.birth_place:
        add(PLACE_ONLY, given_name=first, surname=surname, birth_place=known.birth_place)

    if first and not is_initials(given):
        for nickname in given_name_variants(first)[:max_variants]:
            add(NICKNAMES, given_name=nickname.capitalize(), surname=surname, birth_year=year, birth_year_range=5)

    seen: set[str] = set()
    unique: list[SearchPass] = []
    for p in passes:
        key = p.query.model_dump_json()
        if key not in seen:
            seen.add(key)
            unique.append(p)
    return unique


def supplementary_passes(passes: list[SearchPass]) -> list[SearchPass]:
    """Queries re-run against secondary adapters when the primary found too little."""
    return [SearchPass(SUPPLEMENTARY, p.query) for p in passes if p.name in (EXACT, RELAXED)]
