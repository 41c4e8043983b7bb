"""Civil-registration cross-reference run before reviewers see the tree."""
from __future__ import annotations

import structlog

from ..models.ancestor import Ancestor, spouse_of
from ..models.candidate import VitalEntry
from ..sources.base import AuthenticationError, RecordSource, SourceError
from ..sources.freebmd import FIRST_INDEXED_YEAR
from ..store import RecordStore
from ..utils.normalize import extract_year, first_given_name, parse_name_parts

logger = structlog.get_logger(__name__)

PRE_INDEX_NOTE = f"Pre-{FIRST_INDEXED_YEAR}: outside civil registration range"


def _matched(entry: VitalEntry) -> dict:
    return {
        "matched": True,
        "entry": entry.display,
        "year": entry.year,
        "quarter": entry.quarter,
        "district": entry.district,
        "spouse_surname": entry.spouse_surname or None,
    }


async def _lookup(label: str, ancestor: Ancestor, call) -> dict:
    try:
        entry = await call
    except AuthenticationError:
        raise
    except SourceError as e:
        logger.warning("review.cross_reference_failed", asc=ancestor.ascendancy_number, kind=label, error=str(e))
        return {"matched": False, "error": str(e)}
    if entry is None:
        return {"matched": False}
    return _matched(entry)


async def cross_reference_position(ancestor: Ancestor, spouse: Ancestor | None, confirmer: RecordSource) -> dict:
    """Birth, death and marriage index results for one position."""
    birth_year = extract_year(ancestor.birth_date)
    death_year = extract_year(ancestor.death_date)
    if birth_year and birth_year < FIRST_INDEXED_YEAR:
        return {"birth": None, "death": None, "marriage": None, "note": PRE_INDEX_NOTE}

    given, surname = parse_name_parts(ancestor.name)
    first = first_given_name(given)
    results: dict = {"birth": None, "death": None, "marriage": None}
    if not first or not surname:
        return results

    if birth_year:
        results["birth"] = await _lookup(
            "birth", ancestor, confirmer.confirm_birth(first, surname, birth_year, ancestor.birth_place)
        )
        results["birth"].setdefault("searched", f"{first} {surname} ~{birth_year}")
    if death_year:
        results["death"] = await _lookup("death", ancestor, confirmer.confirm_death(first, surname, death_year))
        results["death"].setdefault("searched", f"{first} {surname} ~{death_year}")
    if spouse is not None and birth_year and not spouse.is_placeholder:
        spouse_surname = parse_name_parts(spouse.name)[1]
        spouse_year = extract_year(spouse.birth_date) or birth_year
        year_from = max(birth_year, spouse_year) + 16
        year_to = min(birth_year + 45, death_year or birth_year + 45)
        results["marriage"] = await _lookup(
            "marriage",
            ancestor,
            confirmer.find_marriage(surname, first, spouse_surname, year_from, year_to),
        )
        results["marriage"].setdefault("searched", f"{surname} / {spouse_surname}")
    return results


async def cross_reference_job(store: RecordStore, job_id: str, confirmer: RecordSource) -> int:
    """Store cross-reference results on every non-subject position. Returns positions checked."""
    ancestors = store.list_ancestors(job_id)
    by_asc = {a.ascendancy_number: a for a in ancestors}
    checked = 0
    for ancestor in ancestors:
        asc = ancestor.ascendancy_number
        if asc == 1 or ancestor.is_placeholder:
            continue
        results = await cross_reference_position(ancestor, by_asc.get(spouse_of(asc)), confirmer)
        store.update_ancestor(job_id, asc, {"confirmation_results": results})
        checked += 1
        store.update_job(job_id, progress_message=f"Cross-reference: {ancestor.name}", progress_done=checked)
    logger.info("review.cross_reference_complete", positions=checked)
    return checked
