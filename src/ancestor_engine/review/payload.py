"""Structured input handed to every reviewer."""
from __future__ import annotations

from ..models.ancestor import Ancestor, ConfidenceLevel, child_of, positions_for_depth, role_label
from ..store import RecordStore
from ..utils.normalize import extract_year, parse_name_parts


def _ancestor_entry(a: Ancestor) -> dict:
    return {
        "asc": a.ascendancy_number,
        "role": role_label(a.ascendancy_number),
        "name": a.name,
        "gender": a.gender,
        "birth_date": a.birth_date or None,
        "birth_place": a.birth_place or None,
        "death_date": a.death_date or None,
        "death_place": a.death_place or None,
        "confidence_score": a.confidence_score,
        "confidence_level": a.confidence_level.value,
        "source_person_id": a.source_person_id or None,
        "source_provider": a.source_provider or None,
        "evidence_chain": [c.model_dump(exclude={"weight"}) for c in a.evidence_chain],
        "freebmd": a.confirmation_results,
        "source_count": len(a.sources),
        "discovery_method": a.discovery_method or "unknown",
    }


def confidence_statistics(ancestors: list[Ancestor], total_expected: int) -> dict:
    counts = {level: 0 for level in ConfidenceLevel}
    for a in ancestors:
        counts[a.confidence_level] += 1
    return {
        "total_found": sum(1 for a in ancestors if not a.is_placeholder),
        "total_placeholders": sum(1 for a in ancestors if a.is_placeholder),
        "total_expected": total_expected,
        "by_confidence": {level.value.lower().replace(" ", "_"): n for level, n in counts.items()},
    }


def build_review_payload(store: RecordStore, job_id: str, max_feedback: int = 50) -> dict:
    """Job summary, every position, empty parent slots, statistics and feedback."""
    job = store.get_job(job_id)
    if job is None:
        raise ValueError(f"Unknown job {job_id}")
    ancestors = store.list_ancestors(job_id)
    by_asc = {a.ascendancy_number: a for a in ancestors}
    max_asc = positions_for_depth(job.generations).stop - 1

    entries: list[dict] = []
    empty_slots: list[dict] = []
    for asc in range(1, max_asc + 1):
        a = by_asc.get(asc)
        if a is not None:
            entries.append(_ancestor_entry(a))
            continue
        child = by_asc.get(child_of(asc)) if asc > 1 else None
        if child is not None:
            empty_slots.append(
                {
                    "asc": asc,
                    "role": role_label(asc),
                    "expected_parent_of": child.name,
                    "expected_parent_of_asc": child.ascendancy_number,
                }
            )

    surnames = {parse_name_parts(a.name)[1] for a in ancestors} - {""}
    locations = {a.birth_place for a in ancestors if a.birth_place}
    years = [y for y in (extract_year(a.birth_date) for a in ancestors) if y]
    feedback = store.list_relevant_feedback(sorted(surnames), sorted(locations), years, limit=max_feedback)

    return {
        "job": {
            "id": job.id,
            "customer_name": job.customer_name,
            "generations": job.generations,
            "status": job.status.value,
        },
        "ancestors": entries,
        "empty_slots": empty_slots,
        "statistics": confidence_statistics(ancestors, max_asc),
        "admin_feedback_history": [
            {
                "action": f.action.value,
                "name": f.ancestor_name,
                "surname": f.surname,
                "location": f.location,
                "birth_year": f.birth_year,
                "original": f.original,
                "corrected": f.corrected,
                "date": f.created_at.isoformat(),
            }
            for f in feedback
        ],
    }
