"""Human review actions on a finished tree.

Every action records an admin feedback entry so later reviews of similar
ancestors (same surname, place or era) see what a human decided.
"""
from __future__ import annotations

from datetime import UTC, datetime

import structlog

from .models.ancestor import (
    Ancestor,
    CorrectionLogEntry,
    PositionState,
    expected_gender,
    level_for_score,
)
from .models.candidate import Candidate, SearchCandidateRecord
from .models.job import FeedbackAction, FeedbackEntry
from .models.review import Suggestion, SuggestionKind
from .review.corrections import CORRECTABLE_FIELDS, apply_field_change
from .store import RecordStore
from .utils.normalize import extract_year, parse_name_parts
from .utils.places import sanitize_place_name

logger = structlog.get_logger(__name__)

REJECTED_BY_ADMIN = "Manually rejected by admin"


class AdminActionError(Exception):
    """The requested admin action is not valid for this position."""


def _snapshot(a: Ancestor) -> dict:
    return {
        "name": a.name,
        "birth_date": a.birth_date,
        "birth_place": a.birth_place,
        "death_date": a.death_date,
        "death_place": a.death_place,
        "confidence_score": a.confidence_score,
        "source_person_id": a.source_person_id,
    }


class AdminActions:
    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def _position(self, job_id: str, asc: int) -> Ancestor:
        ancestor = self.store.get_ancestor(job_id, asc)
        if ancestor is None:
            raise AdminActionError(f"No position {asc} for job {job_id}")
        return ancestor

    def _feedback(self, ancestor: Ancestor, action: FeedbackAction, original: dict, corrected: dict) -> None:
        self.store.add_feedback(
            FeedbackEntry(
                job_id=ancestor.job_id,
                action=action,
                ascendancy_number=ancestor.ascendancy_number,
                ancestor_name=ancestor.name,
                surname=parse_name_parts(ancestor.name)[1],
                location=ancestor.birth_place,
                birth_year=extract_year(ancestor.birth_date),
                original=original,
                corrected=corrected,
            )
        )

    def accept_position(self, job_id: str, asc: int) -> None:
        ancestor = self._position(job_id, asc)
        self._feedback(ancestor, FeedbackAction.ACCEPT, _snapshot(ancestor), {})
        logger.info("admin.position_accepted", job_id=job_id, asc=asc, name=ancestor.name)

    def reject_position(self, job_id: str, asc: int, reason: str = REJECTED_BY_ADMIN) -> list[int]:
        """Blacklist every identifier behind the position and delete it with every ancestor above it.

        Returns the deleted positions.
        """
        if asc == 1:
            raise AdminActionError("The subject cannot be rejected")
        ancestor = self._position(job_id, asc)
        if ancestor.is_customer_data:
            raise AdminActionError(f"Position {asc} holds Customer Data and cannot be rejected")

        self._feedback(ancestor, FeedbackAction.REJECT, _snapshot(ancestor), {})
        deleted = self.store.delete_subtree(job_id, asc)
        identities = ancestor.identities()
        for person_id, provider in identities.items():
            self.store.add_rejected_source_id(job_id, person_id, provider, reason)
        if identities:
            person_id, provider = next(iter(identities.items()))
            # kept so the admin can still see what was removed
            self.store.record_search_candidate(
                SearchCandidateRecord(
                    job_id=job_id,
                    ascendancy_number=asc,
                    candidate=Candidate(
                        id=person_id,
                        provider=provider or "unknown",
                        source_ids=dict(ancestor.match_ids),
                        name=ancestor.name,
                        birth_date=ancestor.birth_date,
                        birth_place=ancestor.birth_place,
                        death_date=ancestor.death_date,
                        death_place=ancestor.death_place,
                    ),
                    computed_score=ancestor.confidence_score,
                    pass_name="previously_selected",
                    rejection_reason=reason,
                )
            )
        logger.info(
            "admin.position_rejected",
            job_id=job_id,
            asc=asc,
            blacklisted=sorted(identities),
            deleted=deleted,
        )
        return deleted

    def select_candidate(self, job_id: str, asc: int, candidate_id: str) -> Ancestor:
        """Promote a recorded search candidate to the position, replacing its subtree."""
        existing = self.store.get_ancestor(job_id, asc)
        if asc == 1 or (existing is not None and existing.is_customer_data):
            raise AdminActionError(f"Position {asc} is customer-supplied and cannot be replaced")

        records = self.store.list_search_candidates(job_id, asc)
        chosen = next((r for r in records if r.candidate.id == candidate_id), None)
        if chosen is None:
            raise AdminActionError(f"Candidate {candidate_id} was not considered for position {asc}")
        rejected = set(self.store.list_rejected_source_ids(job_id))
        if candidate_id in rejected or rejected & set(chosen.candidate.source_ids.values()):
            raise AdminActionError(f"Candidate {candidate_id} is blacklisted for this job")

        candidate = chosen.candidate
        if existing is not None:
            self._feedback(
                existing,
                FeedbackAction.SELECT_ALTERNATIVE,
                _snapshot(existing),
                {"name": candidate.name, "source_person_id": candidate.id, "computed_score": chosen.computed_score},
            )
            self.store.delete_subtree(job_id, asc)

        ancestor = Ancestor(
            job_id=job_id,
            ascendancy_number=asc,
            name=candidate.name,
            gender=candidate.gender if candidate.gender in ("Male", "Female") else (expected_gender(asc) or "Unknown"),
            birth_date=candidate.birth_date,
            birth_place=sanitize_place_name(candidate.birth_place),
            death_date=candidate.death_date,
            death_place=sanitize_place_name(candidate.death_place),
            confidence_score=chosen.computed_score,
            confidence_level=level_for_score(chosen.computed_score),
            state=PositionState.ACCEPTED,
            source_person_id=candidate.id,
            source_provider=candidate.provider,
            sources=list(candidate.sources),
            match_ids=dict(candidate.source_ids),
            discovery_method="admin",
            father_name=candidate.father_name,
            mother_name=candidate.mother_name,
            verification_notes="Manually selected from alternative candidates by admin",
        )
        self.store.save_ancestor(ancestor)

        self.store.clear_search_candidates(job_id, asc)
        for record in records:
            record.selected = record.candidate.id == candidate_id
            if record.selected:
                record.rejection_reason = None
            self.store.record_search_candidate(record)

        logger.info("admin.candidate_selected", job_id=job_id, asc=asc, candidate_id=candidate_id)
        return ancestor

    def undo_correction(self, job_id: str, asc: int, correction_id: str) -> CorrectionLogEntry:
        """Restore a logged change and mark it undone."""
        ancestor = self._position(job_id, asc)
        log = list(ancestor.corrections_log)
        index = next((i for i, e in enumerate(log) if e.id == correction_id), None)
        if index is None:
            raise AdminActionError(f"No correction {correction_id} on position {asc}")
        entry = log[index]
        if entry.undone:
            raise AdminActionError(f"Correction {correction_id} was already undone")

        entry = entry.model_copy(update={"undone": True, "undone_at": datetime.now(UTC)})
        log[index] = entry
        restored = entry.old_value if entry.old_value is not None else ("" if entry.field != "confidence_score" else 0)
        fields: dict = {entry.field: restored, "corrections_log": log}
        if entry.field == "confidence_score":
            fields["confidence_level"] = level_for_score(int(restored))
        self.store.update_ancestor(job_id, asc, fields)

        self._feedback(
            ancestor,
            FeedbackAction.REJECT,
            {"corrected_to": entry.new_value, "correction_type": entry.type, "field": entry.field},
            {"reverted_to": entry.old_value},
        )
        logger.info("admin.correction_undone", job_id=job_id, asc=asc, correction_id=correction_id, field=entry.field)
        return entry

    def apply_suggestion(self, job_id: str, suggestion: Suggestion) -> CorrectionLogEntry:
        """Apply a pending reviewer suggestion as an admin correction."""
        ancestor = self._position(job_id, suggestion.asc)
        if suggestion.asc == 1 or ancestor.is_customer_data:
            raise AdminActionError(f"Position {suggestion.asc} is customer-supplied and cannot be changed")

        if suggestion.kind == SuggestionKind.CONFIDENCE_ADJUSTMENT:
            if suggestion.suggested_value is None:
                raise AdminActionError("Confidence suggestion has no value")
            field, value = "confidence_score", int(suggestion.suggested_value)
        else:
            if suggestion.field not in CORRECTABLE_FIELDS or not suggestion.suggested_value:
                raise AdminActionError(f"Cannot apply a correction to {suggestion.field!r}")
            field, value = suggestion.field, str(suggestion.suggested_value)

        original = getattr(ancestor, field)
        entry = apply_field_change(
            self.store,
            ancestor,
            field=field,
            new_value=value,
            kind=suggestion.kind.value,
            source="admin",
            deltas=list(suggestion.deltas.values()),
            messages=list(suggestion.messages.values()),
            confirmed=suggestion.confirmed,
        )
        self._feedback(ancestor, FeedbackAction.CORRECT, {field: original}, {field: value})
        logger.info("admin.suggestion_applied", job_id=job_id, asc=suggestion.asc, field=field, value=value)
        return entry
