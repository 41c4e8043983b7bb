"""Tests for human review actions."""

import pytest

from ancestor_engine.admin import REJECTED_BY_ADMIN, AdminActionError, AdminActions
from ancestor_engine.models.ancestor import ConfidenceLevel, PositionState
from ancestor_engine.models.candidate import Candidate, SearchCandidateRecord
from ancestor_engine.models.job import FeedbackAction
from ancestor_engine.models.review import Suggestion, SuggestionKind

from conftest import stored_ancestor


@pytest.fixture
def admin(tree):
    return AdminActions(tree)


@pytest.fixture
def alternatives(tree):
    """Two candidates considered for position 4, the first one selected."""
    for candidate_id, name, score, selected in (("FS-4", "William Smith", 70, True), ("FS-40", "Walter Smith", 60, False)):
        tree.record_search_candidate(
            SearchCandidateRecord(
                job_id="job-1",
                ascendancy_number=4,
                candidate=Candidate(
                    id=candidate_id,
                    provider="FamilySearch",
                    name=name,
                    birth_date="1901",
                    birth_place="Derby, Derbyshire",
                    father_name="George Smith",
                ),
                computed_score=score,
                pass_name="exact",
                selected=selected,
                rejection_reason=None if selected else "lower score",
            )
        )
    return tree


def feedback_actions(store):
    return [f.action for f in store.list_relevant_feedback(["Smith"])]


# =============================================================================
# Rejection
# =============================================================================


class TestRejectPosition:
    """Test subtree rejection and blacklisting."""

    def test_reject_deletes_subtree(self, tree, admin):
        tree.create_ancestor(stored_ancestor("job-1", 8, "George Smith"))
        tree.create_ancestor(stored_ancestor("job-1", 9, "Ellen Hall"))

        deleted = admin.reject_position("job-1", 4)

        assert deleted == [4, 8, 9]
        assert [a.ascendancy_number for a in tree.list_ancestors("job-1")] == [1, 2, 3, 5]
        assert "FS-4" in tree.list_rejected_source_ids("job-1")

    def test_every_merged_identifier_blacklisted(self, tree, admin):
        tree.update_ancestor("job-1", 4, {"match_ids": {"FamilySearch": "FS-4", "Geni": "G-4"}})
        admin.reject_position("job-1", 4)
        assert tree.list_rejected_source_ids("job-1") == {"FS-4", "G-4"}

    def test_search_only_match_blacklisted(self, tree, admin):
        tree.create_ancestor(
            stored_ancestor("job-1", 6, "Albert Jones", source_person_id="", source_provider="", match_ids={"FreeBMD": "BMD-6"})
        )
        admin.reject_position("job-1", 6)

        assert tree.list_rejected_source_ids("job-1") == {"BMD-6"}
        record = tree.list_search_candidates("job-1", 6)[0]
        assert record.candidate.id == "BMD-6"
        assert record.candidate.provider == "FreeBMD"

    def test_blacklisted_alias_cannot_be_selected(self, tree, admin):
        tree.record_search_candidate(
            SearchCandidateRecord(
                job_id="job-1",
                ascendancy_number=4,
                candidate=Candidate(id="FS-42", provider="FamilySearch", name="Bill Smith", source_ids={"Geni": "G-42"}),
                computed_score=60,
            )
        )
        tree.add_rejected_source_id("job-1", "G-42", "Geni", "wrong")
        with pytest.raises(AdminActionError, match="blacklisted"):
            admin.select_candidate("job-1", 4, "FS-42")

    def test_rejected_identity_stays_visible(self, tree, admin):
        admin.reject_position("job-1", 4, reason="Wrong William")
        records = tree.list_search_candidates("job-1", 4)
        assert records[0].candidate.id == "FS-4"
        assert records[0].pass_name == "previously_selected"
        assert records[0].rejection_reason == "Wrong William"

    def test_feedback_recorded(self, tree, admin):
        admin.reject_position("job-1", 4)
        feedback = tree.list_relevant_feedback(["Smith"])[0]
        assert feedback.action == FeedbackAction.REJECT
        assert feedback.original["source_person_id"] == "FS-4"
        assert feedback.location == "Derby, Derbyshire"

    def test_default_reason(self, tree, admin):
        admin.reject_position("job-1", 4)
        assert tree.list_search_candidates("job-1", 4)[0].rejection_reason == REJECTED_BY_ADMIN

    @pytest.mark.parametrize("asc", [1, 2, 6])
    def test_cannot_reject(self, admin, asc):
        with pytest.raises(AdminActionError):
            admin.reject_position("job-1", asc)


# =============================================================================
# Candidate selection
# =============================================================================


class TestSelectCandidate:
    """Test promoting an alternative candidate."""

    def test_select_alternative(self, alternatives, admin):
        alternatives.create_ancestor(stored_ancestor("job-1", 8, "George Smith"))

        ancestor = admin.select_candidate("job-1", 4, "FS-40")

        assert ancestor.name == "Walter Smith"
        assert ancestor.confidence_score == 60
        assert ancestor.confidence_level == ConfidenceLevel.POSSIBLE
        assert ancestor.state == PositionState.ACCEPTED
        assert ancestor.discovery_method == "admin"
        assert ancestor.gender == "Male"
        assert ancestor.father_name == "George Smith"
        assert alternatives.get_ancestor("job-1", 8) is None
        assert alternatives.get_ancestor("job-1", 4).source_person_id == "FS-40"

        records = {r.candidate.id: r for r in alternatives.list_search_candidates("job-1", 4)}
        assert records["FS-40"].selected
        assert records["FS-40"].rejection_reason is None
        assert not records["FS-4"].selected
        assert FeedbackAction.SELECT_ALTERNATIVE in feedback_actions(alternatives)

    def test_select_into_empty_position(self, alternatives, admin):
        alternatives.delete_subtree("job-1", 4)
        alternatives.record_search_candidate(
            SearchCandidateRecord(
                job_id="job-1",
                ascendancy_number=4,
                candidate=Candidate(id="FS-41", provider="Geni", name="Will Smith", gender="Male"),
                computed_score=58,
            )
        )
        ancestor = admin.select_candidate("job-1", 4, "FS-41")
        assert ancestor.source_provider == "Geni"
        assert feedback_actions(alternatives) == []

    def test_unknown_candidate(self, alternatives, admin):
        with pytest.raises(AdminActionError, match="was not considered"):
            admin.select_candidate("job-1", 4, "FS-99")

    def test_blacklisted_candidate(self, alternatives, admin):
        alternatives.add_rejected_source_id("job-1", "FS-40", "FamilySearch", "wrong")
        with pytest.raises(AdminActionError, match="blacklisted"):
            admin.select_candidate("job-1", 4, "FS-40")

    def test_customer_position(self, alternatives, admin):
        with pytest.raises(AdminActionError):
            admin.select_candidate("job-1", 2, "FS-40")


# =============================================================================
# Suggestions and undo
# =============================================================================


class TestSuggestionsAndUndo:
    """Pending suggestions can be applied and any logged change undone."""

    def test_apply_confidence_suggestion(self, tree, admin):
        suggestion = Suggestion(
            asc=4,
            kind=SuggestionKind.CONFIDENCE_ADJUSTMENT,
            current_value=70,
            suggested_value=76,
            deltas={"claude": 5, "gpt": 9},
        )
        entry = admin.apply_suggestion("job-1", suggestion)

        grandfather = tree.get_ancestor("job-1", 4)
        assert grandfather.confidence_score == 76
        assert grandfather.confidence_level == ConfidenceLevel.PROBABLE
        assert entry.source == "admin"
        assert entry.deltas == [5, 9]
        assert FeedbackAction.CORRECT in feedback_actions(tree)

    def test_apply_field_suggestion(self, tree, admin):
        suggestion = Suggestion(
            asc=4,
            kind=SuggestionKind.FIELD_CORRECTION,
            field="birth_place",
            current_value="Derby, Derbyshire",
            suggested_value="Belper, Derbyshire",
            messages={"claude": "GRO district is Belper"},
        )
        admin.apply_suggestion("job-1", suggestion)
        assert tree.get_ancestor("job-1", 4).birth_place == "Belper, Derbyshire"

    def test_uncorrectable_field(self, admin):
        suggestion = Suggestion(asc=4, kind=SuggestionKind.FIELD_CORRECTION, field="name", suggested_value="Bill Smith")
        with pytest.raises(AdminActionError):
            admin.apply_suggestion("job-1", suggestion)

    def test_customer_data_suggestion(self, admin):
        suggestion = Suggestion(asc=2, kind=SuggestionKind.CONFIDENCE_ADJUSTMENT, suggested_value=90)
        with pytest.raises(AdminActionError):
            admin.apply_suggestion("job-1", suggestion)

    def test_undo_restores_value(self, tree, admin):
        suggestion = Suggestion(
            asc=4, kind=SuggestionKind.FIELD_CORRECTION, field="birth_date", suggested_value="1903"
        )
        entry = admin.apply_suggestion("job-1", suggestion)

        undone = admin.undo_correction("job-1", 4, entry.id)

        grandfather = tree.get_ancestor("job-1", 4)
        assert grandfather.birth_date == "1902"
        assert undone.undone
        assert grandfather.corrections_log[0].undone
        assert grandfather.corrections_log[0].undone_at is not None

    def test_undo_score_restores_level(self, tree, admin):
        suggestion = Suggestion(asc=4, kind=SuggestionKind.CONFIDENCE_ADJUSTMENT, suggested_value=95)
        entry = admin.apply_suggestion("job-1", suggestion)
        admin.undo_correction("job-1", 4, entry.id)

        grandfather = tree.get_ancestor("job-1", 4)
        assert grandfather.confidence_score == 70
        assert grandfather.confidence_level == ConfidenceLevel.POSSIBLE

    def test_undo_twice(self, admin):
        suggestion = Suggestion(asc=4, kind=SuggestionKind.CONFIDENCE_ADJUSTMENT, suggested_value=75)
        entry = admin.apply_suggestion("job-1", suggestion)
        admin.undo_correction("job-1", 4, entry.id)
        with pytest.raises(AdminActionError, match="already undone"):
            admin.undo_correction("job-1", 4, entry.id)

    def test_undo_unknown(self, admin):
        with pytest.raises(AdminActionError):
            admin.undo_correction("job-1", 4, "nope")

    def test_accept_records_feedback(self, tree, admin):
        admin.accept_position("job-1", 4)
        assert feedback_actions(tree) == [FeedbackAction.ACCEPT]
