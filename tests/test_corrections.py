"""Tests for reviewer correction parsing, matching and application."""

import pytest

from ancestor_engine.models.ancestor import ConfidenceLevel
from ancestor_engine.review.corrections import (
    ParsedCorrection,
    apply_field_change,
    confirmation_supports,
    corrections_agree,
    fuzzy_match_correction,
    parse_correction,
)

from conftest import stored_ancestor


class TestParseCorrection:
    """Only explicit phrasings yield a structured correction."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Birth year should be 1903", ParsedCorrection("birth_date", "1903")),
            ("birth date: ~1903", ParsedCorrection("birth_date", "1903")),
            ("Death year -> 1961", ParsedCorrection("death_date", "1961")),
            ("Birth place should be Belper, Derbyshire.", ParsedCorrection("birth_place", "Belper, Derbyshire")),
            ("Death place to 'Ripley'", ParsedCorrection("death_place", "Ripley")),
        ],
    )
    def test_parsed(self, text, expected):
        assert parse_correction(text) == expected

    @pytest.mark.parametrize(
        "text",
        [None, "", "Looks fine", "Birth year should be around 1903", "Check the 1911 census"],
    )
    def test_not_parsed(self, text):
        assert parse_correction(text) is None


class TestFuzzyMatch:
    def test_same_after_normalising(self):
        assert fuzzy_match_correction("Birth year should be 1903", "birth year should be 1903.")

    def test_containment(self):
        assert fuzzy_match_correction("Birth year should be 1903", "The birth year should be 1903 per the GRO index")

    def test_same_year_shared_words(self):
        assert fuzzy_match_correction("Birth year 1903 per GRO", "Change birth year to 1903")

    def test_different_years(self):
        assert not fuzzy_match_correction("Birth year should be 1903", "Birth year should be 1905")

    def test_blank(self):
        assert not fuzzy_match_correction(None, "Birth year should be 1903")
        assert not fuzzy_match_correction("...", "Birth year should be 1903")

    def test_place_prefix_is_not_containment(self):
        assert not fuzzy_match_correction("Birth place should be Derby", "Birth place should be Derbyshire")


class TestCorrectionsAgree:
    """Agreement needs the same field and the same value, not just similar text."""

    def test_same_value_different_wording(self):
        assert corrections_agree("Birth year should be 1903", "The birth year should be 1903 per the GRO index")

    def test_place_case_and_punctuation(self):
        assert corrections_agree("Birth place should be Belper.", "birth place should be belper")

    def test_different_places(self):
        assert not corrections_agree("Birth place should be Derby", "Birth place should be Derbyshire")

    def test_contained_text_with_longer_value(self):
        assert not corrections_agree("Birth place should be Derby", "Birth place should be Derby, Derbyshire")

    def test_unparsed_other_side(self):
        assert fuzzy_match_correction("Birth year 1903 per GRO", "Birth year should be 1903 per GRO")
        assert not corrections_agree("Birth year 1903 per GRO", "Birth year should be 1903 per GRO")

    def test_different_fields(self):
        assert not corrections_agree("Birth year should be 1903", "Death year should be 1903")


class TestConfirmationSupports:
    """Corrections need the matching index entry."""

    RESULTS = {
        "birth": {"matched": True, "year": 1903, "district": "Belper"},
        "death": {"matched": False},
    }

    def test_birth_year_confirmed(self):
        assert confirmation_supports(ParsedCorrection("birth_date", "1903"), self.RESULTS)

    def test_birth_year_different(self):
        assert not confirmation_supports(ParsedCorrection("birth_date", "1904"), self.RESULTS)

    def test_birth_place_confirmed_by_district(self):
        assert confirmation_supports(ParsedCorrection("birth_place", "Belper, Derbyshire"), self.RESULTS)
        assert not confirmation_supports(ParsedCorrection("birth_place", "Leeds, Yorkshire"), self.RESULTS)

    def test_unmatched_index_does_not_count(self):
        assert not confirmation_supports(ParsedCorrection("death_date", "1961"), self.RESULTS)

    def test_birth_match_does_not_confirm_death(self):
        results = {"birth": {"matched": True, "year": 1961, "district": "Belper"}}
        assert not confirmation_supports(ParsedCorrection("death_date", "1961"), results)

    def test_no_results(self):
        assert not confirmation_supports(ParsedCorrection("birth_date", "1903"), {})
        assert not confirmation_supports(ParsedCorrection("birth_date", "1903"), None)


class TestApplyFieldChange:
    def test_field_change_logged(self, store):
        ancestor = store.create_ancestor(stored_ancestor("job-1", 4, "William Smith", birth_date="1902"))
        entry = apply_field_change(
            store,
            ancestor,
            field="birth_date",
            new_value="1903",
            kind="field_correction",
            source="consensus",
            messages=["GRO shows 1903"],
            confirmed=True,
        )

        updated = store.get_ancestor("job-1", 4)
        assert updated.birth_date == "1903"
        assert updated.corrections_log == [entry]
        assert entry.old_value == "1902"
        assert entry.new_value == "1903"
        assert entry.confirmed
        assert not entry.undone

    def test_score_change_updates_level(self, store):
        ancestor = store.create_ancestor(stored_ancestor("job-1", 4, "William Smith", score=70))
        entry = apply_field_change(
            store,
            ancestor,
            field="confidence_score",
            new_value=76,
            kind="confidence_adjustment",
            source="consensus",
            deltas=[5, 6],
        )

        updated = store.get_ancestor("job-1", 4)
        assert updated.confidence_score == 76
        assert updated.confidence_level == ConfidenceLevel.PROBABLE
        assert entry.deltas == [5, 6]
        assert entry.old_value == 70
