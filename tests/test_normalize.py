"""Tests for name, date and place normalization."""

import pytest

from ancestor_engine.utils.name_variants import (
    generate_variants,
    given_name_variants,
    is_name_variant,
    soundex,
    surname_variants,
    surnames_equivalent,
)
from ancestor_engine.utils.normalize import (
    extract_year,
    first_given_name,
    initials_of,
    is_initials,
    is_not_found_name,
    normalize_name,
    parse_date,
    parse_name_parts,
    strip_not_found,
    year_difference,
)
from ancestor_engine.utils.places import (
    PlaceMatch,
    extract_district,
    is_clearly_non_uk,
    is_non_uk_place,
    is_uk_place,
    parse_place_parts,
    place_specificity,
    sanitize_place_name,
)


# =============================================================================
# Dates
# =============================================================================


class TestParseDate:
    """Test genealogical date parsing."""

    def test_year_only(self):
        parsed = parse_date("1872")
        assert parsed.year == 1872
        assert parsed.precision == "year"

    def test_two_digit_year_after_cutoff_is_1900s(self):
        parsed = parse_date("01.09.59")
        assert (parsed.year, parsed.month, parsed.day) == (1959, 9, 1)
        assert parsed.precision == "exact"

    def test_two_digit_year_at_cutoff_is_2000s(self):
        assert parse_date("01/02/23").year == 2023

    def test_four_digit_day_first(self):
        parsed = parse_date("15-03-1920")
        assert (parsed.year, parsed.month, parsed.day) == (1920, 3, 15)

    def test_text_date(self):
        parsed = parse_date("15 March 1920")
        assert (parsed.year, parsed.month, parsed.day) == (1920, 3, 15)

    def test_month_year(self):
        parsed = parse_date("Sept 1901")
        assert parsed.precision == "month"

    def test_circa(self):
        parsed = parse_date("abt 1872")
        assert parsed.circa
        assert parsed.year == 1872

    def test_unrecognised_text(self):
        assert parse_date("sometime in spring") is None
        assert parse_date("") is None

    def test_extract_year_falls_back_to_search(self):
        assert extract_year("bef. 1850, Derby") == 1850
        assert extract_year(1901) == 1901
        assert extract_year("no year here") is None

    def test_year_difference(self):
        assert year_difference("1930", "abt 1932") == 2
        assert year_difference("1930", "") is None


# =============================================================================
# Names
# =============================================================================


class TestNames:
    """Test name normalization helpers."""

    def test_normalize_drops_nee_and_accents(self):
        assert normalize_name("  Mary née Jones ") == "mary jones"
        assert normalize_name("O'Brien") == "obrien"

    def test_not_found_marker(self):
        assert is_not_found_name("Ada Brown (not found)")
        assert strip_not_found("Ada Brown (not found)") == "Ada Brown"
        assert not is_not_found_name("Ada Brown")

    def test_parse_name_parts(self):
        assert parse_name_parts("Robert James Smith") == ("Robert James", "Smith")
        assert parse_name_parts("Wm. Smith (not found)") == ("Wm.", "Smith")
        assert parse_name_parts("Unknown (not found)") == ("", "")
        assert parse_name_parts("Cher") == ("Cher", "")
        assert parse_name_parts("") == ("", "")

    def test_first_given_name(self):
        assert first_given_name("J. William") == "J"
        assert first_given_name("Mary Ann") == "Mary"

    def test_initials(self):
        assert is_initials("J.W.")
        assert is_initials("J W")
        assert not is_initials("John")
        assert initials_of("John William") == "jw"


class TestNameVariants:
    """Test phonetic and nickname matching."""

    def test_soundex(self):
        assert soundex("Robert") == "R163"
        assert soundex("Rupert") == "R163"
        assert soundex("Smith") == soundex("Smyth")
        assert soundex("") == ""

    def test_given_name_variants_both_directions(self):
        assert "bill" in given_name_variants("William")
        assert "william" in given_name_variants("Bill")
        assert "bill" not in given_name_variants("Bill")

    def test_is_name_variant(self):
        assert is_name_variant("Bob", "Robert")
        assert is_name_variant("Robert James", "Robert")
        assert not is_name_variant("Robert", "Thomas")

    def test_surname_variants(self):
        variants = surname_variants("Smith")
        assert "Smithe" in variants
        assert "Smit" in variants
        assert all(len(v) > 2 for v in variants)

    def test_mac_prefix(self):
        assert "Mcdonald" in surname_variants("MacDonald")

    def test_surnames_equivalent(self):
        assert surnames_equivalent("Smith", "Smyth")
        assert surnames_equivalent("Brown", "Browne")
        assert not surnames_equivalent("Smith", "Jones")

    def test_generate_variants(self):
        variants = generate_variants("William", "Smith")
        assert "bill" in variants["given"].all_variants
        assert variants["surname"].soundex_code == "S530"


# =============================================================================
# Places
# =============================================================================


class TestPlaceDetection:
    """Test UK / non-UK detection."""

    @pytest.mark.parametrize(
        "place",
        ["Boston, Massachusetts, USA", "Toronto, Ontario, Canada", "Springfield, IL"],
    )
    def test_clearly_non_uk(self, place):
        assert is_clearly_non_uk(place)

    def test_uk_indicator_overrides(self):
        place = "Boston, Lincolnshire, England"
        assert is_uk_place(place)
        assert not is_clearly_non_uk(place)

    def test_blank(self):
        assert not is_non_uk_place("")
        assert not is_uk_place(None)


class TestPlaceSpecificity:
    """Test graduated place agreement."""

    def test_parse_parts_uses_gazetteer(self):
        parts = parse_place_parts("Belper")
        assert parts["town"] == "belper"
        assert parts["county"] == "derbyshire"

    def test_town(self):
        assert place_specificity("Derby, Derbyshire, England", "Derby") == PlaceMatch.TOWN

    def test_county(self):
        assert place_specificity("Belper, Derbyshire", "Derby") == PlaceMatch.COUNTY

    def test_country(self):
        assert place_specificity("Leeds, England", "Derby, England") == PlaceMatch.COUNTRY

    def test_partial(self):
        assert place_specificity("St Werburgh, Derby", "Derby") == PlaceMatch.PARTIAL

    def test_none(self):
        assert place_specificity("", "Derby") == PlaceMatch.NONE
        assert place_specificity("Leeds", "Plymouth") == PlaceMatch.NONE


class TestPlaceCleanup:
    def test_sanitize_translates_names(self):
        assert sanitize_place_name("Deorbyscir, Англия") == "Derbyshire, England"

    def test_sanitize_drops_untranslated_script(self):
        assert sanitize_place_name("Derby, 德比") == "Derby"

    def test_extract_district(self):
        assert extract_district("Derby, Derbyshire") == "Derby"
        assert extract_district("") == ""
