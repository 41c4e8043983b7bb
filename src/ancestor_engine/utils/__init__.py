"""Utility modules for the ancestor engine."""

from ancestor_engine.utils.name_variants import (
    GIVEN_NAME_VARIANTS,
    NameVariants,
    generate_variants,
    given_name_variants,
    is_name_variant,
    soundex,
    surname_variants,
    surnames_equivalent,
)
from ancestor_engine.utils.normalize import (
    ParsedDate,
    extract_year,
    normalize_name,
    parse_date,
    parse_name_parts,
    strip_not_found,
    year_difference,
)
from ancestor_engine.utils.places import (
    PlaceMatch,
    StaticGazetteer,
    extract_district,
    is_clearly_non_uk,
    is_non_uk_place,
    is_uk_place,
    place_specificity,
    sanitize_place_name,
)

__all__ = [
    # Name variants
    "GIVEN_NAME_VARIANTS",
    "NameVariants",
    "generate_variants",
    "given_name_variants",
    "is_name_variant",
    "soundex",
    "surname_variants",
    "surnames_equivalent",
    # Normalization
    "ParsedDate",
    "extract_year",
    "normalize_name",
    "parse_date",
    "parse_name_parts",
    "strip_not_found",
    "year_difference",
    # Places
    "PlaceMatch",
    "StaticGazetteer",
    "extract_district",
    "is_clearly_non_uk",
    "is_non_uk_place",
    "is_uk_place",
    "place_specificity",
    "sanitize_place_name",
]
