"""Name variant generation for matching and search expansion.

Provides:
- Soundex for phonetic surname comparison
- A UK/English given-name nickname table with reverse lookup
- Rule-based surname spelling variants (Mac/Mc, trailing e, son/sen, ...)
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from .normalize import first_given_name, normalize_name


def soundex(name: str) -> str:
    """Generate Soundex code for a name.

    Examples:
        soundex("Robert") -> "R163"
        soundex("Rupert") -> "R163"
        soundex("Sorrell") -> "S640"

    Args:
        name: Name to encode

    Returns:
        4-character Soundex code (letter + 3 digits), or "" for empty input
    """
    if not name:
        return ""

    name = re.sub(r"[^A-Za-z]", "", name.upper())
    if not name:
        return ""

    soundex_map = {
        "B": "1", "F": "1", "P": "1", "V": "1",
        "C": "2", "G": "2", "J": "2", "K": "2", "Q": "2", "S": "2", "X": "2", "Z": "2",
        "D": "3", "T": "3",
        "L": "4",
        "M": "5", "N": "5",
        "R": "6",
    }

    code = name[0]
    prev_digit = soundex_map.get(name[0], "0")

    for char in name[1:]:
        digit = soundex_map.get(char, "0")
        if digit != "0" and digit != prev_digit:
            code += digit
        # H and W do not separate letters with the same code
        if char not in "HW":
            prev_digit = digit

    return (code + "000")[:4]


GIVEN_NAME_VARIANTS: dict[str, list[str]] = {
    "william": ["bill", "will", "wm", "billy", "willie"],
    "elizabeth": ["betty", "bess", "liz", "eliza", "beth", "lizzie", "betsy", "eliz"],
    "margaret": ["peggy", "maggie", "meg", "marge", "madge", "margie", "margt"],
    "james": ["jim", "jas", "jimmy", "jamie"],
    "robert": ["bob", "rob", "bert", "bobby", "robbie", "robt"],
    "richard": ["dick", "rick", "richie", "richd"],
    "thomas": ["tom", "thos", "tommy"],
    "henry": ["harry", "hal"],
    "edward": ["ted", "ned", "ed", "eddie", "teddy", "edwd"],
    "frederick": ["fred", "freddy", "freddie", "fredk"],
    "janet": ["jan", "janice", "jennet"],
    "catherine": ["kate", "kathy", "katherine", "kathryn", "kitty", "cath"],
    "kathleen": ["kate", "katie", "kath"],
    "john": ["jack", "jno", "johnny", "jon"],
    "charles": ["charlie", "chas", "chuck"],
    "walter": ["walt", "wally", "wat"],
    "george": ["geo"],
    "joseph": ["joe", "jos"],
    "samuel": ["sam", "saml"],
    "benjamin": ["ben", "benj"],
    "alexander": ["alex", "alec", "sandy"],
    "andrew": ["drew", "andy"],
    "dorothy": ["dot", "dolly", "dora"],
    "florence": ["flo", "flossie", "florrie"],
    "mary": ["polly", "molly", "may", "mamie", "maria", "marie"],
    "sarah": ["sally", "sadie"],
    "ann": ["annie", "anna", "nan", "nancy", "anne"],
    "alice": ["ally", "allie"],
    "frances": ["fanny", "fran"],
    "helen": ["nell", "nellie", "ellen", "ella"],
    "martha": ["patty", "matty"],
    "eleanor": ["nell", "nelly", "nora"],
    "susannah": ["susan", "sue", "sukey"],
    "harriet": ["hattie", "hetty"],
    "albert": ["bert", "al", "bertie"],
    "herbert": ["herb", "bert", "bertie"],
    "arthur": ["art"],
    "leonard": ["len", "lenny"],
    "alfred": ["alf", "alfie"],
    "ernest": ["ernie"],
    "harold": ["harry", "hal"],
    "reginald": ["reg", "reggie"],
    "ronald": ["ron", "ronnie"],
    "donald": ["don", "donnie"],
    "gerald": ["gerry", "jerry"],
    "norman": ["norm"],
    "alan": ["al", "allan", "allen"],
    "ethel": ["eth"],
    "joan": ["joanie"],
}

_VARIANT_REVERSE: dict[str, list[str]] = {}
for _canonical, _variants in GIVEN_NAME_VARIANTS.items():
    for _v in _variants:
        _VARIANT_REVERSE.setdefault(_v, []).append(_canonical)

# (pattern, replacement); each rule is applied once to the lowercased surname
SURNAME_RULES: list[tuple[str, str]] = [
    (r"^mac", "mc"),
    (r"^mc", "mac"),
    (r"e$", ""),
    (r"$", "e"),
    (r"son$", "sen"),
    (r"sen$", "son"),
    (r"y$", "ey"),
    (r"ey$", "y"),
    (r"th", "t"),
    (r"(?<!t)t(?!h)", "th"),
    (r"ph", "f"),
    (r"f", "ph"),
    (r"oo", "ou"),
    (r"ou", "oo"),
]


@dataclass
class NameVariants:
    """Container for name variants and their sources."""
    original: str
    soundex_code: str
    spelling_variants: list[str]
    nickname_variants: list[str]

    @property
    def all_variants(self) -> list[str]:
        return sorted(set(self.spelling_variants) | set(self.nickname_variants))


def given_name_variants(given_name: str | None) -> list[str]:
    """Nickname / formal-name variants of the first given name, lowercased."""
    first = first_given_name(normalize_name(given_name))
    if not first:
        return []
    variants: set[str] = set(GIVEN_NAME_VARIANTS.get(first, []))
    for canonical in _VARIANT_REVERSE.get(first, []):
        variants.add(canonical)
        variants.update(GIVEN_NAME_VARIANTS.get(canonical, []))
    variants.discard(first)
    return sorted(variants)


def is_name_variant(a: str | None, b: str | None) -> bool:
    """True when the first given names are equal or nickname variants."""
    first_a = first_given_name(normalize_name(a))
    first_b = first_given_name(normalize_name(b))
    if not first_a or not first_b:
        return False
    if first_a == first_b:
        return True
    return first_b in given_name_variants(first_a)


def surname_variants(surname: str | None) -> list[str]:
    """Spelling variants of a surname, capitalised, longer than two letters."""
    if not surname:
        return []
    base = surname.strip().lower()
    found: list[str] = []
    for pattern, replacement in SURNAME_RULES:
        variant = re.sub(pattern, replacement, base, count=1)
        if variant != base and len(variant) > 2:
            capitalised = variant[0].upper() + variant[1:]
            if capitalised not in found:
                found.append(capitalised)
    return found


def surnames_equivalent(a: str | None, b: str | None) -> bool:
    """Exact, rule-variant or Soundex-equal surnames."""
    na, nb = normalize_name(a), normalize_name(b)
    if not na or not nb:
        return False
    if na == nb:
        return True
    if nb in (v.lower() for v in surname_variants(na)):
        return True
    return soundex(na) == soundex(nb)


def generate_variants(given_name: str | None, surname: str | None) -> dict[str, NameVariants]:
    """Variants for both halves of a name, keyed "given" and "surname"."""
    return {
        "given": NameVariants(
            original=given_name or "",
            soundex_code=soundex(given_name or ""),
            spelling_variants=[],
            nickname_variants=given_name_variants(given_name),
        ),
        "surname": NameVariants(
            original=surname or "",
            soundex_code=soundex(surname or ""),
            spelling_variants=surname_variants(surname),
            nickname_variants=[],
        ),
    }
