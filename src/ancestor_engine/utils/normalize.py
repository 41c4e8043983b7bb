"""Normalization utilities for names and dates.

Providers and customers write dates and names in many shapes ("abt 1872",
"01.09.59", "15 March 1920", "Wm. Smith (not found)"). Everything that
compares two facts goes through these helpers first.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass


@dataclass
class ParsedDate:
    """Structured date with precision tracking."""

    year: int
    month: int | None = None
    day: int | None = None
    circa: bool = False
    original: str = ""

    @property
    def precision(self) -> str:
        """Return date precision level."""
        if self.day and self.month:
            return "exact"
        if self.month:
            return "month"
        return "year"


MONTH_NAMES = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}

NOT_FOUND_SUFFIX = "(not found)"

_CIRCA_RE = re.compile(r"^(abt\.?|about|circa|c\.|c|ca\.?|~)\s*", re.IGNORECASE)
_DDMMYY_RE = re.compile(r"^(\d{1,2})[./-](\d{1,2})[./-](\d{2})$")
_DDMMYYYY_RE = re.compile(r"^(\d{1,2})[./-](\d{1,2})[./-](\d{4})$")
_TEXT_DATE_RE = re.compile(r"^(?:(\d{1,2})\s+)?([a-z]+)\.?\s+(\d{4})$", re.IGNORECASE)
_YEAR_RE = re.compile(r"\b(1[5-9]\d{2}|20[0-2]\d)\b")
_NOT_FOUND_RE = re.compile(r"\s*\(not found\)\s*$", re.IGNORECASE)


def parse_date(value: str | int | None) -> ParsedDate | None:
    """Parse a genealogical date string.

    Two-digit years are British day-first dates: anything above 25 is read as
    19xx, the rest as 20xx. Returns None for text that is not a recognisable
    date, rather than guessing.
    """
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return ParsedDate(year=value, original=str(value))

    original = value
    text = value.strip()
    circa = bool(_CIRCA_RE.match(text))
    text = _CIRCA_RE.sub("", text).strip()

    if re.fullmatch(r"\d{4}", text):
        return ParsedDate(year=int(text), circa=circa, original=original)

    match = _DDMMYY_RE.match(text)
    if match:
        two_digit = int(match.group(3))
        year = 1900 + two_digit if two_digit > 25 else 2000 + two_digit
        return ParsedDate(year=year, month=int(match.group(2)), day=int(match.group(1)), circa=circa, original=original)

    match = _DDMMYYYY_RE.match(text)
    if match:
        return ParsedDate(
            year=int(match.group(3)), month=int(match.group(2)), day=int(match.group(1)), circa=circa, original=original
        )

    match = _TEXT_DATE_RE.match(text)
    if match:
        month = MONTH_NAMES.get(match.group(2).lower())
        if month:
            day = int(match.group(1)) if match.group(1) else None
            return ParsedDate(year=int(match.group(3)), month=month, day=day, circa=circa, original=original)

    return None


def extract_year(value: str | int | None) -> int | None:
    """Best-effort year from any date-ish value."""
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return value
    parsed = parse_date(value)
    if parsed:
        return parsed.year
    match = _YEAR_RE.search(str(value))
    return int(match.group(1)) if match else None


def year_difference(a: str | int | None, b: str | int | None) -> int | None:
    ya, yb = extract_year(a), extract_year(b)
    if ya is None or yb is None:
        return None
    return abs(ya - yb)


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(c for c in decomposed if unicodedata.category(c) != "Mn")


def normalize_name(name: str | None) -> str:
    """Lowercase, accent-free, letters and single spaces only; drops 'nee'."""
    if not name:
        return ""
    result = strip_accents(name.strip().lower())
    result = re.sub(r"\bnee\b\s*", "", result)
    result = re.sub(r"[^a-z\s]", "", result)
    return " ".join(result.split())


def strip_not_found(name: str | None) -> str:
    if not name:
        return ""
    return _NOT_FOUND_RE.sub("", name).strip()


def is_not_found_name(name: str | None) -> bool:
    return bool(name) and name.strip().lower().endswith(NOT_FOUND_SUFFIX)


def parse_name_parts(full_name: str | None) -> tuple[str, str]:
    """Split a display name into (given names, surname).

    The last token is the surname. A "(not found)" marker is removed first so
    that placeholders never yield "found)" as a surname.
    """
    cleaned = strip_not_found(full_name)
    if not cleaned or cleaned.lower() == "unknown":
        return "", ""
    parts = cleaned.split()
    if len(parts) == 1:
        return parts[0], ""
    return " ".join(parts[:-1]), parts[-1]


def first_given_name(given: str | None) -> str:
    if not given:
        return ""
    parts = given.replace(".", " ").split()
    return parts[0] if parts else ""


def is_initials(given: str | None) -> bool:
    """True for given names written only as initials ("J.", "J W", "J.W.")."""
    if not given:
        return False
    tokens = [t for t in re.split(r"[\s.]+", given.strip()) if t]
    return bool(tokens) and all(len(t) == 1 for t in tokens)


def initials_of(given: str | None) -> str:
    """Initial letters of each given name, lowercased ("John William" -> "jw")."""
    if not given:
        return ""
    tokens = [t for t in re.split(r"[\s.]+", normalize_name(given.replace(".", " "))) if t]
    return "".join(t[0] for t in tokens)
