"""Place handling: UK / non-UK detection, specificity matching, sanitising.

The service researches British families, so a place that is clearly outside
the UK is treated as negative evidence unless something else places the
person in the UK.
"""
from __future__ import annotations

import re
from enum import IntEnum
from typing import Protocol

from .normalize import strip_accents

US_STATES = frozenset({
    "alabama", "alaska", "arizona", "arkansas", "california", "colorado",
    "connecticut", "delaware", "florida", "georgia", "hawaii", "idaho",
    "illinois", "indiana", "iowa", "kansas", "kentucky", "louisiana",
    "maine", "maryland", "massachusetts", "michigan", "minnesota",
    "mississippi", "missouri", "montana", "nebraska", "nevada",
    "new hampshire", "new jersey", "new mexico", "new york", "north carolina",
    "north dakota", "ohio", "oklahoma", "oregon", "pennsylvania",
    "rhode island", "south carolina", "south dakota", "tennessee", "texas",
    "utah", "vermont", "virginia", "washington", "west virginia",
    "wisconsin", "wyoming",
})

US_STATE_ABBREVS = frozenset({
    "al", "ak", "az", "ar", "ca", "co", "ct", "de", "fl", "ga", "hi",
    "id", "il", "in", "ia", "ks", "ky", "la", "me", "md", "ma", "mi",
    "mn", "ms", "mo", "mt", "ne", "nv", "nh", "nj", "nm", "ny", "nc",
    "nd", "oh", "ok", "or", "pa", "ri", "sc", "sd", "tn", "tx", "ut",
    "vt", "va", "wa", "wv", "wi", "wy",
})

NON_UK_COUNTRIES = frozenset({
    "united states", "united states of america", "usa", "america",
    "canada", "australia", "new zealand", "south africa",
    "france", "germany", "italy", "spain", "netherlands", "belgium",
    "sweden", "norway", "denmark", "switzerland", "austria",
    "india", "china", "japan", "brazil", "mexico", "russia",
})

UK_COUNTIES = frozenset({
    "derbyshire", "nottinghamshire", "yorkshire", "lancashire", "cheshire",
    "staffordshire", "leicestershire", "warwickshire", "lincolnshire",
    "norfolk", "suffolk", "essex", "kent", "sussex", "surrey", "hampshire",
    "dorset", "devon", "cornwall", "somerset", "wiltshire", "gloucestershire",
    "oxfordshire", "berkshire", "buckinghamshire", "hertfordshire", "bedfordshire",
    "cambridgeshire", "northamptonshire", "rutland", "shropshire", "herefordshire",
    "worcestershire", "middlesex", "northumberland", "durham", "westmorland",
    "cumberland", "monmouthshire", "huntingdonshire",
})

UK_COUNTRIES = frozenset({"england", "wales", "scotland", "ireland", "united kingdom", "great britain", "uk", "gb"})

UK_TOWNS = frozenset({
    "london", "birmingham", "manchester", "liverpool", "leeds", "sheffield", "bristol",
    "newcastle", "nottingham", "leicester", "derby", "coventry", "cardiff",
    "edinburgh", "glasgow", "belfast", "dublin", "bradford", "stoke",
    "wolverhampton", "sunderland", "portsmouth", "southampton", "brighton",
    "plymouth", "reading", "hull", "blackpool", "preston", "bolton",
})

UK_INDICATORS = UK_COUNTRIES | UK_COUNTIES | UK_TOWNS

NON_LATIN_PLACE_MAP = {
    "Англия": "England", "Великобритания": "United Kingdom",
    "Соединённые Штаты": "United States", "Шотландия": "Scotland",
    "Ирландия": "Ireland", "Австралия": "Australia", "Канада": "Canada",
    "Норвегия": "Norway", "Франция": "France", "Германия": "Germany",
    "Англи": "England", "Нэгдсэн Вант Улс": "United Kingdom",
    "Америкийн Нэгдсэн Улс": "United States", "Шотланд": "Scotland",
    "Уэльс": "Wales", "Уэлс": "Wales", "Ирланд": "Ireland",
}

OLD_ENGLISH_COUNTIES = {
    "deorbyscir": "Derbyshire",
    "beadafordscir": "Bedfordshire",
    "suþseaxe": "Sussex",
    "hamtunscir": "Hampshire",
    "gleawecesterscir": "Gloucestershire",
    "oxnafordscir": "Oxfordshire",
    "wiltunscir": "Wiltshire",
    "sumorsæte": "Somerset",
    "norðfolc": "Norfolk",
    "suðfolc": "Suffolk",
    "cent": "Kent",
    "defnascir": "Devon",
    "dornsæte": "Dorset",
    "heortfordscir": "Hertfordshire",
    "buccingahamscir": "Buckinghamshire",
    "eastseaxe": "Essex",
    "eoferwic": "Yorkshire",
    "eoferwicscir": "Yorkshire",
    "lindesig": "Lincolnshire",
    "snotingahamscir": "Nottinghamshire",
    "ligracesterscir": "Leicestershire",
    "scrobbesbyrigscir": "Shropshire",
    "wigraceasterscir": "Worcestershire",
    "warewickscir": "Warwickshire",
    "grantabrycgscir": "Cambridgeshire",
    "huntandunscir": "Huntingdonshire",
    "westmoringaland": "Westmorland",
}

# Characters outside Latin-script blocks, digits and place punctuation
_NON_LATIN_RE = re.compile(r"[^\u0000-ɏḀ-ỿ\s,.\-'()0-9]")


class PlaceMatch(IntEnum):
    """Graduated place agreement, most specific last."""

    NONE = 0
    PARTIAL = 1
    COUNTRY = 2
    COUNTY = 3
    TOWN = 4


class Gazetteer(Protocol):
    """Lookup service for geographic reference data."""

    def county_for(self, town: str) -> str | None:
        ...


class StaticGazetteer:
    """Minimal town -> historic county table; callers may supply a richer one."""

    TOWN_TO_COUNTY = {
        "derby": "derbyshire", "chesterfield": "derbyshire", "belper": "derbyshire",
        "ilkeston": "derbyshire", "ashbourne": "derbyshire", "bakewell": "derbyshire",
        "pinxton": "derbyshire", "nottingham": "nottinghamshire", "basford": "nottinghamshire",
        "leicester": "leicestershire", "sheffield": "yorkshire", "leeds": "yorkshire",
        "bradford": "yorkshire", "hull": "yorkshire", "york": "yorkshire",
        "manchester": "lancashire", "liverpool": "lancashire", "preston": "lancashire",
        "bolton": "lancashire", "blackpool": "lancashire", "birmingham": "warwickshire",
        "coventry": "warwickshire", "stoke": "staffordshire", "wolverhampton": "staffordshire",
        "burton upon trent": "staffordshire", "bristol": "gloucestershire",
        "portsmouth": "hampshire", "southampton": "hampshire", "brighton": "sussex",
        "plymouth": "devon", "reading": "berkshire", "newcastle": "northumberland",
        "sunderland": "durham", "westminster": "middlesex", "marylebone": "middlesex",
    }

    def county_for(self, town: str) -> str | None:
        return self.TOWN_TO_COUNTY.get(town.strip().lower())


DEFAULT_GAZETTEER = StaticGazetteer()


def _flatten(place: str) -> str:
    return re.sub(r"[,.\s]+", " ", place.lower()).strip()


def _contains_term(flat: str, term: str) -> bool:
    return re.search(rf"\b{re.escape(term)}\b", flat) is not None


def is_non_uk_place(place: str | None) -> bool:
    """True when the place text names a US state or a non-UK country."""
    if not place:
        return False
    flat = _flatten(place)
    parts = flat.split()
    if any(_contains_term(flat, state) for state in US_STATES):
        return True
    if len(parts) >= 2 and parts[-1] in US_STATE_ABBREVS:
        return True
    return any(_contains_term(flat, country) for country in NON_UK_COUNTRIES)


def is_uk_place(place: str | None) -> bool:
    if not place:
        return False
    flat = _flatten(place)
    return any(_contains_term(flat, indicator) for indicator in UK_INDICATORS)


def is_clearly_non_uk(place: str | None) -> bool:
    """Non-UK text with nothing in it that points back to the UK."""
    return is_non_uk_place(place) and not is_uk_place(place)


def parse_place_parts(place: str | None, gazetteer: Gazetteer = DEFAULT_GAZETTEER) -> dict[str, str | None]:
    """Split a place into town, county and country components."""
    result: dict[str, str | None] = {"town": None, "county": None, "country": None}
    if not place:
        return result
    cleaned = re.sub(r"[^a-z\s,]", "", strip_accents(place.lower()))
    parts = [p.strip() for p in cleaned.split(",") if p.strip()]
    for part in parts:
        if part in UK_COUNTRIES:
            result["country"] = part
        elif part in UK_COUNTIES:
            result["county"] = part
        elif result["town"] is None and len(part) > 1:
            result["town"] = part
    if result["county"] is None and result["town"]:
        result["county"] = gazetteer.county_for(result["town"])
    return result


def place_contains(candidate_place: str | None, known_place: str | None) -> bool:
    """Loose containment: any significant word of the known place appears."""
    if not candidate_place or not known_place:
        return False
    a, b = _flatten(candidate_place), _flatten(known_place)
    if a == b:
        return True
    return any(word in a for word in b.split() if len(word) > 2)


def place_specificity(
    candidate_place: str | None, known_place: str | None, gazetteer: Gazetteer = DEFAULT_GAZETTEER
) -> PlaceMatch:
    """How specifically two places agree: town > county > country > partial."""
    if not candidate_place or not known_place:
        return PlaceMatch.NONE
    c = parse_place_parts(candidate_place, gazetteer)
    k = parse_place_parts(known_place, gazetteer)
    if c["town"] and c["town"] == k["town"]:
        return PlaceMatch.TOWN
    if c["county"] and c["county"] == k["county"]:
        return PlaceMatch.COUNTY
    if c["country"] and c["country"] == k["country"]:
        return PlaceMatch.COUNTRY
    if place_contains(candidate_place, known_place):
        return PlaceMatch.PARTIAL
    return PlaceMatch.NONE


def sanitize_place_name(place: str | None) -> str:
    """Translate known non-Latin / Old English names, drop other non-Latin text."""
    if not place:
        return ""
    translated = place
    for foreign, english in NON_LATIN_PLACE_MAP.items():
        translated = translated.replace(foreign, english)
    cleaned = _NON_LATIN_RE.sub("", translated)
    cleaned = re.sub(r",\s*,", ",", cleaned)
    cleaned = re.sub(r"^\s*,|,\s*$", "", cleaned)
    cleaned = re.sub(r"\s{2,}", " ", cleaned).strip()

    modern: list[str] = []
    for part in (p.strip() for p in cleaned.split(",")):
        if not part:
            continue
        key = strip_accents(part.lower())
        modern.append(OLD_ENGLISH_COUNTIES.get(key, OLD_ENGLISH_COUNTIES.get(part.lower(), part)))
    return ", ".join(modern)


def extract_district(place: str | None) -> str:
    """Most specific component of a place ("Derby, Derbyshire" -> "Derby")."""
    if not place:
        return ""
    parts = [p.strip() for p in place.split(",") if p.strip()]
    return parts[0] if parts else ""
