"""FreeBMD civil-registration index (England & Wales, 1837-1983)."""
from __future__ import annotations

import re
from urllib.parse import unquote_plus

import structlog
from bs4 import BeautifulSoup

from ..models.candidate import Candidate, SearchQuery, VitalEntry
from ..net import RateLimitConfig
from .base import BaseSource, Capability

logger = structlog.get_logger(__name__)

FIRST_INDEXED_YEAR = 1837
LAST_INDEXED_YEAR = 1983

QUARTER_NAMES = {0: "Mar", 1: "Jun", 2: "Sep", 3: "Dec"}

NEARBY_DISTRICTS: dict[str, frozenset[str]] = {
    "derby": frozenset({"shardlow", "belper", "repton", "burton upon trent", "ashby de la zouch", "ashbourne", "bakewell", "basford", "ilkeston", "chesterfield"}),
    "shardlow": frozenset({"derby", "belper", "repton", "burton upon trent", "ashby de la zouch"}),
    "belper": frozenset({"derby", "shardlow", "bakewell", "ashbourne", "basford", "chesterfield"}),
    "repton": frozenset({"derby", "shardlow", "burton upon trent", "ashby de la zouch"}),
    "burton upon trent": frozenset({"repton", "shardlow", "derby", "ashby de la zouch", "lichfield", "tamworth"}),
    "ashbourne": frozenset({"derby", "belper", "bakewell", "chapel en le frith"}),
    "chesterfield": frozenset({"derby", "belper", "bakewell", "basford", "worksop", "glossop"}),
    "westminster": frozenset({"st george hanover square", "marylebone", "paddington", "kensington", "chelsea", "holborn", "pancras", "lambeth", "islington"}),
    "marylebone": frozenset({"westminster", "paddington", "st george hanover square", "pancras", "holborn", "islington", "hampstead"}),
    "lambeth": frozenset({"westminster", "camberwell", "wandsworth", "southwark", "newington"}),
    "leicester": frozenset({"blaby", "billesdon", "market harborough", "hinckley", "lutterworth", "ashby de la zouch", "melton mowbray", "barrow upon soar"}),
    "nottingham": frozenset({"basford", "ilkeston", "bingham", "southwell"}),
}

_SEARCH_DATA_RE = re.compile(r"var\s+searchData\s*=\s*new\s+Array\s*\((.*?)\)\s*;", re.DOTALL)
_VOLUME_RE = re.compile(r"^\d+[a-z]?$", re.IGNORECASE)


def district_matches(target: str, candidate: str) -> bool:
    """Same registration district, or one listed as adjacent."""
    t = (target or "").strip().lower()
    c = (candidate or "").strip().lower()
    if not t or not c:
        return False
    if t == c:
        return True
    return c in NEARBY_DISTRICTS.get(t, frozenset())


def in_index_range(year: int | None) -> bool:
    return year is not None and FIRST_INDEXED_YEAR <= year <= LAST_INDEXED_YEAR


def parse_search_data(html: str, entry_type: str) -> list[VitalEntry]:
    """Parse the ``searchData`` script array FreeBMD renders results into.

    Header rows start with an empty field and carry quarter and year for the
    data rows that follow them. Falls back to the results table when the
    script array is missing.
    """
    match = _SEARCH_DATA_RE.search(html)
    if not match:
        return parse_results_table(html, entry_type)

    entries: list[VitalEntry] = []
    year: int | None = None
    quarter: int | None = None
    for raw_line in match.group(1).split("\n"):
        line = raw_line.strip().strip(",").strip('"').strip()
        if not line:
            continue
        parts = line.split(";")

        if len(parts) >= 4 and parts[0].strip() == "":
            quarter = int(parts[2]) if parts[2].strip().isdigit() else None
            year = int(parts[3]) if parts[3].strip().isdigit() else None
            continue
        if len(parts) < 6:
            continue

        forenames = unquote_plus(parts[2]).strip()
        spouse = unquote_plus(parts[3]).strip()
        if not forenames and not spouse:
            continue
        entries.append(
            VitalEntry(
                entry_type=entry_type,
                surname=parts[1],
                forenames=forenames,
                spouse_surname=spouse,
                year=year,
                quarter=QUARTER_NAMES.get(quarter, "") if quarter is not None else "",
                district=unquote_plus(parts[5]).strip(),
                volume=parts[6] if len(parts) > 6 else "",
                page=parts[7] if len(parts) > 7 else "",
            )
        )
    return entries


def parse_results_table(html: str, entry_type: str) -> list[VitalEntry]:
    """Fallback parser for the plain HTML results table."""
    soup = BeautifulSoup(html, "html.parser")
    entries: list[VitalEntry] = []
    for row in soup.find_all("tr"):
        cells = [td.get_text(strip=True) for td in row.find_all("td")]
        if len(cells) < 4 or cells[0].lower() in ("surname", "type", ""):
            continue

        entry = VitalEntry(entry_type=entry_type, surname=cells[0], forenames=cells[1])
        for cell in cells[2:]:
            if re.fullmatch(r"\d{4}", cell):
                entry.year = int(cell)
            elif cell in QUARTER_NAMES.values():
                entry.quarter = cell
            elif _VOLUME_RE.match(cell):
                if not entry.volume:
                    entry.volume = cell
                else:
                    entry.page = cell
            elif cell and not entry.district:
                entry.district = cell
        entries.append(entry)
    return entries


class FreeBMDSource(BaseSource):
    """FreeBMD index search and vital-record confirmation.

    No credentials; the site is scraped politely (one request every three
    seconds). Index entries carry no family links, so candidates from here
    never seed a tree walk.
    """

    name = "FreeBMD"
    base_url = "https://www.freebmd.org.uk"
    capabilities = frozenset({Capability.SEARCH, Capability.CONFIRM})
    default_rate_limit = RateLimitConfig(max_calls=1, window_seconds=3.0, min_interval=3.0, max_retries=3)

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._district_ids: dict[str, str] = {}

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": "Mozilla/5.0 (compatible; ancestor-engine)",
            "Accept": "text/html,application/xhtml+xml",
        }

    async def _form_token(self) -> str:
        """Fetch the search form's one-shot ``v`` token and district ids."""
        html = await self._request("GET", f"{self.base_url}/cgi/search.pl", expect="text")
        if not html:
            return ""
        soup = BeautifulSoup(html, "html.parser")
        if not self._district_ids:
            select = soup.find("select", attrs={"name": "district"})
            if select is not None:
                for option in select.find_all("option"):
                    value = option.get("value", "")
                    text = option.get_text(strip=True).lower()
                    if value and value.lower() != "all":
                        self._district_ids.setdefault(text, value)
                        self._district_ids.setdefault(re.sub(r"\s*\(.*?\)\s*$", "", text), value)
        token = soup.find("input", attrs={"name": "v"})
        return token.get("value", "") if token is not None else ""

    def _district_id(self, district: str) -> str:
        name = (district or "").strip().lower()
        if not name or not self._district_ids:
            return ""
        if name in self._district_ids:
            return self._district_ids[name]
        for key, value in self._district_ids.items():
            if key.startswith(name) or name.startswith(key):
                return value
        return ""

    async def search_index(
        self,
        record_type: str,
        surname: str,
        forenames: str = "",
        year_from: int | None = None,
        year_to: int | None = None,
        district: str = "",
    ) -> list[VitalEntry]:
        """Search one index (births, deaths or marriages)."""
        token = await self._form_token()
        form = {
            "type": record_type.capitalize(),
            "surname": surname,
            "given": forenames,
            "v": token,
            "jsexec": "1",
            "find.x": "50",
            "find.y": "10",
        }
        if year_from:
            form["start"] = str(year_from)
        if year_to:
            form["end"] = str(year_to)
        district_id = self._district_id(district)
        if district_id:
            form["district"] = district_id

        html = await self._request(
            "POST",
            f"{self.base_url}/cgi/search.pl",
            data=form,
            headers={"Referer": f"{self.base_url}/cgi/search.pl"},
            expect="text",
        )
        if not html:
            return []
        if "maximum number that can be displayed" in html:
            logger.info("freebmd.too_many_matches", surname=surname, forenames=forenames)
            return []
        entries = parse_search_data(html, record_type.rstrip("s"))
        logger.debug("freebmd.search", record_type=record_type, surname=surname, results=len(entries))
        return entries

    async def search_person(self, query: SearchQuery) -> list[Candidate]:
        """Birth index entries as (tree-less) candidates."""
        if not query.surname or not in_index_range(query.birth_year):
            return []
        entries = await self.search_index(
            "births",
            query.surname,
            query.given_name,
            query.birth_year - query.birth_year_range,
            query.birth_year + query.birth_year_range,
        )
        out: list[Candidate] = []
        for entry in entries[: query.count]:
            ref = f"{entry.year}{entry.quarter}-{entry.district}-{entry.volume}-{entry.page}-{entry.surname}".lower()
            out.append(
                Candidate(
                    id=ref,
                    provider=self.name,
                    name=f"{entry.forenames} {entry.surname.title()}".strip(),
                    birth_date=str(entry.year or ""),
                    birth_place=entry.district,
                    raw={"entry": entry.model_dump()},
                )
            )
        return out

    async def confirm_birth(self, first_name: str, last_name: str, year: int, place: str = "") -> VitalEntry | None:
        if not in_index_range(year):
            return None
        entries = await self.search_index("births", last_name, first_name, year - 1, year + 1)
        first, last = first_name.lower(), last_name.lower()
        best, best_score = None, 0
        for entry in entries:
            score = 0
            if entry.surname.lower() == last:
                score += 40
            elif not entry.surname:
                score += 35
            fore = entry.forenames.lower()
            if fore and first:
                if fore.startswith(first):
                    score += 30
                elif fore in first or first in fore:
                    score += 20
            if entry.year == year:
                score += 20
            elif entry.year and abs(entry.year - year) <= 1:
                score += 10
            if place and entry.district:
                bp, dist = place.lower(), entry.district.lower()
                if dist in bp or bp in dist:
                    score += 10
            if score > best_score:
                best, best_score = entry, score
        return best if best_score >= 50 else None

    async def confirm_death(self, first_name: str, last_name: str, year: int) -> VitalEntry | None:
        if not in_index_range(year):
            return None
        entries = await self.search_index("deaths", last_name, first_name, year - 1, year + 1)
        first, last = first_name.lower(), last_name.lower()
        best, best_score = None, 0
        for entry in entries:
            score = 0
            if entry.surname.lower() == last:
                score += 40
            elif not entry.surname:
                score += 35
            if entry.forenames and first and entry.forenames.lower().startswith(first):
                score += 30
            if entry.year == year:
                score += 20
            if score > best_score:
                best, best_score = entry, score
        return best if best_score >= 50 else None

    async def find_marriage(
        self,
        surname: str,
        first_name: str,
        spouse_surname: str = "",
        year_from: int | None = None,
        year_to: int | None = None,
        district: str = "",
    ) -> VitalEntry | None:
        if (year_from and year_from > LAST_INDEXED_YEAR) or (year_to and year_to < FIRST_INDEXED_YEAR):
            return None
        entries = await self.search_index("marriages", surname, first_name, year_from, year_to, district)
        first, last, spouse = first_name.lower(), surname.lower(), spouse_surname.lower()
        best, best_score = None, 0
        for entry in entries:
            score = 0
            if entry.surname.lower() == last:
                score += 30
            elif not entry.surname:
                score += 25
            fore = entry.forenames.lower()
            if fore and first:
                if fore.startswith(first):
                    score += 25
                elif fore in first:
                    score += 15
            # Spouse surname is the strongest signal in the marriage index
            if spouse and entry.spouse_surname:
                if entry.spouse_surname.lower() == spouse:
                    score += 50
                elif entry.spouse_surname.lower() in spouse:
                    score += 25
            if district and entry.district and district_matches(district, entry.district):
                score += 20
            if score > best_score:
                best, best_score = entry, score
        return best if best_score >= 45 else None
