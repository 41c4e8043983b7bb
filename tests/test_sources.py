"""Tests for the provider adapters and the per-job source registry."""

import httpx
import pytest
from tenacity import wait_none

from ancestor_engine.config import EngineSettings
from ancestor_engine.models.candidate import SearchQuery
from ancestor_engine.net import AdapterGuard, RateLimitConfig
from ancestor_engine.sources import (
    AuthenticationError,
    Capability,
    FamilySearchSource,
    FreeBMDSource,
    GeniSource,
    RateLimitError,
    SourceError,
    SourceRegistry,
    SourceUnavailableError,
)
from ancestor_engine.sources.familysearch import PARENT_CHILD, SEARCH_ACCEPT
from ancestor_engine.sources.freebmd import parse_results_table, parse_search_data
from ancestor_engine.sources.geni import build_parent_map

from conftest import FakeSource


class Recorder:
    """MockTransport handler that replays scripted responses and keeps requests.

    The last response repeats once the script runs out.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        scripted = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return httpx.Response(scripted.status_code, headers=scripted.headers, content=scripted.content)


class FreeBMDSite(Recorder):
    """Search form on GET, results page on POST."""

    def __init__(self, results_html=None):
        super().__init__()
        self.results_html = RESULTS_HTML if results_html is None else results_html

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET":
            return httpx.Response(200, text=FORM_HTML)
        return httpx.Response(200, text=self.results_html)


async def _no_sleep(seconds: float) -> None:
    return None


def make_source(source_cls, handler, token="tok", **rate):
    config = RateLimitConfig(max_calls=1000, window_seconds=1.0, backoff_base=0.0, **rate)
    source = source_cls(
        access_token=token,
        guard=AdapterGuard(source_cls.name.lower(), config, sleep=_no_sleep),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    source.jitter = (0, 0)
    source.retry_wait = wait_none()
    return source


# =============================================================================
# FamilySearch
# =============================================================================


FS_SEARCH = {
    "entries": [
        {
            "score": 2.5,
            "content": {
                "gedcomx": {
                    "persons": [
                        {
                            "id": "FS-2",
                            "display": {
                                "name": "Robert Smith",
                                "gender": "Male",
                                "birthDate": "1930",
                                "birthPlace": "Derby, Derbyshire, England",
                            },
                        },
                        {"id": "FS-4", "display": {"name": "William Smith", "gender": "Male"}},
                        {"id": "FS-5", "display": {"name": "Ada Brown", "gender": "Female"}},
                    ],
                    "relationships": [
                        {"type": PARENT_CHILD, "person1": {"resourceId": "FS-4"}, "person2": {"resourceId": "FS-2"}},
                        {"type": PARENT_CHILD, "person1": {"resourceId": "FS-5"}, "person2": {"resourceId": "FS-2"}},
                    ],
                }
            },
        }
    ]
}

FS_PARENTS = {
    "persons": [
        {"id": "FS-4", "display": {"name": "William Smith", "gender": "Male", "birthDate": "1902"}},
        {"id": "FS-5", "display": {"name": "Ada Brown", "gender": "Female"}},
    ],
    "childAndParentsRelationships": [{"father": {"resourceId": "FS-4"}, "mother": {"resourceId": "FS-5"}}],
}


class TestFamilySearchSource:
    """Test the FamilySearch adapter against a mock transport."""

    @pytest.mark.asyncio
    async def test_search(self):
        handler = Recorder(httpx.Response(200, json=FS_SEARCH))
        source = make_source(FamilySearchSource, handler)

        results = await source.search_person(SearchQuery(given_name="Robert", surname="Smith", birth_year=1930))

        robert = results[0]
        assert robert.id == "FS-2"
        assert robert.birth_place == "Derby, Derbyshire, England"
        assert robert.provider_score == 2.5
        assert robert.father_name == "William Smith"
        assert robert.mother_id == "FS-5"

        request = handler.requests[0]
        assert request.url.path == "/platform/tree/search"
        assert request.url.params["q.givenName"] == "Robert"
        assert request.url.params["q.birthLikeDate.from"] == "1928"
        assert request.headers["Accept"] == SEARCH_ACCEPT
        assert request.headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_parents(self):
        source = make_source(FamilySearchSource, Recorder(httpx.Response(200, json=FS_PARENTS)))
        pair = await source.get_parents("FS-2")
        assert pair.father.name == "William Smith"
        assert pair.father.via_tree
        assert pair.mother.gender == "Female"

    @pytest.mark.asyncio
    async def test_not_found_is_empty(self):
        source = make_source(FamilySearchSource, Recorder(httpx.Response(404)))
        assert (await source.get_parents("FS-missing")).is_empty

    @pytest.mark.asyncio
    async def test_citations(self):
        payload = {
            "persons": [{"sources": [{"descriptionId": "S1"}]}],
            "sourceDescriptions": [
                {
                    "id": "S1",
                    "about": "https://example.org/ark/1",
                    "titles": [{"value": "England Births and Christenings"}],
                    "citations": [{"value": "GRO 1930 Q3 Derby 7b 123"}],
                }
            ],
        }
        source = make_source(FamilySearchSource, Recorder(httpx.Response(200, json=payload)))
        citations = await source.get_person_sources("FS-2")
        assert citations == [
            {
                "title": "England Births and Christenings",
                "url": "https://example.org/ark/1",
                "citation": "GRO 1930 Q3 Derby 7b 123",
            }
        ]

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        source = make_source(FamilySearchSource, Recorder(httpx.Response(401)))
        with pytest.raises(AuthenticationError):
            await source.search_person(SearchQuery(surname="Smith"))

    @pytest.mark.asyncio
    async def test_rate_limit_retried_then_raised(self):
        handler = Recorder(httpx.Response(429))
        source = make_source(FamilySearchSource, handler, max_retries=2)
        with pytest.raises(RateLimitError):
            await source.search_person(SearchQuery(surname="Smith"))
        assert len(handler.requests) == 3

    @pytest.mark.asyncio
    async def test_rate_limit_recovers(self):
        handler = Recorder(httpx.Response(429), httpx.Response(200, json=FS_SEARCH))
        source = make_source(FamilySearchSource, handler)
        assert len(await source.search_person(SearchQuery(surname="Smith"))) == 1

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_retries(self):
        handler = Recorder(httpx.Response(503))
        source = make_source(FamilySearchSource, handler)
        with pytest.raises(SourceUnavailableError):
            await source.search_person(SearchQuery(surname="Smith"))
        assert len(handler.requests) == 3

    @pytest.mark.asyncio
    async def test_disabled_guard_blocks_calls(self):
        handler = Recorder(httpx.Response(200, json=FS_SEARCH))
        source = make_source(FamilySearchSource, handler)
        source.guard.disable("authentication failed")
        assert not source.is_available()
        with pytest.raises(SourceUnavailableError):
            await source.search_person(SearchQuery(surname="Smith"))
        assert handler.requests == []

    def test_requires_token(self):
        assert not FamilySearchSource().is_available()

    @pytest.mark.asyncio
    async def test_unsupported_capability(self):
        source = make_source(FamilySearchSource, Recorder(httpx.Response(200)))
        with pytest.raises(SourceError, match="does not support"):
            await source.confirm_birth("Robert", "Smith", 1930)


# =============================================================================
# Geni
# =============================================================================


class TestGeniSource:
    """Test the Geni adapter."""

    @pytest.mark.asyncio
    async def test_search_filters_distant_years(self):
        payload = {
            "results": [
                {
                    "id": "profile-1",
                    "first_name": "Robert",
                    "last_name": "Smith",
                    "gender": "male",
                    "birth": {"date": {"year": 1930, "month": 8}, "location": {"city": "Derby", "country": "England"}},
                },
                {"id": "profile-2", "first_name": "Robert", "last_name": "Smith", "birth": {"date": {"year": 1880}}},
            ]
        }
        handler = Recorder(httpx.Response(200, json=payload))
        source = make_source(GeniSource, handler)

        results = await source.search_person(SearchQuery(given_name="Robert", surname="Smith", birth_year=1930))

        assert [c.id for c in results] == ["profile-1"]
        assert results[0].gender == "Male"
        assert results[0].birth_date == "08/1930"
        assert results[0].birth_place == "Derby, England"
        params = handler.requests[0].url.params
        assert params["names"] == "Robert Smith"
        assert params["access_token"] == "tok"

    @pytest.mark.asyncio
    async def test_immediate_family_parents(self):
        payload = {
            "focus": {"id": "profile-1"},
            "nodes": {
                "profile-1": {"id": "profile-1", "first_name": "Robert", "last_name": "Smith", "gender": "male"},
                "profile-4": {"id": "profile-4", "first_name": "William", "last_name": "Smith", "gender": "male"},
                "profile-5": {"id": "profile-5", "first_name": "Ada", "last_name": "Brown", "gender": "female"},
                "union-9": {
                    "edges": {
                        "profile-4": {"rel": "partner"},
                        "profile-5": {"rel": "partner"},
                        "profile-1": {"rel": "child"},
                    }
                },
            },
        }
        handler = Recorder(httpx.Response(200, json=payload))
        source = make_source(GeniSource, handler)

        pair = await source.get_parents("1")

        assert pair.father.name == "William Smith"
        assert pair.mother.name == "Ada Brown"
        assert handler.requests[0].url.path == "/api/profile-1/immediate-family"

    def test_parent_map_legacy_union_format(self):
        profiles = {"profile-4": {"gender": "male"}, "profile-5": {"gender": "female"}}
        unions = {"union-1": {"partners": ["https://www.geni.com/api/profile-4", "profile-5"], "children": ["profile-1"]}}
        assert build_parent_map(unions, profiles) == {"profile-1": {"father": "profile-4", "mother": "profile-5"}}


# =============================================================================
# FreeBMD
# =============================================================================


FORM_HTML = """
<form>
  <input type="hidden" name="v" value="tok123">
  <select name="district">
    <option value="All">All</option>
    <option value="412">Derby (Derbyshire)</option>
  </select>
</form>
"""

RESULTS_HTML = """
<script>
var searchData = new Array(
";Births;3;1930",
"1;SMITH;Robert;;x;Derby;7b;123",
"1;SMITH;Roberta;;x;Belper;7b;456",
);
</script>
"""


class TestFreeBMDParsing:
    def test_search_data(self):
        entries = parse_search_data(RESULTS_HTML, "birth")
        assert len(entries) == 2
        first = entries[0]
        assert (first.surname, first.forenames, first.year, first.quarter) == ("SMITH", "Robert", 1930, "Dec")
        assert (first.district, first.volume, first.page) == ("Derby", "7b", "123")

    def test_results_table_fallback(self):
        html = """
        <table>
          <tr><td>Surname</td><td>Forenames</td><td>Quarter</td><td>Year</td></tr>
          <tr><td>SMITH</td><td>Robert</td><td>Dec</td><td>1930</td><td>Derby</td><td>7b</td><td>123</td></tr>
        </table>
        """
        entries = parse_results_table(html, "birth")
        assert len(entries) == 1
        entry = entries[0]
        assert (entry.year, entry.quarter, entry.district, entry.volume, entry.page) == (1930, "Dec", "Derby", "7b", "123")


class TestFreeBMDSource:
    """Test index confirmation against a mock transport."""

    @pytest.mark.asyncio
    async def test_confirm_birth(self):
        recorder = FreeBMDSite()
        source = make_source(FreeBMDSource, recorder, token=None)

        entry = await source.confirm_birth("Robert", "Smith", 1930, "Derby")

        assert entry.forenames == "Robert"
        assert entry.district == "Derby"
        post = recorder.requests[1]
        assert post.method == "POST"
        body = post.content.decode()
        assert "v=tok123" in body
        assert "start=1929" in body
        assert "end=1931" in body

    @pytest.mark.asyncio
    async def test_out_of_range_years_make_no_call(self):
        recorder = FreeBMDSite()
        source = make_source(FreeBMDSource, recorder, token=None)

        assert await source.confirm_birth("George", "Smith", 1820) is None
        assert await source.confirm_death("George", "Smith", 1990) is None
        assert await source.find_marriage("Smith", "George", year_from=1990, year_to=2000) is None
        assert await source.search_person(SearchQuery(surname="Smith")) == []
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_too_many_matches(self):
        recorder = FreeBMDSite("<p>This is more than the maximum number that can be displayed</p>")
        source = make_source(FreeBMDSource, recorder, token=None)
        assert await source.confirm_birth("Robert", "Smith", 1930) is None

    @pytest.mark.asyncio
    async def test_search_person_candidates(self):
        recorder = FreeBMDSite()
        source = make_source(FreeBMDSource, recorder, token=None)
        results = await source.search_person(SearchQuery(given_name="Robert", surname="Smith", birth_year=1930))
        assert results[0].name == "Robert Smith"
        assert results[0].birth_place == "Derby"
        assert not results[0].via_tree

    def test_needs_no_credentials(self):
        assert FreeBMDSource().is_available()


# =============================================================================
# Registry
# =============================================================================


class TestSourceRegistry:
    """Test adapter selection and identifier ownership."""

    def test_available_by_capability(self):
        fs = FakeSource("FamilySearch")
        bmd = FakeSource("FreeBMD", capabilities=(Capability.CONFIRM,))
        off = FakeSource("Geni")
        off.available = False
        registry = SourceRegistry([fs, off, bmd])

        assert registry.available() == [fs, bmd]
        assert registry.available(Capability.SEARCH) == [fs]
        assert registry.available(Capability.CONFIRM) == [bmd]

    def test_disable(self):
        fs = FakeSource("FamilySearch")
        registry = SourceRegistry([fs])
        registry.disable("FamilySearch", "authentication failed")
        assert registry.available() == []
        assert registry.report_status()["familysearch"]["disabled_reason"] == "authentication failed"

    def test_claim_first_owner_wins(self):
        registry = SourceRegistry([FakeSource("FamilySearch"), FakeSource("Geni")])
        registry.claim("P-1", "Geni")
        registry.claim("P-1", "FamilySearch")
        assert registry.owner_of("P-1") == "Geni"
        assert registry.tree_source_for("P-1").name == "Geni"

    def test_tree_source_fallback_and_capability(self):
        fs = FakeSource("FamilySearch")
        bmd = FakeSource("FreeBMD", capabilities=(Capability.SEARCH, Capability.CONFIRM))
        registry = SourceRegistry([fs, bmd])
        assert registry.tree_source_for("X-1", "FamilySearch") is fs
        assert registry.tree_source_for("X-1") is None
        registry.claim("B-1", "FreeBMD")
        assert registry.tree_source_for("B-1") is None

    def test_tree_source_disabled(self):
        registry = SourceRegistry([FakeSource("FamilySearch")])
        registry.claim("FS-2", "FamilySearch")
        registry.disable("FamilySearch", "authentication failed")
        assert registry.tree_source_for("FS-2") is None

    @pytest.mark.asyncio
    async def test_close(self):
        sources = [FakeSource("FamilySearch"), FakeSource("Geni")]
        async with SourceRegistry(sources):
            pass
        assert all(s.closed for s in sources)

    def test_for_job_builds_fresh_guards(self):
        settings = EngineSettings(familysearch_token="tok")
        first = SourceRegistry.for_job(settings)
        second = SourceRegistry.for_job(settings)

        assert [s.name for s in first.sources] == ["FamilySearch", "Geni", "FreeBMD"]
        assert [s.name for s in first.available()] == ["FamilySearch", "FreeBMD"]
        assert first.get("familysearch").guard is not second.get("familysearch").guard
        assert first.get("geni").guard.config.min_interval == 1.0
