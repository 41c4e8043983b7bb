"""Tree traversal: expand a family tree generation by generation.

Work is an explicit FIFO queue of tree positions in breadth-first order,
father before mother. Each position is either enriched (Customer Data) or
searched, scored, resolved and stored; positions with a provider identifier
queue their parents, whose first lookup goes back to the provider that owns
the child's identifier.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

import structlog
from pydantic import BaseModel, Field

from ..logging import bind_job, unbind_job
from ..models.ancestor import (
    CUSTOMER_DATA,
    Ancestor,
    Citation,
    ConfidenceLevel,
    PositionState,
    SearchLogEntry,
    expected_gender,
    father_of,
    generation_of,
    level_for_score,
    mother_of,
    positions_for_depth,
    spouse_of,
)
from ..models.candidate import Candidate, KnownFacts, ParentPair, PersonFacts, SearchCandidateRecord, VitalEntry
from ..models.job import IntakeRequest, JobStatus, JobSummary, ResearchJob
from ..resolution.confidence import ConfidenceResolver, Resolution, is_blacklisted
from ..resolution.merger import merge_candidates
from ..resolution.scorer import CandidateScorer, is_plausible_parent_gap
from ..sources.base import AuthenticationError, Capability, RateLimitError, RecordSource, SourceError
from ..sources.registry import SourceRegistry
from ..store import RecordStore
from ..utils.normalize import NOT_FOUND_SUFFIX, extract_year, first_given_name, parse_name_parts
from ..utils.places import extract_district, is_clearly_non_uk, sanitize_place_name
from .anchors import build_anchors
from .strategies import SearchPass, build_search_passes, supplementary_passes

logger = structlog.get_logger(__name__)


class NoUsableSourcesError(Exception):
    """No search adapter is available, so nothing beyond intake can be resolved."""


class TraversalConfig(BaseModel):
    min_viable_candidates: int = Field(default=2, description="Below this, supplementary adapters are searched")
    parent_age_min: int = Field(default=12)
    parent_age_max: int = Field(default=55)
    father_age_estimate: int = Field(default=28, description="Typical father age at a child's birth")
    mother_age_estimate: int = Field(default=25, description="Typical mother age at a child's birth")
    max_variants_per_pass: int = Field(default=3)
    search_count: int = Field(default=10, description="Results requested per search call")
    marriage_search_max_asc: int = Field(
        default=7, description="Highest wife position whose marriage to her husband is searched"
    )
    marriage_window: int = Field(default=15, description="Years before the child's birth a marriage is sought")


@dataclass
class WorkItem:
    asc: int
    known: KnownFacts
    child_ref: tuple[str, str] | None = None  # (provider, child's person id)


@dataclass
class PositionOutcome:
    """What a processed position hands to its parents."""

    asc: int
    facts: PersonFacts
    source_id: str = ""
    provider: str = ""
    state: PositionState = PositionState.NOT_FOUND


@dataclass
class _Search:
    candidates: list[Candidate] = field(default_factory=list)
    log: list[SearchLogEntry] = field(default_factory=list)
    rejected: list[tuple[Candidate, str]] = field(default_factory=list)
    passes: dict[str, str] = field(default_factory=dict)  # candidate key -> pass name
    queries: dict[str, dict] = field(default_factory=dict)


class TraversalController:
    """Runs one traversal pass for one job."""

    def __init__(
        self,
        store: RecordStore,
        registry: SourceRegistry,
        scorer: CandidateScorer | None = None,
        resolver: ConfidenceResolver | None = None,
        config: TraversalConfig | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.scorer = scorer or CandidateScorer()
        self.resolver = resolver or ConfidenceResolver()
        self.config = config or TraversalConfig()

        self.job_id = ""
        self._blacklist: frozenset[str] = frozenset()
        self._visited: set[tuple[str, str]] = set()
        self._parents_cache: dict[tuple[str, str], ParentPair] = {}
        self._anchors: dict[int, PersonFacts] = {}
        self._summary: JobSummary | None = None

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, intake: IntakeRequest) -> JobSummary:
        """Traverse the tree for ``intake.job_id``.

        Any error escaping the traversal marks the job failed with its
        message and is re-raised; positions already stored stay in place.
        """
        self.job_id = intake.job_id
        bind_job(intake.job_id)
        try:
            if self.store.get_job(intake.job_id) is None:
                self.store.create_job(
                    ResearchJob(id=intake.job_id, customer_name=intake.customer_name, generations=intake.generations)
                )
            self.store.update_job(intake.job_id, status=JobStatus.RUNNING, error_message=None)
            try:
                summary = await self._run(intake)
            except Exception as e:
                logger.exception("traversal.job_failed", error=str(e))
                self.store.update_job(intake.job_id, status=JobStatus.FAILED, error_message=str(e))
                raise
            self.store.update_job(
                intake.job_id,
                status=JobStatus.COMPLETED,
                progress_message="Research complete",
            )
            return summary
        finally:
            unbind_job()

    async def _run(self, intake: IntakeRequest) -> JobSummary:
        self._blacklist = frozenset(self.store.list_rejected_source_ids(self.job_id))
        self._visited = set()
        self._parents_cache = {}
        self._anchors = build_anchors(intake)
        self._summary = JobSummary(job_id=self.job_id, status=JobStatus.RUNNING)

        self._seed_customer_data(intake)

        if not self.registry.available(Capability.SEARCH):
            raise NoUsableSourcesError("No search-capable source is available for this job")

        max_asc = positions_for_depth(intake.generations).stop - 1
        subject_known = KnownFacts(
            **intake.subject.model_dump(exclude={"father_name", "mother_name"}),
            father_name=intake.subject.father_name or intake.father_name,
            mother_name=intake.subject.mother_name or intake.mother_name,
        )
        queue: deque[WorkItem] = deque([WorkItem(asc=1, known=subject_known)])
        logger.info(
            "traversal.started",
            generations=intake.generations,
            anchors=sorted(self._anchors),
            blacklisted=len(self._blacklist),
        )

        while queue:
            item = queue.popleft()
            self.store.update_job(
                self.job_id,
                progress_message=f"Researching position {item.asc}",
                progress_done=self._summary.positions_processed,
                progress_total=self._summary.positions_processed + len(queue) + 1,
            )
            marriage = None
            if item.asc % 2 == 1 and 1 < item.asc <= self.config.marriage_search_max_asc:
                item, marriage = await self._couple_marriage(item)
            outcome = await self._process(item)
            if marriage is not None:
                self._attach_marriage(item.asc, *marriage)
            self._summary.positions_processed += 1

            for parent_asc in (father_of(item.asc), mother_of(item.asc)):
                if parent_asc > max_asc:
                    continue
                existing = self.store.get_ancestor(self.job_id, parent_asc)
                has_customer_data = existing is not None and existing.is_customer_data
                if outcome.source_id or has_customer_data or parent_asc in self._anchors:
                    queue.append(self._parent_item(parent_asc, outcome, existing))

        self._summary.status = JobStatus.COMPLETED
        logger.info("traversal.finished", **self._summary.model_dump(exclude={"job_id", "status", "error_message"}))
        return self._summary

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def _seed_customer_data(self, intake: IntakeRequest) -> None:
        """Store subject, supplied parents and explicit ancestors as Customer Data."""
        seeds: dict[int, PersonFacts] = {
            1: intake.subject.model_copy(
                update={
                    "father_name": intake.subject.father_name or intake.father_name,
                    "mother_name": intake.subject.mother_name or intake.mother_name,
                }
            )
        }
        if intake.father_name:
            seeds[2] = PersonFacts.from_name(intake.father_name, gender="Male")
        if intake.mother_name:
            seeds[3] = PersonFacts.from_name(intake.mother_name, gender="Female")
        for asc, facts in intake.customer_ancestors.items():
            seeds[asc] = facts.merged_with(seeds.get(asc))

        for asc, facts in sorted(seeds.items()):
            existing = self.store.get_ancestor(self.job_id, asc)
            if existing is not None and existing.is_customer_data:
                continue
            ancestor = Ancestor(
                job_id=self.job_id,
                ascendancy_number=asc,
                name=facts.full_name or "Unknown",
                gender=facts.gender or expected_gender(asc) or "Unknown",
                birth_date=facts.birth_date,
                birth_place=facts.birth_place,
                death_date=facts.death_date,
                death_place=facts.death_place,
                father_name=facts.father_name,
                mother_name=facts.mother_name,
                confidence_score=100,
                confidence_level=ConfidenceLevel.CUSTOMER_DATA,
                state=PositionState.CUSTOMER_DATA,
                discovery_method="intake",
                corrections_log=existing.corrections_log if existing else [],
                verification_notes=CUSTOMER_DATA,
            )
            self.store.save_ancestor(ancestor)
            logger.info("traversal.customer_data_seeded", asc=asc, name=ancestor.name)

    # ------------------------------------------------------------------
    # Per-position processing
    # ------------------------------------------------------------------

    async def _process(self, item: WorkItem) -> PositionOutcome:
        existing = self.store.get_ancestor(self.job_id, item.asc)
        if existing is not None and existing.is_customer_data:
            return await self._enrich(existing, item)
        return await self._resolve_position(item, existing)

    async def _resolve_position(self, item: WorkItem, existing: Ancestor | None) -> PositionOutcome:
        log = structlog.get_logger(__name__).bind(asc=item.asc)
        self.store.clear_search_candidates(self.job_id, item.asc)

        resolution, search = await self._find_best(item)
        accepted = resolution is not None and resolution.meets(self.resolver.config.acceptance_threshold)

        if accepted:
            ancestor = self._accepted_ancestor(item, resolution, search, existing)
            if not self._guarded_save(ancestor):
                return self._outcome_from(self.store.get_ancestor(self.job_id, item.asc))
            self._summary.accepted += 1
            log.info(
                "traversal.position_accepted",
                name=ancestor.name,
                score=ancestor.confidence_score,
                level=ancestor.confidence_level.value,
                provider=ancestor.source_provider,
                person_id=ancestor.source_person_id,
            )
            return self._outcome_from(ancestor)

        placeholder = self._placeholder(item, resolution, search, existing)
        if not self._guarded_save(placeholder):
            return self._outcome_from(self.store.get_ancestor(self.job_id, item.asc))
        self._summary.not_found += 1
        log.info(
            "traversal.position_not_found",
            name=placeholder.name,
            best_score=placeholder.confidence_score,
            passes=len(search.log),
        )
        return PositionOutcome(asc=item.asc, facts=item.known, state=PositionState.NOT_FOUND)

    async def _enrich(self, existing: Ancestor, item: WorkItem) -> PositionOutcome:
        """Link Customer Data to a provider record without changing name, score or level."""
        self._summary.protected += 1
        if existing.source_person_id:
            self._visited.add((existing.source_provider, existing.source_person_id))
            return self._outcome_from(existing)

        known = self._facts_of(existing).merged_with(item.known)
        item = WorkItem(
            asc=item.asc,
            known=KnownFacts(**known.model_dump(), child_birth_year=item.known.child_birth_year,
                             estimated_birth_year=item.known.estimated_birth_year, anchor=item.known.anchor),
            child_ref=item.child_ref,
        )
        self.store.clear_search_candidates(self.job_id, item.asc)
        threshold = self.resolver.config.enrichment_threshold
        resolution, search = await self._find_best(item, threshold)

        fields: dict = {"search_log": [*existing.search_log, *search.log]}
        if resolution is not None and resolution.meets(threshold):
            provider, person_id = self._tree_identity(resolution.candidate)
            candidate = resolution.candidate
            fields.update(
                {
                    "source_person_id": person_id,
                    "source_provider": provider,
                    "sources": sorted(set(existing.sources) | set(candidate.sources)),
                    "match_ids": {**existing.match_ids, **candidate.source_ids},
                    "evidence_chain": [*existing.evidence_chain, *resolution.evidence],
                }
            )
            for name in ("birth_date", "birth_place", "death_date", "death_place", "father_name", "mother_name"):
                value = getattr(candidate, name)
                if not getattr(existing, name) and value:
                    fields[name] = sanitize_place_name(value) if name.endswith("place") else value
            if existing.gender in ("", "Unknown") and candidate.gender in ("Male", "Female"):
                fields["gender"] = candidate.gender
            if person_id:
                self.registry.claim(person_id, provider)
                self._visited.add((provider, person_id))
            self._summary.enriched += 1
            logger.info(
                "traversal.customer_data_enriched",
                asc=item.asc,
                provider=provider,
                person_id=person_id,
                match_score=resolution.score,
            )
        else:
            logger.info(
                "traversal.enrichment_skipped",
                asc=item.asc,
                best_score=resolution.score if resolution else None,
                threshold=threshold,
            )
        updated = self.store.update_ancestor(self.job_id, item.asc, fields)
        return self._outcome_from(updated)

    # ------------------------------------------------------------------
    # Candidate discovery
    # ------------------------------------------------------------------

    async def _find_best(self, item: WorkItem, threshold: int | None = None) -> tuple[Resolution | None, _Search]:
        """Tree link first; full search passes when the tree link scores below ``threshold``."""
        if threshold is None:
            threshold = self.resolver.config.acceptance_threshold
        search = _Search()
        gender = expected_gender(item.asc)

        tree_candidate = await self._tree_candidate(item, search)
        if tree_candidate is not None:
            resolution = await self._resolve(tree_candidate, item, gender)
            if resolution.meets(threshold):
                self._record_candidates(item, [tree_candidate], search, resolution)
                return resolution, search

        await self._run_passes(item, search, gender)
        if tree_candidate is not None:
            search.candidates.append(tree_candidate)
        if not search.candidates:
            self._record_candidates(item, [], search, None)
            return None, search

        merged = merge_candidates([search.candidates])
        scored = sorted(
            ((self.scorer.score(c, item.known, gender), c) for c in merged),
            key=lambda sc: (sc[0], sc[1].provider_score or 0),
            reverse=True,
        )
        best_score, best = scored[0]
        resolution = await self._resolve(best, item, gender, base_score=best_score)
        self._record_candidates(item, [c for _, c in scored], search, resolution)
        return resolution, search

    async def _tree_candidate(self, item: WorkItem, search: _Search) -> Candidate | None:
        if item.child_ref is None:
            return None
        provider, child_id = item.child_ref
        pair = await self._parents_of(provider, child_id, search)
        candidate = pair.father if item.asc % 2 == 0 else pair.mother
        if candidate is None:
            return None

        reason = self._tree_rejection(candidate, item.known)
        if reason:
            logger.info(
                "traversal.tree_parent_discarded",
                asc=item.asc,
                provider=candidate.provider,
                person_id=candidate.id,
                reason=reason,
            )
            search.rejected.append((candidate, reason))
            return None
        self.registry.claim(candidate.id, candidate.provider)
        return candidate

    def _tree_rejection(self, candidate: Candidate, known: KnownFacts) -> str | None:
        if (candidate.provider, candidate.id) in self._visited:
            return "already visited"
        if is_blacklisted(candidate, self._blacklist):
            return "blacklisted"
        if is_clearly_non_uk(candidate.birth_place):
            return "non-UK place"
        if not is_plausible_parent_gap(
            candidate.birth_year, known.child_birth_year, self.config.parent_age_min, self.config.parent_age_max
        ):
            return "implausible parent age"
        return None

    async def _parents_of(self, provider: str, child_id: str, search: _Search) -> ParentPair:
        key = (provider, child_id)
        if key in self._parents_cache:
            return self._parents_cache[key]

        pair = ParentPair()
        source = self.registry.tree_source_for(child_id, provider)
        if source is not None:
            result = await self._call(source, "get_parents", search, "tree_parents", {"person_id": child_id}, child_id)
            if isinstance(result, ParentPair):
                pair = result
            if pair.is_empty:
                ancestry = await self._call(
                    source, "get_ancestry", search, "tree_ancestry", {"person_id": child_id}, child_id, 1
                )
                for candidate in ancestry or []:
                    slot = candidate.raw.get("ascendancy")
                    if (slot == 2 or (slot is None and candidate.gender == "Male")) and pair.father is None:
                        pair.father = candidate
                    elif (slot == 3 or (slot is None and candidate.gender == "Female")) and pair.mother is None:
                        pair.mother = candidate
        for parent in (pair.father, pair.mother):
            if parent is not None:
                parent.via_tree = True
        self._parents_cache[key] = pair
        return pair

    async def _run_passes(self, item: WorkItem, search: _Search, gender: str | None) -> None:
        passes = build_search_passes(item.known, self.config.max_variants_per_pass, self.config.search_count)
        if not passes:
            return

        threshold = self.resolver.config.short_circuit_score
        primary: RecordSource | None = None
        short_circuited = False
        for search_pass in passes:
            searchers = self.registry.available(Capability.SEARCH)
            if not searchers:
                break
            primary = searchers[0]
            found = await self._search(primary, search_pass, item, search, gender)
            strong = [c for c in found if self.scorer.score(c, item.known, gender) > threshold]
            if len(strong) == 1:
                logger.debug("traversal.short_circuit", asc=item.asc, pass_name=search_pass.name, person_id=strong[0].id)
                short_circuited = True
                break

        if short_circuited:
            return
        viable = self._viable_count(search.candidates, item.known, gender)
        if viable >= self.config.min_viable_candidates:
            return
        for source in self.registry.available(Capability.SEARCH):
            if primary is not None and source.name == primary.name:
                continue
            for search_pass in supplementary_passes(passes):
                await self._search(source, search_pass, item, search, gender)

    def _viable_count(self, candidates: list[Candidate], known: KnownFacts, gender: str | None) -> int:
        threshold = self.resolver.config.acceptance_threshold
        return sum(1 for c in merge_candidates([candidates]) if self.scorer.score(c, known, gender) >= threshold)

    async def _search(
        self, source: RecordSource, search_pass: SearchPass, item: WorkItem, search: _Search, gender: str | None
    ) -> list[Candidate]:
        query = search_pass.query
        results = await self._call(source, "search_person", search, search_pass.name, query.describe(), query)
        if results is None:
            return []

        kept: list[Candidate] = []
        for candidate in results:
            if is_blacklisted(candidate, self._blacklist):
                search.rejected.append((candidate, "blacklisted"))
                continue
            if (candidate.provider, candidate.id) in self._visited:
                search.rejected.append((candidate, "already visited"))
                continue
            self.registry.claim(candidate.id, candidate.provider)
            search.passes.setdefault(candidate.id, search_pass.name)
            search.queries.setdefault(candidate.id, query.describe())
            kept.append(candidate)
        search.candidates.extend(kept)

        best = max((self.scorer.score(c, item.known, gender) for c in kept), default=None)
        search.log[-1].best_score = best
        return kept

    async def _call(self, source: RecordSource, operation: str, search: _Search, pass_name: str, query: dict, *args):
        """Call one adapter operation; provider failures are logged, never raised."""
        entry = SearchLogEntry(pass_name=pass_name, provider=source.name, query=query)
        search.log.append(entry)
        try:
            result = await getattr(source, operation)(*args)
        except AuthenticationError as e:
            entry.error = str(e)
            self.registry.disable(source.name, "authentication failed")
            return None
        except RateLimitError as e:
            entry.error = str(e)
            logger.warning("traversal.rate_limited", provider=source.name, pass_name=pass_name)
            return None
        except SourceError as e:
            entry.error = str(e)
            logger.warning("traversal.source_error", provider=source.name, pass_name=pass_name, error=str(e))
            return None
        if isinstance(result, list):
            entry.result_count = len(result)
        elif isinstance(result, ParentPair):
            entry.result_count = int(result.father is not None) + int(result.mother is not None)
        return result

    # ------------------------------------------------------------------
    # Resolution and persistence
    # ------------------------------------------------------------------

    async def _resolve(
        self, candidate: Candidate, item: WorkItem, gender: str | None, base_score: int | None = None
    ) -> Resolution:
        if base_score is None:
            base_score = self.scorer.score(candidate, item.known, gender)
        evidence = await self.resolver.gather_evidence(candidate, self.registry.available(Capability.CITATIONS))
        confirmations = await self._confirmations(candidate)
        return self.resolver.resolve(
            candidate,
            base_score,
            item.known,
            evidence=evidence,
            confirmations=len(confirmations),
            blacklist=self._blacklist,
        )

    async def _confirmations(self, candidate: Candidate) -> dict[str, str]:
        year = candidate.birth_year
        given, surname = parse_name_parts(candidate.name)
        if year is None or not surname:
            return {}
        found: dict[str, str] = {}
        for source in self.registry.available(Capability.CONFIRM):
            if source.name in candidate.sources:
                continue
            try:
                entry = await source.confirm_birth(first_given_name(given), surname, year, candidate.birth_place)
            except AuthenticationError:
                self.registry.disable(source.name, "authentication failed")
                continue
            except SourceError as e:
                logger.warning("traversal.confirmation_failed", provider=source.name, error=str(e))
                continue
            if entry is not None:
                found[source.name] = entry.display
        candidate.raw["confirmations"] = found
        return found

    def _record_candidates(
        self, item: WorkItem, candidates: list[Candidate], search: _Search, resolution: Resolution | None
    ) -> None:
        gender = expected_gender(item.asc)
        chosen = resolution.candidate.id if resolution and resolution.meets(self.resolver.config.acceptance_threshold) else None
        for candidate in candidates:
            self.store.record_search_candidate(
                SearchCandidateRecord(
                    job_id=self.job_id,
                    ascendancy_number=item.asc,
                    candidate=candidate,
                    provider_score=candidate.provider_score,
                    computed_score=self.scorer.score(candidate, item.known, gender),
                    pass_name="tree" if candidate.via_tree else search.passes.get(candidate.id, ""),
                    query=search.queries.get(candidate.id, {}),
                    selected=candidate.id == chosen,
                )
            )
        for candidate, reason in search.rejected:
            self.store.record_search_candidate(
                SearchCandidateRecord(
                    job_id=self.job_id,
                    ascendancy_number=item.asc,
                    candidate=candidate,
                    provider_score=candidate.provider_score,
                    computed_score=0,
                    pass_name="tree" if candidate.via_tree else search.passes.get(candidate.id, ""),
                    rejection_reason=reason,
                )
            )
        search.rejected.clear()

    def _tree_identity(self, candidate: Candidate) -> tuple[str, str]:
        """(provider, id) at a tree-capable provider, preferring the candidate's own."""
        providers = [candidate.provider, *[p for p in candidate.source_ids if p != candidate.provider]]
        for provider in providers:
            source = self.registry.get(provider)
            if source is not None and Capability.TREE in source.capabilities:
                return provider, candidate.source_ids.get(provider, candidate.id)
        return "", ""

    def _accepted_ancestor(
        self, item: WorkItem, resolution: Resolution, search: _Search, existing: Ancestor | None
    ) -> Ancestor:
        candidate = resolution.candidate
        provider, person_id = self._tree_identity(candidate)
        if person_id:
            self._visited.add((provider, person_id))
            self.registry.claim(person_id, provider)
        notes = [f"{k}: {v:+d}" for k, v in resolution.adjustments.items() if k != "blacklisted"]
        return Ancestor(
            job_id=self.job_id,
            ascendancy_number=item.asc,
            name=candidate.name,
            gender=candidate.gender if candidate.gender in ("Male", "Female") else (expected_gender(item.asc) or "Unknown"),
            birth_date=candidate.birth_date,
            birth_place=sanitize_place_name(candidate.birth_place),
            death_date=candidate.death_date,
            death_place=sanitize_place_name(candidate.death_place),
            confidence_score=resolution.score,
            confidence_level=resolution.level,
            state=PositionState.ACCEPTED,
            source_person_id=person_id,
            source_provider=provider,
            sources=list(candidate.sources),
            match_ids=dict(candidate.source_ids),
            discovery_method="tree" if candidate.via_tree else "search",
            father_name=candidate.father_name,
            mother_name=candidate.mother_name,
            evidence_chain=resolution.evidence,
            search_log=search.log,
            corrections_log=existing.corrections_log if existing else [],
            confirmation_results={"birth": candidate.raw.get("confirmations", {})},
            verification_notes=f"Scorer {resolution.base_score}" + (f" | {', '.join(notes)}" if notes else ""),
        )

    def _placeholder(
        self, item: WorkItem, resolution: Resolution | None, search: _Search, existing: Ancestor | None
    ) -> Ancestor:
        known = item.known
        label = " ".join(p for p in (known.given_name, known.surname) if p) or "Unknown"
        score = resolution.score if resolution else 0
        if resolution is None:
            reason = "No candidates found"
        elif resolution.blacklisted:
            reason = "Best candidate was rejected by an admin"
        else:
            reason = f"Best candidate {resolution.candidate.name} scored {score}"
        return Ancestor(
            job_id=self.job_id,
            ascendancy_number=item.asc,
            name=f"{label} {NOT_FOUND_SUFFIX}",
            gender=expected_gender(item.asc) or "Unknown",
            confidence_score=score,
            confidence_level=level_for_score(score),
            state=PositionState.NOT_FOUND,
            discovery_method="search",
            search_log=search.log,
            corrections_log=existing.corrections_log if existing else [],
            verification_notes=reason,
        )

    def _guarded_save(self, ancestor: Ancestor) -> bool:
        """Upsert unless the position now holds Customer Data."""
        current = self.store.get_ancestor(self.job_id, ancestor.ascendancy_number)
        if current is not None and current.is_customer_data:
            logger.info("traversal.customer_data_protected", asc=ancestor.ascendancy_number)
            return False
        self.store.save_ancestor(ancestor)
        return True

    # ------------------------------------------------------------------
    # Couple marriages
    # ------------------------------------------------------------------

    async def _couple_marriage(self, item: WorkItem) -> tuple[WorkItem, tuple[dict, Citation] | None]:
        """Look up the marriage of the wife at ``item.asc`` to her stored husband.

        The entry is attached to the husband straight away and returned for the
        wife once she is stored. Her maiden surname seeds her search when the
        tree did not supply one.
        """
        husband = self.store.get_ancestor(self.job_id, spouse_of(item.asc))
        if husband is None or husband.is_placeholder:
            return item, None
        given, surname = parse_name_parts(husband.name)
        if not surname:
            return item, None
        child_year = item.known.child_birth_year
        husband_year = extract_year(husband.birth_date)
        if child_year:
            year_from, year_to = child_year - self.config.marriage_window, child_year
        elif husband_year:
            year_from, year_to = husband_year + 18, husband_year + 45
        else:
            return item, None
        district = extract_district(husband.birth_place or item.known.birth_place)

        entry: VitalEntry | None = None
        for source in self.registry.available(Capability.CONFIRM):
            try:
                entry = await source.find_marriage(
                    surname, first_given_name(given), item.known.surname, year_from, year_to, district
                )
            except AuthenticationError:
                self.registry.disable(source.name, "authentication failed")
                continue
            except SourceError as e:
                logger.warning("traversal.marriage_search_failed", provider=source.name, error=str(e))
                continue
            if entry is not None:
                break
        if entry is None:
            logger.info(
                "traversal.marriage_not_found", husband=husband.ascendancy_number, years=f"{year_from}-{year_to}"
            )
            return item, None

        result = {
            "matched": True,
            "entry": entry.display,
            "year": entry.year,
            "quarter": entry.quarter,
            "district": entry.district,
            "spouse_surname": entry.spouse_surname or None,
            "provider": entry.provider,
        }
        citation = Citation(
            title=entry.display,
            citation=f"vol. {entry.volume} p. {entry.page}" if entry.volume else "",
            source_type="marriage_record",
            weight=self.resolver.config.evidence_weights.get("marriage_record", 0),
            provider=entry.provider,
        )
        self._attach_marriage(husband.ascendancy_number, result, citation)
        logger.info(
            "traversal.marriage_found",
            husband=husband.ascendancy_number,
            wife=item.asc,
            entry=entry.display,
        )

        maiden = entry.spouse_surname.strip()
        if maiden and not item.known.surname:
            maiden = maiden.title() if maiden.isupper() else maiden
            known = item.known.model_copy(update={"surname": maiden})
            item = WorkItem(asc=item.asc, known=known, child_ref=item.child_ref)
        return item, (result, citation)

    def _attach_marriage(self, asc: int, result: dict, citation: Citation) -> None:
        ancestor = self.store.get_ancestor(self.job_id, asc)
        if ancestor is None or ancestor.is_placeholder:
            return
        evidence = list(ancestor.evidence_chain)
        # Customer Data keeps its evidence across runs
        if citation not in evidence:
            evidence.append(citation)
        self.store.update_ancestor(
            self.job_id,
            asc,
            {"confirmation_results": {**ancestor.confirmation_results, "marriage": result}, "evidence_chain": evidence},
        )

    # ------------------------------------------------------------------
    # Next generation
    # ------------------------------------------------------------------

    @staticmethod
    def _facts_of(ancestor: Ancestor) -> PersonFacts:
        given, surname = parse_name_parts(ancestor.name)
        return PersonFacts(
            given_name=given,
            surname=surname,
            gender=ancestor.gender if ancestor.gender in ("Male", "Female") else None,
            birth_date=ancestor.birth_date,
            birth_place=ancestor.birth_place,
            death_date=ancestor.death_date,
            death_place=ancestor.death_place,
            father_name=ancestor.father_name,
            mother_name=ancestor.mother_name,
        )

    def _outcome_from(self, ancestor: Ancestor | None) -> PositionOutcome:
        if ancestor is None:
            raise RuntimeError("Position vanished while it was being processed")
        return PositionOutcome(
            asc=ancestor.ascendancy_number,
            facts=self._facts_of(ancestor),
            source_id=ancestor.source_person_id,
            provider=ancestor.source_provider,
            state=ancestor.state,
        )

    def _parent_item(self, parent_asc: int, child: PositionOutcome, existing: Ancestor | None) -> WorkItem:
        """Known facts for a parent, built from the child plus any anchor for that position."""
        is_father = parent_asc % 2 == 0
        child_facts = child.facts
        child_year = child_facts.birth_year
        recorded = child_facts.father_name if is_father else child_facts.mother_name
        given, surname = parse_name_parts(recorded)
        if is_father and not surname:
            surname = child_facts.surname
        age = self.config.father_age_estimate if is_father else self.config.mother_age_estimate

        derived = PersonFacts(
            given_name=given,
            surname=surname,
            gender="Male" if is_father else "Female",
            birth_place=child_facts.birth_place,
        )
        anchor = self._anchors.get(parent_asc)
        facts = anchor.merged_with(derived) if anchor else derived
        if existing is not None and existing.is_customer_data:
            facts = self._facts_of(existing).merged_with(facts)

        known = KnownFacts(
            **facts.model_dump(),
            child_birth_year=child_year,
            estimated_birth_year=child_year - age if child_year else None,
            anchor=anchor,
        )
        child_ref = (child.provider, child.source_id) if child.source_id else None
        logger.debug(
            "traversal.parent_queued",
            asc=parent_asc,
            generation=generation_of(parent_asc),
            seeded_from=child.asc,
            via_tree=child_ref is not None,
        )
        return WorkItem(asc=parent_asc, known=known, child_ref=child_ref)
