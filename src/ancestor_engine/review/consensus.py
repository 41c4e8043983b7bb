"""Consensus between independent tree reviewers.

Reviewers run concurrently on the same payload. Their per-position confidence
deltas and suggested corrections are reconciled: agreement (plus, for field
changes, corroboration from the civil-registration cross-reference) is applied
and logged as reversible; anything less becomes a suggestion for a human.
The subject and Customer Data positions are never touched, and not-found
placeholders only ever receive suggestions.
"""
from __future__ import annotations

import asyncio
import json
import math
from datetime import UTC, datetime, timedelta

import structlog
from pydantic import BaseModel, Field

from ..models.ancestor import Ancestor, clamp_score
from ..models.job import ReviewStatus
from ..models.review import (
    AppliedCorrection,
    ConsensusOutcome,
    ReviewFlag,
    Suggestion,
    SuggestionKind,
    TreeReview,
)
from ..sources.base import AuthenticationError, Capability, RecordSource
from ..store import RecordStore
from .corrections import apply_field_change, confirmation_supports, corrections_agree, parse_correction
from .cross_reference import cross_reference_job
from .llm import DEFAULT_MAX_REPLY_CHARS, ReviewerClient, ReviewerError
from .payload import build_review_payload
from .prompts import SYSTEM_PROMPT

logger = structlog.get_logger(__name__)


class ConsensusInProgressError(Exception):
    """A consensus pass is already running for this job."""


class ConsensusConfig(BaseModel):
    min_delta: int = Field(default=-10)
    max_delta: int = Field(default=10)
    tolerance_bands: list[tuple[int, int]] = Field(
        default_factory=lambda: [(3, 1), (6, 2)],
        description="(largest |delta|, allowed spread) pairs, smallest first",
    )
    wide_tolerance: int = Field(default=3, description="Allowed spread above the last band")
    max_reply_chars: int = Field(default=DEFAULT_MAX_REPLY_CHARS)
    max_feedback_entries: int = Field(default=50)
    stale_after_seconds: int = Field(
        default=1800, ge=0, description="A review left running without progress this long may be restarted"
    )


def delta_tolerance(a: int, b: int, config: ConsensusConfig | None = None) -> int:
    """Allowed spread between two deltas, wider for larger magnitudes."""
    config = config or ConsensusConfig()
    magnitude = max(abs(a), abs(b))
    for limit, tolerance in config.tolerance_bands:
        if magnitude <= limit:
            return tolerance
    return config.wide_tolerance


def deltas_agree(deltas: list[int], config: ConsensusConfig | None = None) -> bool:
    """At least two nonzero deltas, all the same sign, within tolerance."""
    if len(deltas) < 2 or any(d == 0 for d in deltas):
        return False
    if len({d > 0 for d in deltas}) != 1:
        return False
    lo, hi = min(deltas), max(deltas)
    return hi - lo <= delta_tolerance(lo, hi, config)


def average_delta(deltas: list[int]) -> int:
    """Mean rounded half up."""
    return math.floor(sum(deltas) / len(deltas) + 0.5)


class ConsensusEngine:
    """Runs one review-and-reconcile pass per job."""

    def __init__(
        self,
        store: RecordStore,
        reviewers: list[ReviewerClient],
        confirmer: RecordSource | None = None,
        config: ConsensusConfig | None = None,
    ) -> None:
        self.store = store
        self.reviewers = reviewers
        self.confirmer = confirmer
        self.config = config or ConsensusConfig()
        self._running: set[str] = set()

    async def run(self, job_id: str, force: bool = False) -> ConsensusOutcome:
        """Review and reconcile one job.

        A job already marked running is refused unless ``force`` is set or it
        has made no progress for ``stale_after_seconds``.
        """
        if job_id in self._running:
            raise ConsensusInProgressError(f"Consensus already running for job {job_id}")
        job = self.store.get_job(job_id)
        if job is None:
            raise ValueError(f"Unknown job {job_id}")
        log = logger.bind(job_id=job_id)
        if job.review_status == ReviewStatus.RUNNING:
            if not force and not self._is_stale(job.updated_at):
                raise ConsensusInProgressError(f"Consensus already running for job {job_id}")
            log.warning("review.stale_run_replaced", forced=force, last_update=job.updated_at.isoformat())

        self._running.add(job_id)
        try:
            self.store.update_job(job_id, review_status=ReviewStatus.RUNNING)
            try:
                outcome = await self._run(job_id)
            except Exception as e:
                log.exception("review.failed", error=str(e))
                self.store.update_job(
                    job_id, review_status=ReviewStatus.FAILED, progress_message=f"Review failed: {e}"
                )
                raise
            self.store.update_job(job_id, review_status=ReviewStatus.COMPLETED, progress_message="Review complete")
            log.info(
                "review.completed",
                corrections=len(outcome.corrections),
                suggestions=len(outcome.suggestions),
                reviewer_errors=len(outcome.reviewer_errors),
            )
            return outcome
        finally:
            self._running.discard(job_id)

    def _is_stale(self, updated_at: datetime) -> bool:
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=UTC)
        return datetime.now(UTC) - updated_at > timedelta(seconds=self.config.stale_after_seconds)

    async def _run(self, job_id: str) -> ConsensusOutcome:
        reviewers = [r for r in self.reviewers if r.is_available()]
        if not reviewers:
            raise ReviewerError("No reviewer is configured")

        if self.confirmer is not None and self.confirmer.is_available() and Capability.CONFIRM in self.confirmer.capabilities:
            try:
                await cross_reference_job(self.store, job_id, self.confirmer)
            except AuthenticationError as e:
                logger.warning("review.cross_reference_skipped", error=str(e))

        payload = build_review_payload(self.store, job_id, self.config.max_feedback_entries)
        user_message = json.dumps(payload, indent=2, default=str)
        reviews, errors = await self._collect_reviews(reviewers, user_message)

        self._store_reviews(job_id, reviews, errors)
        outcome = self.reconcile(job_id, reviews)
        outcome.reviewer_errors = errors

        job = self.store.get_job(job_id)
        summary = dict(job.review_summary) if job else {}
        summary["corrections"] = [c.model_dump() for c in outcome.corrections]
        summary["suggestions"] = [s.model_dump() for s in outcome.suggestions]
        self.store.update_job(job_id, review_summary=summary)
        return outcome

    async def _collect_reviews(
        self, reviewers: list[ReviewerClient], user_message: str
    ) -> tuple[dict[str, TreeReview], dict[str, str]]:
        results = await asyncio.gather(
            *(r.review(SYSTEM_PROMPT, user_message, self.config.max_reply_chars) for r in reviewers),
            return_exceptions=True,
        )
        reviews: dict[str, TreeReview] = {}
        errors: dict[str, str] = {}
        for reviewer, result in zip(reviewers, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("review.reviewer_failed", reviewer=reviewer.name, error=str(result))
                errors[reviewer.name] = str(result)
            else:
                reviews[reviewer.name] = result
        return reviews, errors

    def _store_reviews(self, job_id: str, reviews: dict[str, TreeReview], errors: dict[str, str]) -> None:
        per_position: dict[int, dict] = {}
        for name, review in reviews.items():
            for item in review.ancestor_reviews:
                per_position.setdefault(item.asc, {})[name] = item.model_dump(exclude={"asc", "name"})
        for asc, review in per_position.items():
            if self.store.get_ancestor(job_id, asc) is not None:
                self.store.update_ancestor(job_id, asc, {"review": review})

        summary = {
            "completed_at": datetime.now(UTC).isoformat(),
            "reviewers": {
                name: {
                    "reviewer": review.reviewer,
                    "overall": review.overall.model_dump(),
                    "gap_analysis": [g.model_dump() for g in review.gap_analysis],
                }
                for name, review in reviews.items()
            },
            "errors": errors,
        }
        self.store.update_job(job_id, review_summary=summary)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, job_id: str, reviews: dict[str, TreeReview]) -> ConsensusOutcome:
        outcome = ConsensusOutcome()
        for ancestor in self.store.list_ancestors(job_id):
            asc = ancestor.ascendancy_number
            if asc == 1 or ancestor.is_customer_data:
                continue
            per_reviewer = {name: r.for_position(asc) for name, r in reviews.items()}
            per_reviewer = {name: r for name, r in per_reviewer.items() if r is not None}
            if not per_reviewer:
                continue
            deltas = {name: r.confidence_adjustment for name, r in per_reviewer.items()}
            ancestor = self._reconcile_delta(ancestor, deltas, len(reviews), outcome)
            flags = {
                name: [f for f in r.flags if f.suggested_correction] for name, r in per_reviewer.items()
            }
            self._reconcile_corrections(ancestor, flags, outcome)
        return outcome

    def _reconcile_delta(
        self, ancestor: Ancestor, deltas: dict[str, int], reviewer_count: int, outcome: ConsensusOutcome
    ) -> Ancestor:
        cfg = self.config
        bounded = {
            name: max(cfg.min_delta, min(cfg.max_delta, d)) for name, d in deltas.items()
        }
        values = list(bounded.values())
        if not any(values):
            return ancestor

        # Placeholders only ever get suggestions
        if not ancestor.is_placeholder and len(values) == reviewer_count and deltas_agree(values, cfg):
            old = ancestor.confidence_score
            new = clamp_score(old + average_delta(values))
            if new == old:
                return ancestor
            entry = apply_field_change(
                self.store,
                ancestor,
                field="confidence_score",
                new_value=new,
                kind=SuggestionKind.CONFIDENCE_ADJUSTMENT.value,
                source="consensus",
                deltas=values,
            )
            outcome.corrections.append(
                AppliedCorrection(
                    asc=ancestor.ascendancy_number,
                    name=ancestor.name,
                    correction_id=entry.id,
                    kind=SuggestionKind.CONFIDENCE_ADJUSTMENT,
                    field="confidence_score",
                    old_value=old,
                    new_value=new,
                )
            )
            logger.info(
                "review.confidence_adjusted", asc=ancestor.ascendancy_number, old=old, new=new, deltas=values
            )
            return self.store.get_ancestor(ancestor.job_id, ancestor.ascendancy_number) or ancestor

        outcome.suggestions.append(
            Suggestion(
                asc=ancestor.ascendancy_number,
                name=ancestor.name,
                kind=SuggestionKind.CONFIDENCE_ADJUSTMENT,
                field="confidence_score",
                current_value=ancestor.confidence_score,
                suggested_value=clamp_score(ancestor.confidence_score + average_delta(values)),
                deltas=bounded,
                single_reviewer=sum(1 for v in values if v) == 1,
            )
        )
        return ancestor

    def _reconcile_corrections(
        self, ancestor: Ancestor, flags: dict[str, list[ReviewFlag]], outcome: ConsensusOutcome
    ) -> None:
        names = list(flags)
        matched: set[tuple[str, int]] = set()
        for i, name in enumerate(names):
            for fi, flag in enumerate(flags[name]):
                if (name, fi) in matched:
                    continue
                parsed = parse_correction(flag.suggested_correction)
                if parsed is None:
                    continue
                messages = {name: flag.message}
                for other in names[i + 1:]:
                    for oi, other_flag in enumerate(flags[other]):
                        if (other, oi) in matched:
                            continue
                        if corrections_agree(flag.suggested_correction, other_flag.suggested_correction):
                            matched.add((other, oi))
                            messages[other] = other_flag.message
                            break

                agreed = len(messages) >= 2 and len(messages) == len(names)
                confirmed = (
                    agreed
                    and not ancestor.is_placeholder
                    and confirmation_supports(parsed, ancestor.confirmation_results)
                )
                current = getattr(ancestor, parsed.field)
                if confirmed and current != parsed.value:
                    entry = apply_field_change(
                        self.store,
                        ancestor,
                        field=parsed.field,
                        new_value=parsed.value,
                        kind=SuggestionKind.FIELD_CORRECTION.value,
                        source="consensus",
                        messages=list(messages.values()),
                        confirmed=True,
                    )
                    outcome.corrections.append(
                        AppliedCorrection(
                            asc=ancestor.ascendancy_number,
                            name=ancestor.name,
                            correction_id=entry.id,
                            kind=SuggestionKind.FIELD_CORRECTION,
                            field=parsed.field,
                            old_value=current,
                            new_value=parsed.value,
                        )
                    )
                    logger.info(
                        "review.field_corrected",
                        asc=ancestor.ascendancy_number,
                        field=parsed.field,
                        old=current,
                        new=parsed.value,
                    )
                    ancestor = self.store.get_ancestor(ancestor.job_id, ancestor.ascendancy_number) or ancestor
                elif current != parsed.value:
                    outcome.suggestions.append(
                        Suggestion(
                            asc=ancestor.ascendancy_number,
                            name=ancestor.name,
                            kind=SuggestionKind.FIELD_CORRECTION,
                            field=parsed.field,
                            current_value=current,
                            suggested_value=parsed.value,
                            messages=messages,
                            confirmed=False,
                            single_reviewer=len(messages) == 1,
                        )
                    )
