"""Research job, intake and admin feedback models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

from .candidate import PersonFacts


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ReviewStatus(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class IntakeRequest(BaseModel):
    """Everything the intake boundary hands to the engine for one job."""

    job_id: str
    customer_name: str = Field(default="")
    generations: int = Field(default=4, ge=1, le=10)
    subject: PersonFacts
    father_name: str = Field(default="")
    mother_name: str = Field(default="")
    notes: str = Field(default="")
    customer_ancestors: dict[int, PersonFacts] = Field(
        default_factory=dict, description="Extra customer-supplied positions keyed by Ahnentafel number"
    )


class ResearchJob(BaseModel):
    """Job record kept by the store."""

    id: str
    customer_name: str = Field(default="")
    generations: int = Field(default=4)
    status: JobStatus = Field(default=JobStatus.PENDING)
    progress_message: str = Field(default="")
    progress_done: int = 0
    progress_total: int = 0
    error_message: str | None = None
    review_status: ReviewStatus = Field(default=ReviewStatus.NOT_STARTED)
    review_summary: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class FeedbackAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    CORRECT = "correct"
    SELECT_ALTERNATIVE = "select_alternative"


class FeedbackEntry(BaseModel):
    """An admin decision remembered for future reviews."""

    job_id: str
    action: FeedbackAction
    ascendancy_number: int
    ancestor_name: str = Field(default="")
    surname: str = Field(default="")
    location: str = Field(default="")
    birth_year: int | None = None
    original: dict = Field(default_factory=dict)
    corrected: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class JobSummary(BaseModel):
    """Outcome of one traversal run."""

    job_id: str
    status: JobStatus
    positions_processed: int = 0
    accepted: int = 0
    not_found: int = 0
    protected: int = 0
    enriched: int = 0
    error_message: str | None = None
