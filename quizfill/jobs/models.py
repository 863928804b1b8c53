"""Question backfill job schema and status."""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator

QUESTION_BACKFILL_JOB_TYPE = "QUESTION_BACKFILL"

# Per-step increment ceiling: one invocation never aims more than this far
# beyond the current count.
BACKFILL_STEP_COUNT = 30
MAX_NO_PROGRESS_STREAK = 4

DEFAULT_TARGET_COUNT = 10
MIN_TARGET_COUNT, MAX_TARGET_COUNT = 1, 30
MAX_ATTEMPT_LIMIT = 200


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


def clamp_int(value: object, lo: int, hi: int, default: int | None = None) -> int:
    """Floor ``value`` to an int and clamp it to [lo, hi]; fall back to ``default`` (or lo) when not numeric."""
    try:
        n = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        n = float(default if default is not None else lo)
    if not math.isfinite(n):
        n = float(default if default is not None else lo)
    return min(hi, max(lo, math.floor(n)))


def compute_max_backfill_attempts(target_count: object) -> int:
    safe_target = clamp_int(target_count or DEFAULT_TARGET_COUNT, MIN_TARGET_COUNT, MAX_TARGET_COUNT)
    return clamp_int(safe_target * 3, 18, 60)


def new_job_id() -> str:
    return f"qjob_{uuid.uuid4().hex[:16]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackfillJob(BaseModel):
    """One step of a question backfill chain; claimed once and never reopened."""

    job_id: str = Field(default_factory=new_job_id)
    job_type: str = QUESTION_BACKFILL_JOB_TYPE
    status: JobStatus = JobStatus.PENDING
    course_id: str = ""
    section_id: str = ""
    target_count: int = DEFAULT_TARGET_COUNT
    attempt: int = 1
    max_attempts: int = 30
    no_progress_streak: int = 0
    parent_job_id: str | None = None

    created_at: datetime = Field(default_factory=_utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    lease_expires_at: datetime | None = None
    duration_ms: int | None = None

    # Result fields
    final_count: int | None = None
    generated_now: int | None = None
    skipped_count: int | None = None
    duplicate_skipped: int | None = None
    ai_request_count: int | None = None
    next_job_id: str | None = None
    error: str | None = None
    message: str | None = None

    @field_validator("course_id", "section_id", mode="before")
    @classmethod
    def _coerce_id(cls, v: object) -> str:
        return str(v or "").strip()

    @field_validator("target_count", mode="before")
    @classmethod
    def _clamp_target(cls, v: object) -> int:
        return clamp_int(v or DEFAULT_TARGET_COUNT, MIN_TARGET_COUNT, MAX_TARGET_COUNT)

    @field_validator("attempt", mode="before")
    @classmethod
    def _clamp_attempt(cls, v: object) -> int:
        return clamp_int(v or 1, 1, MAX_ATTEMPT_LIMIT)

    @field_validator("max_attempts", mode="before")
    @classmethod
    def _clamp_max_attempts(cls, v: object) -> int:
        return clamp_int(v or 30, 1, MAX_ATTEMPT_LIMIT)

    @field_validator("no_progress_streak", mode="before")
    @classmethod
    def _clamp_streak(cls, v: object) -> int:
        return clamp_int(v or 0, 0, MAX_ATTEMPT_LIMIT)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def budget_exhausted(self) -> bool:
        return self.attempt > self.max_attempts or self.no_progress_streak >= MAX_NO_PROGRESS_STREAK

    def continuation(self, no_progress_streak: int) -> "BackfillJob":
        """Next PENDING job in this chain."""
        return BackfillJob(
            course_id=self.course_id,
            section_id=self.section_id,
            target_count=self.target_count,
            attempt=self.attempt + 1,
            max_attempts=self.max_attempts,
            no_progress_streak=no_progress_streak,
            parent_job_id=self.job_id,
        )


def new_backfill_job(
    course_id: str,
    section_id: str,
    target_count: int = DEFAULT_TARGET_COUNT,
    *,
    max_attempts: int | None = None,
) -> BackfillJob:
    """First job of a chain, with attempt/max_attempts/streak defaults."""
    return BackfillJob(
        course_id=course_id,
        section_id=section_id,
        target_count=target_count,
        attempt=1,
        max_attempts=max_attempts or compute_max_backfill_attempts(target_count),
        no_progress_streak=0,
    )
