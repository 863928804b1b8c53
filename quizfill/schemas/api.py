"""Request and response models for the HTTP API and CLI status output."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from quizfill.jobs.models import DEFAULT_TARGET_COUNT, MAX_TARGET_COUNT, MIN_TARGET_COUNT, BackfillJob
from quizfill.schemas.content import Section


class StartBackfillRequest(BaseModel):
    target_count: int = Field(DEFAULT_TARGET_COUNT, ge=MIN_TARGET_COUNT, le=MAX_TARGET_COUNT)


class StartBackfillResponse(BaseModel):
    """Immediate response for POST .../question-backfill."""

    job_id: str
    status: str
    target_count: int
    max_attempts: int


class JobStatusResponse(BaseModel):
    job_id: str
    status: str
    course_id: str
    section_id: str
    target_count: int
    attempt: int
    max_attempts: int
    no_progress_streak: int
    parent_job_id: str | None = None
    next_job_id: str | None = None
    final_count: int | None = None
    generated_now: int | None = None
    skipped_count: int | None = None
    duplicate_skipped: int | None = None
    ai_request_count: int | None = None
    message: str | None = None
    error: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: int | None = None

    @classmethod
    def from_job(cls, job: BackfillJob) -> "JobStatusResponse":
        return cls.model_validate(job.model_dump(mode="json", exclude={"job_type", "lease_expires_at"}))


class SectionQuestionsStatus(BaseModel):
    section_id: str
    course_id: str
    questions_status: str
    questions_count: int
    active_question_job_id: str | None = None
    questions_error_message: str | None = None
    last_error_at: datetime | None = None
    last_questions_duration_ms: int | None = None
    question_gen_stats: dict[str, Any] = {}

    @classmethod
    def from_section(cls, section: Section) -> "SectionQuestionsStatus":
        return cls(
            section_id=section.section_id,
            course_id=section.course_id,
            questions_status=section.questions_status.value,
            questions_count=section.questions_count,
            active_question_job_id=section.active_question_job_id,
            questions_error_message=section.questions_error_message,
            last_error_at=section.last_error_at,
            last_questions_duration_ms=section.last_questions_duration_ms,
            question_gen_stats=section.question_gen_stats,
        )


class SweepResponse(BaseModel):
    expired: list[str] = []
    continued: list[str] = []
    redispatched: list[str] = []
    repaired_sections: list[str] = []
