"""Pure decision logic for one backfill step.

Each ``decide_*`` function maps the claimed job, the start-of-step snapshot
and (after generation) the batch result to a ``StepOutcome``: what to write
to the job, what to write to the section, and which continuation job (if
any) to queue. The worker applies outcomes; nothing here does I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from quizfill.jobs.models import (
    BACKFILL_STEP_COUNT,
    MAX_NO_PROGRESS_STREAK,
    BackfillJob,
    JobStatus,
)
from quizfill.schemas.content import ExistingQuestionState, QuestionsStatus
from quizfill.schemas.generation import BatchResult

MSG_ALREADY_SATISFIED = "Target already satisfied."
MSG_TARGET_REACHED = "Backfill completed and target count reached."
MSG_STOPPED_EARLY = "Backfill stopped before target count was reached."
MSG_STEP_QUEUED = "Backfill step completed; next step queued."
MSG_RETRY_QUEUED = "Retry queued after failed backfill step."
SECTION_STOPPED_ERROR = "Question backfill stopped before reaching the requested count."
BUDGET_EXHAUSTED_ERROR = "Backfill stopped after too many attempts with limited progress."
SECTION_MOVED_ERROR = "Section was taken over by another backfill chain."
SECTION_WRITE_FAILED_ERROR = "Section update failed before the continuation could start."


@dataclass(frozen=True)
class JobUpdate:
    status: JobStatus
    final_count: int
    generated_now: int = 0
    skipped_count: int | None = None
    duplicate_skipped: int | None = None
    ai_request_count: int | None = None
    message: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class SectionUpdate:
    questions_status: QuestionsStatus
    questions_count: int
    error_message: str | None = None
    clear_error: bool = True
    mark_error: bool | None = None  # True: stamp last_error_at, False: clear it, None: leave it
    question_gen_stats: dict[str, Any] | None = None

    def to_fields(self, now: datetime, active_job_id: str | None, duration_ms: int | None = None) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "questions_status": self.questions_status,
            "questions_count": self.questions_count,
            "active_question_job_id": active_job_id,
        }
        if self.error_message is not None:
            fields["questions_error_message"] = self.error_message
        elif self.clear_error:
            fields["questions_error_message"] = None
        if self.mark_error is True:
            fields["last_error_at"] = now
        elif self.mark_error is False:
            fields["last_error_at"] = None
        if self.question_gen_stats is not None:
            fields["question_gen_stats"] = self.question_gen_stats
        if duration_ms is not None:
            fields["last_questions_duration_ms"] = duration_ms
        return fields


@dataclass(frozen=True)
class StepOutcome:
    reason: str
    job_update: JobUpdate
    section_update: SectionUpdate
    next_job: BackfillJob | None = None

    @property
    def is_terminal(self) -> bool:
        return self.next_job is None


def next_step_target(job: BackfillJob, snapshot: ExistingQuestionState) -> int:
    return min(job.target_count, snapshot.count + BACKFILL_STEP_COUNT)


def _terminal(
    *,
    reason: str,
    final_count: int,
    section_count: int,
    reached: bool,
    error: str | None = None,
    batch: BatchResult | None = None,
    stats: dict[str, Any] | None = None,
) -> StepOutcome:
    """Resolve the chain: COMPLETED when the target was reached or any questions exist, FAILED otherwise."""
    completed = reached or final_count > 0
    job_update = JobUpdate(
        status=JobStatus.COMPLETED if completed else JobStatus.FAILED,
        final_count=final_count,
        generated_now=batch.generated_now if batch else 0,
        skipped_count=batch.skipped_count if batch else None,
        duplicate_skipped=batch.duplicate_skipped if batch else None,
        ai_request_count=batch.ai_request_count if batch else None,
        message=MSG_TARGET_REACHED if reached else MSG_STOPPED_EARLY,
        error=None if completed else (error or BUDGET_EXHAUSTED_ERROR),
    )
    section_update = SectionUpdate(
        questions_status=QuestionsStatus.COMPLETED if completed else QuestionsStatus.FAILED,
        questions_count=max(final_count, section_count),
        error_message=None if completed else (error or SECTION_STOPPED_ERROR),
        mark_error=not reached,
        question_gen_stats=stats,
    )
    return StepOutcome(reason=reason, job_update=job_update, section_update=section_update)


def decide_before_generation(
    job: BackfillJob,
    snapshot: ExistingQuestionState,
    section_count: int = 0,
) -> StepOutcome | None:
    """Short-circuit or budget stop before any planner/generator call; ``None`` means generate."""
    if snapshot.count >= job.target_count:
        return StepOutcome(
            reason="already_satisfied",
            job_update=JobUpdate(
                status=JobStatus.COMPLETED,
                final_count=snapshot.count,
                generated_now=0,
                ai_request_count=0,
                message=MSG_ALREADY_SATISFIED,
            ),
            section_update=SectionUpdate(
                questions_status=QuestionsStatus.COMPLETED,
                questions_count=max(snapshot.count, section_count),
            ),
        )
    if job.budget_exhausted:
        return _terminal(
            reason="out_of_attempts" if job.attempt > job.max_attempts else "stalled",
            final_count=snapshot.count,
            section_count=section_count,
            reached=False,
        )
    return None


def decide_after_batch(
    job: BackfillJob,
    snapshot: ExistingQuestionState,
    batch: BatchResult,
    section_count: int = 0,
    stats: dict[str, Any] | None = None,
) -> StepOutcome:
    """Terminate or queue the next step after a generation batch (successful or not)."""
    if not batch.success:
        next_streak = job.no_progress_streak + 1
        if job.attempt >= job.max_attempts or next_streak >= MAX_NO_PROGRESS_STREAK:
            return _terminal(
                reason="out_of_attempts" if job.attempt >= job.max_attempts else "stalled",
                final_count=snapshot.count,
                section_count=section_count,
                reached=False,
                error=batch.error,
            )
        return StepOutcome(
            reason="retry_queued",
            job_update=JobUpdate(
                status=JobStatus.COMPLETED,
                final_count=snapshot.count,
                generated_now=0,
                message=MSG_RETRY_QUEUED,
                error=batch.error,
            ),
            section_update=SectionUpdate(
                questions_status=QuestionsStatus.GENERATING,
                questions_count=max(snapshot.count, section_count),
                clear_error=False,
            ),
            next_job=job.continuation(next_streak),
        )

    final_count = snapshot.count + batch.generated_now
    reached = final_count >= job.target_count
    next_streak = 0 if batch.generated_now > 0 else job.no_progress_streak + 1
    out_of_attempts = job.attempt >= job.max_attempts
    stalled = next_streak >= MAX_NO_PROGRESS_STREAK

    if reached or out_of_attempts or stalled:
        reason = "target_met" if reached else ("stalled" if stalled else "out_of_attempts")
        return _terminal(
            reason=reason,
            final_count=final_count,
            section_count=section_count,
            reached=reached,
            batch=batch,
            stats=stats,
        )

    return StepOutcome(
        reason="continued",
        job_update=JobUpdate(
            status=JobStatus.COMPLETED,
            final_count=final_count,
            generated_now=batch.generated_now,
            skipped_count=batch.skipped_count,
            duplicate_skipped=batch.duplicate_skipped,
            ai_request_count=batch.ai_request_count,
            message=MSG_STEP_QUEUED,
        ),
        section_update=SectionUpdate(
            questions_status=QuestionsStatus.GENERATING,
            questions_count=max(final_count, section_count),
            question_gen_stats=stats,
        ),
        next_job=job.continuation(next_streak),
    )


def decide_after_crash(final_count: int, section_count: int, error: str) -> StepOutcome:
    """Resolution after an unexpected exception. The job fails and the section leaves GENERATING."""
    completed = final_count > 0
    return StepOutcome(
        reason="crashed",
        job_update=JobUpdate(
            status=JobStatus.FAILED,
            final_count=final_count,
            error=error or "Unexpected backfill error.",
        ),
        section_update=SectionUpdate(
            questions_status=QuestionsStatus.COMPLETED if completed else QuestionsStatus.FAILED,
            questions_count=max(final_count, section_count),
            error_message=None if completed else (error or "Unexpected backfill error."),
            mark_error=True,
        ),
    )
