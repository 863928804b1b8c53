"""Entry point that starts a question backfill chain for a section."""

from __future__ import annotations

import logging
from datetime import datetime

from quizfill.backfill.errors import ChainConflictError, InvalidPayloadError, SectionNotFoundError
from quizfill.backfill.sweeper import LEASE_EXPIRED_ERROR
from quizfill.content.store import ContentStore
from quizfill.jobs.dispatch import JobDispatcher
from quizfill.jobs.models import DEFAULT_TARGET_COUNT, BackfillJob, JobStatus, new_backfill_job
from quizfill.jobs.store import JobStore
from quizfill.schemas.content import QuestionsStatus, utcnow

logger = logging.getLogger(__name__)


def is_live_job(job: BackfillJob | None, now: datetime | None = None) -> bool:
    """PENDING, or RUNNING with an unexpired lease."""
    if job is None:
        return False
    if job.status == JobStatus.PENDING:
        return True
    if job.status == JobStatus.RUNNING:
        return job.lease_expires_at is None or job.lease_expires_at > (now or utcnow())
    return False


def start_question_backfill(
    course_id: str,
    section_id: str,
    target_count: int = DEFAULT_TARGET_COUNT,
    *,
    job_store: JobStore,
    content_store: ContentStore,
    dispatcher: JobDispatcher,
) -> BackfillJob:
    """Create and dispatch the first job of a chain.

    Raises:
        SectionNotFoundError: no such section in this course.
        InvalidPayloadError: the section has no blueprint.
        ChainConflictError: a live chain already owns the section.
    """
    section = content_store.get_section(section_id)
    if section is None or section.course_id != course_id:
        raise SectionNotFoundError(f"Section {section_id} not found in course {course_id}.")
    if not section.blueprint:
        raise InvalidPayloadError(f"Section {section_id} has no blueprint to generate from.")

    active_id = section.active_question_job_id
    active = job_store.get(active_id) if active_id else None
    if is_live_job(active):
        raise ChainConflictError(section_id, active_id)
    if active is not None and active.status == JobStatus.RUNNING:
        # Lease expired: fail the abandoned step so its late commit is refused.
        expired = active.model_copy(update={
            "status": JobStatus.FAILED,
            "finished_at": utcnow(),
            "error": LEASE_EXPIRED_ERROR,
            "message": "Replaced by a new backfill chain.",
        })
        if not job_store.finish(expired):
            raise ChainConflictError(section_id, active_id)
        logger.warning("Failed expired job %s before restarting section %s", active_id, section_id)

    job = new_backfill_job(course_id, section_id, target_count)
    claimed = content_store.set_active_job(
        section_id,
        active_id,
        job.job_id,
        {
            "questions_status": QuestionsStatus.GENERATING,
            "questions_error_message": None,
        },
    )
    if not claimed:
        current = content_store.get_section(section_id)
        raise ChainConflictError(section_id, (current.active_question_job_id if current else None) or "unknown")

    job_store.create(job)
    logger.info(
        "Started backfill chain %s for section %s (target %d, max attempts %d)",
        job.job_id, section_id, job.target_count, job.max_attempts,
    )
    try:
        dispatcher.dispatch(job.job_id)
    except Exception as e:
        logger.error("Dispatch of job %s failed, left for the sweeper: %s", job.job_id, e)
    return job
