"""Lease sweeper for abandoned backfill steps.

A RUNNING job whose lease expired is failed; while the chain still has
budget a continuation is queued in its place. Sections left GENERATING
without a live job are resolved from their persisted question count, and
PENDING jobs that were never picked up are dispatched again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from quizfill.backfill.step import SECTION_MOVED_ERROR, decide_after_batch, decide_after_crash
from quizfill.content.store import DEFAULT_SAMPLE_LIMIT, ContentStore
from quizfill.jobs.dispatch import JobDispatcher
from quizfill.jobs.models import BackfillJob, JobStatus
from quizfill.jobs.store import JobStore, abandon_pending
from quizfill.schemas.content import QuestionsStatus, Section, utcnow
from quizfill.schemas.generation import BatchResult

logger = logging.getLogger(__name__)

LEASE_EXPIRED_ERROR = "Lease expired before the step finished."
ORPHANED_SECTION_ERROR = "Backfill chain ended without resolving the section."


@dataclass
class SweepReport:
    expired: list[str] = field(default_factory=list)
    continued: list[str] = field(default_factory=list)
    redispatched: list[str] = field(default_factory=list)
    repaired_sections: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.expired) + len(self.redispatched) + len(self.repaired_sections)


def sweep_expired_jobs(
    *,
    job_store: JobStore,
    content_store: ContentStore,
    dispatcher: JobDispatcher,
    lease_seconds: int = 300,
    sample_limit: int = DEFAULT_SAMPLE_LIMIT,
    now: datetime | None = None,
) -> SweepReport:
    now = now or utcnow()
    report = SweepReport()

    for job in job_store.list_expired_running(now):
        _expire_job(job, job_store, content_store, dispatcher, sample_limit, now, report)

    for section in content_store.list_sections(QuestionsStatus.GENERATING):
        _repair_section(section, job_store, content_store, dispatcher, lease_seconds, sample_limit, now, report)

    if report.total:
        logger.info(
            "Sweep: expired=%d continued=%d redispatched=%d repaired=%d",
            len(report.expired), len(report.continued),
            len(report.redispatched), len(report.repaired_sections),
        )
    return report


def _expire_job(
    job: BackfillJob,
    job_store: JobStore,
    content_store: ContentStore,
    dispatcher: JobDispatcher,
    sample_limit: int,
    now: datetime,
    report: SweepReport,
) -> None:
    section = content_store.get_section(job.section_id)
    owns_section = section is not None and section.active_question_job_id == job.job_id
    snapshot = content_store.fetch_existing_question_state(job.course_id, job.section_id, sample_limit)

    # An expired lease counts as a failed, no-progress step.
    outcome = decide_after_batch(
        job,
        snapshot,
        BatchResult.failed(LEASE_EXPIRED_ERROR),
        section.questions_count if section else 0,
    )
    next_job = outcome.next_job if owns_section else None

    failed = job.model_copy(update={
        "status": JobStatus.FAILED,
        "finished_at": now,
        "final_count": snapshot.count,
        "error": LEASE_EXPIRED_ERROR,
        "message": outcome.job_update.message if next_job else "Lease expired.",
        "next_job_id": next_job.job_id if next_job else None,
    })
    if not job_store.finish(failed):
        logger.debug("Expired job %s finished concurrently", job.job_id)
        return
    report.expired.append(job.job_id)
    logger.warning("Job %s lease expired (section %s)", job.job_id, job.section_id)

    if not owns_section:
        return
    if next_job is not None:
        job_store.create(next_job)
    fields = outcome.section_update.to_fields(now, None)
    fields.pop("active_question_job_id")
    if not content_store.set_active_job(job.section_id, job.job_id, next_job.job_id if next_job else None, fields):
        logger.warning("Section %s moved on while sweeping job %s", job.section_id, job.job_id)
        if next_job is not None:
            abandon_pending(job_store, next_job, SECTION_MOVED_ERROR)
        return
    if next_job is not None:
        report.continued.append(next_job.job_id)
        dispatcher.dispatch(next_job.job_id)


def _repair_section(
    section: Section,
    job_store: JobStore,
    content_store: ContentStore,
    dispatcher: JobDispatcher,
    lease_seconds: int,
    sample_limit: int,
    now: datetime,
    report: SweepReport,
) -> None:
    active_id = section.active_question_job_id
    active = job_store.get(active_id) if active_id else None

    if active is not None and active.status == JobStatus.PENDING:
        if active.created_at < now - timedelta(seconds=lease_seconds):
            logger.info("Re-dispatching stale PENDING job %s", active.job_id)
            dispatcher.dispatch(active.job_id)
            report.redispatched.append(active.job_id)
        return
    if active is not None and active.status == JobStatus.RUNNING:
        return

    # Terminal job whose continuation exists but never took over the section.
    if active is not None and active.next_job_id:
        successor = job_store.get(active.next_job_id)
        if successor is not None and not successor.is_terminal:
            if content_store.set_active_job(section.section_id, active_id, successor.job_id):
                report.repaired_sections.append(section.section_id)
                if successor.status == JobStatus.PENDING:
                    dispatcher.dispatch(successor.job_id)
                    report.redispatched.append(successor.job_id)
            return

    count = content_store.fetch_existing_question_state(section.course_id, section.section_id, sample_limit).count
    fields = decide_after_crash(count, section.questions_count, ORPHANED_SECTION_ERROR).section_update.to_fields(now, None)
    fields.pop("active_question_job_id")
    if content_store.set_active_job(section.section_id, active_id, None, fields):
        logger.warning("Resolved orphaned GENERATING section %s (count %d)", section.section_id, count)
        report.repaired_sections.append(section.section_id)
