"""Backfill orchestrator: one bounded step per invocation.

``BackfillWorker.process`` claims a job, validates it, snapshots the
section, runs at most one generation batch, then writes the outcome chosen
by ``quizfill.backfill.step`` to the job and the section. A continuation
job is created and dispatched only after this job's terminal write
succeeded, so each job is executed exactly once. Section writes go through
only while the section still points at this job; a continuation that loses
the section is failed instead of dispatched.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from quizfill.backfill.batch import run_generation_batch
from quizfill.backfill.errors import InvalidPayloadError, SectionNotFoundError
from quizfill.backfill.generator import QuestionGenerator
from quizfill.backfill.planning import Planner, StaticPlanner
from quizfill.backfill.step import (
    SECTION_MOVED_ERROR,
    SECTION_WRITE_FAILED_ERROR,
    StepOutcome,
    decide_after_batch,
    decide_after_crash,
    decide_before_generation,
    next_step_target,
)
from quizfill.content.store import DEFAULT_SAMPLE_LIMIT, ContentStore
from quizfill.jobs.dispatch import JobDispatcher
from quizfill.jobs.models import QUESTION_BACKFILL_JOB_TYPE, BackfillJob, JobStatus
from quizfill.jobs.store import JobStore, abandon_pending
from quizfill.schemas.content import QuestionsStatus, Section, utcnow
from quizfill.schemas.generation import BatchResult, RunMetrics

logger = logging.getLogger(__name__)


class BackfillWorker:
    def __init__(
        self,
        job_store: JobStore,
        content_store: ContentStore,
        planner: Planner,
        generator: QuestionGenerator,
        dispatcher: JobDispatcher,
        *,
        lease_seconds: int = 300,
        sample_limit: int = DEFAULT_SAMPLE_LIMIT,
        timeout_seconds: float = 120.0,
    ):
        self.job_store = job_store
        self.content_store = content_store
        self.planner = planner
        self.generator = generator
        self.dispatcher = dispatcher
        self.lease_seconds = lease_seconds
        self.sample_limit = sample_limit
        self.timeout_seconds = timeout_seconds

    def process(self, job_id: str) -> BackfillJob | None:
        """Run one step for ``job_id``. Returns the finished job, or None when nothing was claimed."""
        existing = self.job_store.get(job_id)
        if existing is None:
            logger.debug("Job %s not found; nothing to do", job_id)
            return None
        if existing.job_type != QUESTION_BACKFILL_JOB_TYPE:
            logger.info("Ignoring job %s of type %s", job_id, existing.job_type)
            return None

        job = self.job_store.claim(job_id, self.lease_seconds)
        if job is None:
            logger.debug("Job %s already claimed or finished", job_id)
            return None

        started = time.monotonic()
        logger.info(
            "Claimed job %s (section %s, attempt %d/%d, streak %d, target %d)",
            job.job_id, job.section_id, job.attempt, job.max_attempts,
            job.no_progress_streak, job.target_count,
        )
        try:
            return self._run(job, started)
        except InvalidPayloadError as e:
            return self._fail_invalid(job, started, str(e))
        except Exception as e:
            logger.exception("Backfill job %s crashed", job.job_id)
            return self._recover(job, started, e)

    # ------------------------------------------------------------------
    # Step
    # ------------------------------------------------------------------

    def _run(self, job: BackfillJob, started: float) -> BackfillJob | None:
        section = self._load_section(job)
        snapshot = self.content_store.fetch_existing_question_state(
            job.course_id, job.section_id, self.sample_limit
        )

        outcome = decide_before_generation(job, snapshot, section.questions_count)
        if outcome is None:
            batch = run_generation_batch(
                section,
                snapshot,
                next_step_target(job, snapshot),
                planner=self.planner,
                generator=self.generator,
                store=self.content_store,
                timeout_seconds=self.timeout_seconds,
            )
            if not batch.success:
                logger.warning("Job %s batch failed: %s", job.job_id, batch.error)
            stats = self._updated_stats(section, batch)
            outcome = decide_after_batch(job, snapshot, batch, section.questions_count, stats)

        return self._commit(job, outcome, started)

    def _load_section(self, job: BackfillJob) -> Section:
        if not job.course_id or not job.section_id:
            raise InvalidPayloadError("Job payload is missing course_id or section_id.")
        section = self.content_store.get_section(job.section_id)
        if section is None:
            raise SectionNotFoundError(f"Section {job.section_id} not found.")
        if section.course_id != job.course_id:
            raise InvalidPayloadError(
                f"Section {job.section_id} does not belong to course {job.course_id}."
            )
        if not section.blueprint:
            raise InvalidPayloadError(f"Section {job.section_id} has no blueprint to generate from.")
        return section

    def _updated_stats(self, section: Section, batch: BatchResult) -> dict[str, Any] | None:
        if batch.ai_request_count <= 0:
            return None
        try:
            return self.planner.update_stats(
                section.question_gen_stats or {},
                RunMetrics(
                    ai_request_count=batch.ai_request_count,
                    valid_produced=batch.generated_now,
                    duplicate_skipped=batch.duplicate_skipped,
                    latency_ms=batch.duration_ms,
                    token_budget=batch.token_budget,
                ),
            )
        except Exception as e:
            logger.warning("Planner stats update failed for section %s: %s", section.section_id, e)
            return None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _commit(self, job: BackfillJob, outcome: StepOutcome, started: float) -> BackfillJob | None:
        now = utcnow()
        duration_ms = int((time.monotonic() - started) * 1000)
        update = outcome.job_update
        finished = job.model_copy(update={
            "status": update.status,
            "finished_at": now,
            "duration_ms": duration_ms,
            "final_count": update.final_count,
            "generated_now": update.generated_now,
            "skipped_count": update.skipped_count,
            "duplicate_skipped": update.duplicate_skipped,
            "ai_request_count": update.ai_request_count,
            "message": update.message,
            "error": update.error,
            "next_job_id": outcome.next_job.job_id if outcome.next_job else None,
        })
        if not self.job_store.finish(finished):
            logger.warning("Job %s is no longer RUNNING; discarding step outcome", job.job_id)
            return None

        next_job = outcome.next_job
        if next_job is not None:
            self.job_store.create(next_job)

        fields = outcome.section_update.to_fields(now, None, duration_ms)
        fields.pop("active_question_job_id")
        try:
            owned = self.content_store.set_active_job(
                job.section_id, job.job_id, next_job.job_id if next_job else None, fields
            )
        except Exception:
            if next_job is not None:
                abandon_pending(self.job_store, next_job, SECTION_WRITE_FAILED_ERROR)
            raise
        if not owned:
            logger.warning(
                "Section %s no longer points at job %s; outcome kept on the job only",
                job.section_id, job.job_id,
            )
            if next_job is not None:
                abandon_pending(self.job_store, next_job, SECTION_MOVED_ERROR)
            return finished

        logger.info(
            "Job %s %s (%s): final_count=%d generated_now=%d next=%s",
            job.job_id, update.status.value, outcome.reason, update.final_count,
            update.generated_now, next_job.job_id if next_job else "-",
        )

        if next_job is not None:
            try:
                self.dispatcher.dispatch(next_job.job_id)
            except Exception as e:
                # The PENDING job stays referenced by the section; the sweeper re-dispatches it.
                logger.error("Dispatch of continuation %s failed: %s", next_job.job_id, e)
        return finished

    def _fail_invalid(self, job: BackfillJob, started: float, error: str) -> BackfillJob | None:
        logger.warning("Job %s has an invalid payload: %s", job.job_id, error)
        now = utcnow()
        finished = job.model_copy(update={
            "status": JobStatus.FAILED,
            "finished_at": now,
            "duration_ms": int((time.monotonic() - started) * 1000),
            "error": error,
            "message": "Invalid backfill payload.",
        })
        if not self.job_store.finish(finished):
            logger.warning("Job %s is no longer RUNNING; invalid payload not recorded", job.job_id)
            return None
        if job.section_id:
            cleared = self.content_store.set_active_job(
                job.section_id,
                job.job_id,
                None,
                {
                    "questions_status": QuestionsStatus.FAILED,
                    "questions_error_message": error,
                    "last_error_at": now,
                },
            )
            if cleared:
                logger.info("Cleared active job %s from section %s", job.job_id, job.section_id)
        return finished

    def _recover(self, job: BackfillJob, started: float, exc: Exception) -> BackfillJob | None:
        """Write a terminal state after an unexpected exception. Recovery errors are logged only."""
        error = str(exc)[:500] or exc.__class__.__name__
        count = 0
        section_count = 0
        try:
            count = self.content_store.fetch_existing_question_state(
                job.course_id, job.section_id, self.sample_limit
            ).count
            section = self.content_store.get_section(job.section_id)
            if section is not None:
                section_count = section.questions_count
        except Exception:
            logger.exception("Could not re-read question count for section %s", job.section_id)

        outcome = decide_after_crash(count, section_count, error)
        now = utcnow()
        duration_ms = int((time.monotonic() - started) * 1000)
        finished = job.model_copy(update={
            "status": outcome.job_update.status,
            "finished_at": now,
            "duration_ms": duration_ms,
            "final_count": outcome.job_update.final_count,
            "error": outcome.job_update.error,
            "message": "Backfill step crashed.",
        })
        fields = outcome.section_update.to_fields(now, None, duration_ms)
        fields.pop("active_question_job_id")
        try:
            recorded = self.job_store.finish(finished)
            # The section is only resolved while it still points at this job.
            if not self.content_store.set_active_job(job.section_id, job.job_id, None, fields):
                logger.info("Section %s moved on; leaving it to its current job", job.section_id)
            return finished if recorded else None
        except Exception:
            logger.exception("Recovery writes failed for job %s", job.job_id)
        return None


def worker_from_settings(settings, dispatcher: JobDispatcher, provider_name: str | None = None) -> BackfillWorker:
    """Wire a worker to the configured stores, LLM provider and default planner."""
    from quizfill.content.store import get_content_store
    from quizfill.jobs.store import get_job_store
    from quizfill.llm import provider_from_settings

    return BackfillWorker(
        job_store=get_job_store(),
        content_store=get_content_store(),
        planner=StaticPlanner(),
        generator=QuestionGenerator(provider_from_settings(settings, provider_name)),
        dispatcher=dispatcher,
        lease_seconds=settings.qf_job_lease_seconds,
        sample_limit=settings.qf_question_sample_limit,
        timeout_seconds=float(settings.qf_generation_timeout_seconds),
    )
