"""Question backfill API.

POST /api/courses/{course_id}/sections/{section_id}/question-backfill
  → Starts a chain, returns { job_id } immediately (202).
  → Steps run on the worker thread pool, each one dispatching the next.

GET /api/question-jobs/{job_id}
  → One step's status and counters.

GET /api/sections/{section_id}/questions-status
  → Section-level progress across the whole chain.

POST /api/question-jobs/sweep
  → Fail expired steps and repair stuck sections.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from quizfill.backfill import (
    BackfillWorker,
    ChainConflictError,
    InvalidPayloadError,
    SectionNotFoundError,
    start_question_backfill,
    sweep_expired_jobs,
    worker_from_settings,
)
from quizfill.config import get_settings
from quizfill.jobs.dispatch import ThreadPoolDispatcher
from quizfill.schemas.api import (
    JobStatusResponse,
    SectionQuestionsStatus,
    StartBackfillRequest,
    StartBackfillResponse,
    SweepResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()
settings = get_settings()

dispatcher = ThreadPoolDispatcher(max_workers=settings.qf_worker_threads)
_worker: BackfillWorker | None = None


def get_worker() -> BackfillWorker:
    """Build the worker on first use and bind it to the thread pool."""
    global _worker
    if _worker is None:
        _worker = worker_from_settings(settings, dispatcher)
        dispatcher.bind(_worker.process)
    return _worker


@router.post(
    "/courses/{course_id}/sections/{section_id}/question-backfill",
    response_model=StartBackfillResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def start_backfill(
    course_id: str,
    section_id: str,
    body: StartBackfillRequest | None = None,
    worker: BackfillWorker = Depends(get_worker),
):
    """Start a question backfill chain for a section."""
    target = body.target_count if body else StartBackfillRequest().target_count
    try:
        job = start_question_backfill(
            course_id,
            section_id,
            target,
            job_store=worker.job_store,
            content_store=worker.content_store,
            dispatcher=worker.dispatcher,
        )
    except SectionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ChainConflictError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(e), "active_job_id": e.active_job_id},
        )
    except InvalidPayloadError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return StartBackfillResponse(
        job_id=job.job_id,
        status=job.status.value,
        target_count=job.target_count,
        max_attempts=job.max_attempts,
    )


@router.get("/question-jobs/{job_id}", response_model=JobStatusResponse)
def get_job(job_id: str, worker: BackfillWorker = Depends(get_worker)):
    job = worker.job_store.get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job {job_id} not found")
    return JobStatusResponse.from_job(job)


@router.get("/sections/{section_id}/questions-status", response_model=SectionQuestionsStatus)
def get_questions_status(section_id: str, worker: BackfillWorker = Depends(get_worker)):
    section = worker.content_store.get_section(section_id)
    if section is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Section {section_id} not found")
    return SectionQuestionsStatus.from_section(section)


@router.post("/question-jobs/sweep", response_model=SweepResponse)
def sweep(worker: BackfillWorker = Depends(get_worker)):
    """Fail RUNNING steps whose lease expired and repair sections left GENERATING."""
    report = sweep_expired_jobs(
        job_store=worker.job_store,
        content_store=worker.content_store,
        dispatcher=worker.dispatcher,
        lease_seconds=worker.lease_seconds,
        sample_limit=worker.sample_limit,
    )
    return SweepResponse(
        expired=report.expired,
        continued=report.continued,
        redispatched=report.redispatched,
        repaired_sections=report.repaired_sections,
    )
