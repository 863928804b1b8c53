"""Backfill job records, storage and dispatch."""

from quizfill.jobs.dispatch import JobDispatcher, QueueDispatcher, ThreadPoolDispatcher
from quizfill.jobs.models import (
    BACKFILL_STEP_COUNT,
    MAX_NO_PROGRESS_STREAK,
    QUESTION_BACKFILL_JOB_TYPE,
    BackfillJob,
    JobStatus,
    compute_max_backfill_attempts,
    new_backfill_job,
)
from quizfill.jobs.store import FileJobStore, JobStore, PostgresJobStore, get_job_store

__all__ = [
    "BACKFILL_STEP_COUNT",
    "MAX_NO_PROGRESS_STREAK",
    "QUESTION_BACKFILL_JOB_TYPE",
    "BackfillJob",
    "FileJobStore",
    "JobDispatcher",
    "JobStatus",
    "JobStore",
    "PostgresJobStore",
    "QueueDispatcher",
    "ThreadPoolDispatcher",
    "compute_max_backfill_attempts",
    "get_job_store",
    "new_backfill_job",
]
