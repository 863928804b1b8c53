"""Self-chaining question backfill: planning, generation, dedup, step decisions and the worker."""

from quizfill.backfill.errors import (
    BackfillError,
    ChainConflictError,
    GenerationError,
    InvalidPayloadError,
    SectionNotFoundError,
)
from quizfill.backfill.generator import QuestionGenerator
from quizfill.backfill.planning import Planner, StaticPlanner
from quizfill.backfill.service import start_question_backfill
from quizfill.backfill.sweeper import SweepReport, sweep_expired_jobs
from quizfill.backfill.worker import BackfillWorker, worker_from_settings

__all__ = [
    "BackfillError",
    "BackfillWorker",
    "ChainConflictError",
    "GenerationError",
    "InvalidPayloadError",
    "Planner",
    "QuestionGenerator",
    "SectionNotFoundError",
    "StaticPlanner",
    "SweepReport",
    "start_question_backfill",
    "sweep_expired_jobs",
    "worker_from_settings",
]
