"""Pydantic models for sections, questions and generation results."""

from quizfill.schemas.content import (
    ExistingQuestionState,
    Explanation,
    Question,
    QuestionDefaults,
    QuestionsStatus,
    Section,
    SourceRef,
)
from quizfill.schemas.generation import (
    BatchResult,
    DifficultyDistribution,
    GenerationOptions,
    GenerationPlan,
    GenerationResult,
    RunMetrics,
)

__all__ = [
    "BatchResult",
    "DifficultyDistribution",
    "ExistingQuestionState",
    "Explanation",
    "GenerationOptions",
    "GenerationPlan",
    "GenerationResult",
    "Question",
    "QuestionDefaults",
    "QuestionsStatus",
    "RunMetrics",
    "Section",
    "SourceRef",
]
