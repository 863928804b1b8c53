"""Section, question and snapshot models shared by the stores and the backfill pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuestionsStatus(str, Enum):
    PENDING = "PENDING"
    GENERATING = "GENERATING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Section(BaseModel):
    """A unit of course material that owns a pool of quiz questions."""

    section_id: str
    course_id: str
    title: str = "Section"
    file_id: str | None = None
    file_name: str = "Unknown"
    topic_tags: list[str] = []
    difficulty: int = 3  # 1..5, biases the easy/medium/hard split
    blueprint: dict[str, Any] | None = None  # learning objectives, key concepts, ...

    # Backfill state, mutated by the worker
    questions_status: QuestionsStatus = QuestionsStatus.PENDING
    questions_count: int = 0
    question_gen_stats: dict[str, Any] = {}
    active_question_job_id: str | None = None
    questions_error_message: str | None = None
    last_error_at: datetime | None = None
    last_questions_duration_ms: int | None = None


class Explanation(BaseModel):
    correct_why: str = ""
    why_others_wrong: list[str] = []
    key_takeaway: str = ""


class SourceRef(BaseModel):
    file_id: str | None = None
    file_name: str = "Unknown"
    section_id: str = ""
    label: str = ""


class Question(BaseModel):
    """Single-best-answer question persisted per course and section."""

    question_id: str = ""
    course_id: str = ""
    section_id: str = ""
    stem: str
    options: list[str]
    correct_index: int
    explanation: Explanation = Field(default_factory=Explanation)
    topic_tags: list[str] = []
    difficulty: int = 3
    source_ref: SourceRef = Field(default_factory=SourceRef)
    created_at: datetime | None = None

    @property
    def difficulty_bucket(self) -> Literal["easy", "medium", "hard"]:
        if self.difficulty <= 2:
            return "easy"
        if self.difficulty >= 4:
            return "hard"
        return "medium"


class QuestionDefaults(BaseModel):
    """Section-level fallbacks applied while normalizing generated questions."""

    course_id: str
    section_id: str
    section_title: str = "Section"
    file_id: str | None = None
    file_name: str = "Unknown"
    topic_tags: list[str] = []

    @classmethod
    def for_section(cls, section: Section) -> "QuestionDefaults":
        return cls(
            course_id=section.course_id,
            section_id=section.section_id,
            section_title=section.title,
            file_id=section.file_id,
            file_name=section.file_name,
            topic_tags=section.topic_tags,
        )


class ExistingQuestionState(BaseModel):
    """Point-in-time sample of a section's persisted questions.

    ``stems`` holds normalized stems; the snapshot is immutable and is
    replaced, never updated, by the next step.
    """

    model_config = ConfigDict(frozen=True)

    count: int = 0
    distinct_count: int = 0
    stems: tuple[str, ...] = ()
