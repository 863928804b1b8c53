"""Section/question storage and question normalization."""

from quizfill.content.normalize import normalize_question
from quizfill.content.store import (
    ContentStore,
    FileContentStore,
    PostgresContentStore,
    build_question_state,
    get_content_store,
)

__all__ = [
    "ContentStore",
    "FileContentStore",
    "PostgresContentStore",
    "build_question_state",
    "get_content_store",
    "normalize_question",
]
