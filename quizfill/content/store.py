"""Section and question storage: Postgres, or a file-based fallback.

Sections are owned by the surrounding content system; the backfill pipeline
reads them and patches only its own status fields. Questions are
append-only during a chain.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Iterable, Protocol

from filelock import FileLock

from quizfill.config import get_settings
from quizfill.dedup import count_distinct, normalize_stem
from quizfill.schemas.content import ExistingQuestionState, Question, QuestionsStatus, Section, utcnow

logger = logging.getLogger(__name__)

# Max records per atomic write; larger batches are split into chunks.
QUESTION_BATCH_LIMIT = 500
DEFAULT_SAMPLE_LIMIT = 120


class ContentStore(Protocol):
    def get_section(self, section_id: str) -> Section | None: ...
    def save_section(self, section: Section) -> Section: ...
    def update_section(self, section_id: str, fields: dict[str, Any]) -> Section | None: ...
    def set_active_job(
        self,
        section_id: str,
        expected_job_id: str | None,
        new_job_id: str | None,
        fields: dict[str, Any] | None = None,
    ) -> bool: ...
    def fetch_existing_question_state(
        self, course_id: str, section_id: str, limit: int = DEFAULT_SAMPLE_LIMIT
    ) -> ExistingQuestionState: ...
    def add_questions(self, questions: list[Question]) -> int: ...
    def list_questions(self, course_id: str, section_id: str) -> list[Question]: ...
    def list_sections(self, status: QuestionsStatus | None = None) -> list[Section]: ...


def build_question_state(stems: Iterable[str]) -> ExistingQuestionState:
    normalized = tuple(s for s in (normalize_stem(x) for x in stems) if s)
    return ExistingQuestionState(
        count=len(normalized),
        distinct_count=count_distinct(normalized),
        stems=normalized,
    )


def _prepare(questions: list[Question]) -> list[Question]:
    now = utcnow()
    return [
        q.model_copy(update={
            "question_id": q.question_id or f"q_{uuid.uuid4().hex[:16]}",
            "created_at": q.created_at or now,
        })
        for q in questions
    ]


def _merge_section(section: Section, fields: dict[str, Any]) -> Section:
    data = section.model_dump()
    data.update(fields)
    return Section.model_validate(data)


# ---------------------------------------------------------------------------
# Postgres implementation
# ---------------------------------------------------------------------------

class PostgresContentStore:
    """Sections and questions as JSONB documents; section patches run in row-locked transactions."""

    def __init__(self, database_url: str):
        self._url = database_url
        self._conn = self._connect()

    def _connect(self):
        try:
            import psycopg
        except ImportError:
            raise ImportError(
                "psycopg required for Postgres content store. pip install 'psycopg[binary]'"
            )
        conn = psycopg.connect(self._url, autocommit=True)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS qf_sections (
                section_id TEXT PRIMARY KEY,
                course_id TEXT NOT NULL,
                data JSONB NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS qf_questions (
                question_id TEXT PRIMARY KEY,
                course_id TEXT NOT NULL,
                section_id TEXT NOT NULL,
                stem TEXT NOT NULL,
                data JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_qf_questions_section
            ON qf_questions (course_id, section_id, created_at)
        """)
        return conn

    def get_section(self, section_id: str) -> Section | None:
        row = self._conn.execute(
            "SELECT data FROM qf_sections WHERE section_id = %s", (section_id,)
        ).fetchone()
        if not row:
            return None
        return Section.model_validate(_as_dict(row[0]))

    def save_section(self, section: Section) -> Section:
        self._conn.execute(
            """
            INSERT INTO qf_sections (section_id, course_id, data, updated_at)
            VALUES (%s, %s, %s::jsonb, NOW())
            ON CONFLICT (section_id) DO UPDATE SET
                course_id = EXCLUDED.course_id, data = EXCLUDED.data, updated_at = NOW()
            """,
            (section.section_id, section.course_id, section.model_dump_json()),
        )
        return section

    def update_section(self, section_id: str, fields: dict[str, Any]) -> Section | None:
        with self._conn.transaction():
            current = self._locked_section(section_id)
            if current is None:
                return None
            updated = _merge_section(current, fields)
            self._write_section(updated)
        return updated

    def set_active_job(
        self,
        section_id: str,
        expected_job_id: str | None,
        new_job_id: str | None,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        with self._conn.transaction():
            current = self._locked_section(section_id)
            if current is None or current.active_question_job_id != expected_job_id:
                return False
            self._write_section(_merge_section(current, {**(fields or {}), "active_question_job_id": new_job_id}))
        return True

    def fetch_existing_question_state(
        self, course_id: str, section_id: str, limit: int = DEFAULT_SAMPLE_LIMIT
    ) -> ExistingQuestionState:
        rows = self._conn.execute(
            """
            SELECT stem FROM qf_questions
            WHERE course_id = %s AND section_id = %s
            ORDER BY created_at LIMIT %s
            """,
            (course_id, section_id, limit),
        ).fetchall()
        return build_question_state(r[0] for r in rows)

    def add_questions(self, questions: list[Question]) -> int:
        prepared = _prepare(questions)
        written = 0
        for i in range(0, len(prepared), QUESTION_BATCH_LIMIT):
            chunk = prepared[i:i + QUESTION_BATCH_LIMIT]
            with self._conn.transaction():
                with self._conn.cursor() as cur:
                    cur.executemany(
                        """
                        INSERT INTO qf_questions (question_id, course_id, section_id, stem, data, created_at)
                        VALUES (%s, %s, %s, %s, %s::jsonb, %s)
                        """,
                        [
                            (q.question_id, q.course_id, q.section_id, q.stem, q.model_dump_json(), q.created_at)
                            for q in chunk
                        ],
                    )
            written += len(chunk)
        return written

    def list_questions(self, course_id: str, section_id: str) -> list[Question]:
        rows = self._conn.execute(
            """
            SELECT data FROM qf_questions
            WHERE course_id = %s AND section_id = %s ORDER BY created_at
            """,
            (course_id, section_id),
        ).fetchall()
        return [Question.model_validate(_as_dict(r[0])) for r in rows]

    def list_sections(self, status: QuestionsStatus | None = None) -> list[Section]:
        if status is None:
            rows = self._conn.execute("SELECT data FROM qf_sections ORDER BY section_id").fetchall()
        else:
            rows = self._conn.execute(
                "SELECT data FROM qf_sections WHERE data->>'questions_status' = %s ORDER BY section_id",
                (status.value,),
            ).fetchall()
        return [Section.model_validate(_as_dict(r[0])) for r in rows]

    def _locked_section(self, section_id: str) -> Section | None:
        row = self._conn.execute(
            "SELECT data FROM qf_sections WHERE section_id = %s FOR UPDATE", (section_id,)
        ).fetchone()
        return Section.model_validate(_as_dict(row[0])) if row else None

    def _write_section(self, section: Section) -> None:
        self._conn.execute(
            "UPDATE qf_sections SET data = %s::jsonb, updated_at = NOW() WHERE section_id = %s",
            (section.model_dump_json(), section.section_id),
        )


def _as_dict(value) -> dict:
    if isinstance(value, dict):
        return value
    return json.loads(value) if value else {}


# ---------------------------------------------------------------------------
# File-based implementation (fallback when no Postgres)
# ---------------------------------------------------------------------------

class FileContentStore:
    """One JSON file per section and one JSON list of questions per section."""

    def __init__(self, data_dir: Path, lock_timeout: float = 10.0):
        root = Path(data_dir) / "content"
        self._sections_dir = root / "sections"
        self._questions_dir = root / "questions"
        self._sections_dir.mkdir(parents=True, exist_ok=True)
        self._questions_dir.mkdir(parents=True, exist_ok=True)
        self._lock_timeout = lock_timeout

    def _section_path(self, section_id: str) -> Path:
        return self._sections_dir / f"{section_id}.json"

    def _questions_path(self, section_id: str) -> Path:
        return self._questions_dir / f"{section_id}.json"

    def _lock(self, directory: Path, key: str) -> FileLock:
        return FileLock(str(directory / f"{key}.lock"), timeout=self._lock_timeout)

    def get_section(self, section_id: str) -> Section | None:
        path = self._section_path(section_id)
        if not section_id or not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return Section.model_validate_json(f.read())

    def save_section(self, section: Section) -> Section:
        with self._lock(self._sections_dir, section.section_id):
            self._write_section(section)
        return section

    def update_section(self, section_id: str, fields: dict[str, Any]) -> Section | None:
        with self._lock(self._sections_dir, section_id):
            current = self.get_section(section_id)
            if current is None:
                return None
            updated = _merge_section(current, fields)
            self._write_section(updated)
        return updated

    def set_active_job(
        self,
        section_id: str,
        expected_job_id: str | None,
        new_job_id: str | None,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        with self._lock(self._sections_dir, section_id):
            current = self.get_section(section_id)
            if current is None or current.active_question_job_id != expected_job_id:
                return False
            self._write_section(_merge_section(current, {**(fields or {}), "active_question_job_id": new_job_id}))
        return True

    def fetch_existing_question_state(
        self, course_id: str, section_id: str, limit: int = DEFAULT_SAMPLE_LIMIT
    ) -> ExistingQuestionState:
        questions = [q for q in self._read_questions(section_id) if q.course_id == course_id]
        return build_question_state(q.stem for q in questions[:limit])

    def add_questions(self, questions: list[Question]) -> int:
        prepared = _prepare(questions)
        by_section: dict[str, list[Question]] = {}
        for q in prepared:
            by_section.setdefault(q.section_id, []).append(q)
        written = 0
        for section_id, items in by_section.items():
            for i in range(0, len(items), QUESTION_BATCH_LIMIT):
                chunk = items[i:i + QUESTION_BATCH_LIMIT]
                with self._lock(self._questions_dir, section_id):
                    existing = self._read_questions(section_id)
                    self._write_questions(section_id, existing + chunk)
                written += len(chunk)
        return written

    def list_questions(self, course_id: str, section_id: str) -> list[Question]:
        return [q for q in self._read_questions(section_id) if q.course_id == course_id]

    def list_sections(self, status: QuestionsStatus | None = None) -> list[Section]:
        sections = []
        for path in sorted(self._sections_dir.glob("*.json")):
            section = self.get_section(path.stem)
            if section is not None and (status is None or section.questions_status == status):
                sections.append(section)
        return sections

    def _read_questions(self, section_id: str) -> list[Question]:
        path = self._questions_path(section_id)
        if not path.exists():
            return []
        with open(path, "r", encoding="utf-8") as f:
            return [Question.model_validate(item) for item in json.load(f)]

    def _write_questions(self, section_id: str, questions: list[Question]) -> None:
        path = self._questions_path(section_id)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump([q.model_dump(mode="json") for q in questions], f, indent=2)
        os.replace(tmp, path)

    def _write_section(self, section: Section) -> None:
        path = self._section_path(section.section_id)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(section.model_dump_json(indent=2))
        os.replace(tmp, path)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_store: ContentStore | None = None


def get_content_store() -> ContentStore:
    """Return singleton content store (Postgres if configured, else file-based)."""
    global _store
    if _store is not None:
        return _store
    settings = get_settings()
    if settings.qf_database_url:
        try:
            _store = PostgresContentStore(settings.qf_database_url)
            logger.info("Using Postgres content store")
        except Exception as e:
            logger.warning("Postgres content store failed (%s), falling back to file store", e)
            _store = FileContentStore(settings.data_dir)
    else:
        _store = FileContentStore(settings.data_dir)
        logger.info("Using file-based content store (QF_DATA_DIR/content)")
    return _store
