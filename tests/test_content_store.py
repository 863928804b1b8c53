"""Tests for the file-based section/question store."""

from quizfill.content.store import QUESTION_BATCH_LIMIT, build_question_state
from quizfill.schemas.content import Question, QuestionsStatus

from conftest import COURSE_ID, DISTINCT_STEMS, SECTION_ID, seed_questions


def test_build_question_state_normalizes_and_clusters():
    state = build_question_state(["Mechanism of X?", "Mechanism of X??", "", "Scurvy vitamin deficiency"])
    assert state.count == 3
    assert state.distinct_count == 2
    assert state.stems == ("mechanism of x", "mechanism of x", "scurvy vitamin deficiency")


def test_get_and_update_section(content_store, section):
    loaded = content_store.get_section(SECTION_ID)
    assert loaded.blueprint["key_concepts"] == ["ACE", "ADH"]
    assert content_store.get_section("nope") is None

    updated = content_store.update_section(SECTION_ID, {
        "questions_status": QuestionsStatus.GENERATING,
        "questions_count": 3,
    })
    assert updated.questions_status == QuestionsStatus.GENERATING
    assert content_store.get_section(SECTION_ID).questions_count == 3
    assert content_store.update_section("nope", {"questions_count": 1}) is None


def test_set_active_job_is_compare_and_set(content_store, section):
    assert content_store.set_active_job(SECTION_ID, None, "job-a", {"questions_status": QuestionsStatus.GENERATING})
    assert not content_store.set_active_job(SECTION_ID, None, "job-b")
    assert content_store.get_section(SECTION_ID).active_question_job_id == "job-a"

    assert content_store.set_active_job(SECTION_ID, "job-a", None)
    assert content_store.get_section(SECTION_ID).active_question_job_id is None
    assert not content_store.set_active_job("nope", None, "job-c")


def test_snapshot_respects_sample_limit_and_course(content_store, section):
    seed_questions(content_store, DISTINCT_STEMS[:5])
    seed_questions(content_store, ["Other course question about kidneys"], course_id="course-2")

    state = content_store.fetch_existing_question_state(COURSE_ID, SECTION_ID, limit=3)
    assert state.count == 3
    assert state.distinct_count == 3

    full = content_store.fetch_existing_question_state(COURSE_ID, SECTION_ID)
    assert full.count == 5

    empty = content_store.fetch_existing_question_state(COURSE_ID, "sec-empty")
    assert empty.count == 0 and empty.stems == ()


def test_add_questions_assigns_ids_and_splits_batches(content_store, section):
    total = QUESTION_BATCH_LIMIT + 3
    questions = [
        Question(course_id=COURSE_ID, section_id=SECTION_ID, stem=f"Question number {i}", options=["a", "b"], correct_index=0)
        for i in range(total)
    ]
    assert content_store.add_questions(questions) == total

    stored = content_store.list_questions(COURSE_ID, SECTION_ID)
    assert len(stored) == total
    assert all(q.question_id.startswith("q_") for q in stored)
    assert all(q.created_at is not None for q in stored)
    assert len({q.question_id for q in stored}) == total


def test_list_sections_by_status(content_store, section):
    assert [s.section_id for s in content_store.list_sections()] == [SECTION_ID]
    assert content_store.list_sections(QuestionsStatus.GENERATING) == []
    content_store.update_section(SECTION_ID, {"questions_status": QuestionsStatus.GENERATING})
    assert [s.section_id for s in content_store.list_sections(QuestionsStatus.GENERATING)] == [SECTION_ID]
