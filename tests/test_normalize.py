"""Tests for normalizing raw generated questions."""

from quizfill.content.normalize import normalize_question
from quizfill.schemas.content import QuestionDefaults

from conftest import question_dict

DEFAULTS = QuestionDefaults(
    course_id="c1",
    section_id="s1",
    section_title="Renal physiology",
    file_id="f1",
    file_name="renal.pdf",
    topic_tags=["renal"],
)


def test_normalize_valid_question():
    q = normalize_question(question_dict("What does <b>ADH</b> do?"), DEFAULTS)
    assert q is not None
    assert q.stem == "What does ADH do?"
    assert q.correct_index == 1
    assert q.course_id == "c1" and q.section_id == "s1"
    assert q.topic_tags == ["physiology"]
    assert q.source_ref.file_name == "renal.pdf"
    assert q.source_ref.label == "Renal physiology"
    # empty entry dropped, then padded back to the option count
    assert len(q.explanation.why_others_wrong) == 4


def test_normalize_accepts_camel_case():
    raw = {
        "stem": "Which hormone?",
        "options": ["ADH", "Aldosterone"],
        "correctIndex": "0",
        "explanation": {"correctWhy": "ADH", "whyOthersWrong": ["", "No"], "keyTakeaway": "ADH"},
        "topicTags": ["endocrine"],
    }
    q = normalize_question(raw, DEFAULTS)
    assert q.correct_index == 0
    assert q.explanation.correct_why == "ADH"
    assert q.explanation.key_takeaway == "ADH"
    assert q.topic_tags == ["endocrine"]


def test_normalize_rejects_unusable_items():
    assert normalize_question("not a dict", DEFAULTS) is None
    assert normalize_question(question_dict(""), DEFAULTS) is None
    assert normalize_question(question_dict("Stem?", options=["only one"]), DEFAULTS) is None
    assert normalize_question(question_dict("Stem?", options=["A", " ", ""]), DEFAULTS) is None
    assert normalize_question(question_dict("Stem?", correct_index=None), DEFAULTS) is None
    assert normalize_question(question_dict("Stem?", correct_index="b"), DEFAULTS) is None


def test_normalize_clamps_index_and_difficulty():
    q = normalize_question(question_dict("Stem?", correct_index=9, difficulty=11), DEFAULTS)
    assert q.correct_index == 3
    assert q.difficulty == 5
    assert q.difficulty_bucket == "hard"

    q = normalize_question(question_dict("Stem?", correct_index=-2, difficulty="x"), DEFAULTS)
    assert q.correct_index == 0
    assert q.difficulty == 3
    assert q.difficulty_bucket == "medium"


def test_normalize_falls_back_to_default_tags():
    q = normalize_question(question_dict("Stem?", tags=[]), DEFAULTS)
    assert q.topic_tags == ["renal"]
