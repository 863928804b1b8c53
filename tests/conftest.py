"""Pytest configuration and shared fixtures."""

import json

import pytest

from quizfill.backfill.generator import QuestionGenerator
from quizfill.backfill.planning import StaticPlanner
from quizfill.backfill.worker import BackfillWorker
from quizfill.content.store import FileContentStore
from quizfill.jobs.dispatch import QueueDispatcher
from quizfill.jobs.store import FileJobStore
from quizfill.schemas.content import Question, Section

COURSE_ID = "course-1"
SECTION_ID = "sec-1"

# Pairwise distinct stems (no two are near-duplicates).
DISTINCT_STEMS = [
    "Which enzyme converts angiotensin I into angiotensin II in the lungs?",
    "What is the primary mechanism of action of loop diuretics such as furosemide?",
    "Which cranial nerve innervates the lateral rectus muscle of the eye?",
    "Deficiency of which vitamin causes scurvy in sailors on long voyages?",
    "Which electrolyte abnormality produces peaked T waves on an ECG?",
    "What type of hypersensitivity reaction is contact dermatitis from poison ivy?",
    "Which bacterium typically causes community acquired pneumonia in adults?",
    "Which posterior pituitary hormone concentrates urine in the collecting duct?",
    "Which coagulation factor is inhibited by warfarin through vitamin K antagonism?",
    "What structure passes through the carpal tunnel besides the flexor tendons?",
    "Which neurotransmitter is depleted in the substantia nigra in Parkinson disease?",
    "What is the antidote for acetaminophen overdose given within eight hours?",
]


def question_dict(stem, **overrides):
    data = {
        "stem": stem,
        "options": ["Option A", "Option B", "Option C", "Option D"],
        "correct_index": 1,
        "explanation": {
            "correct_why": "Because B is right.",
            "why_others_wrong": ["A is wrong", "", "C is wrong", "D is wrong"],
            "key_takeaway": "Remember B.",
        },
        "tags": ["physiology"],
        "difficulty": 3,
    }
    data.update(overrides)
    return data


def questions_payload(stems):
    return json.dumps({"questions": [question_dict(s) for s in stems]})


class ScriptedLLM:
    """LLM provider stub: returns (or raises) scripted responses in order, repeating the last one."""

    model = "scripted-model"

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def complete(self, prompt, *, system=None, **kwargs):
        self.calls.append({"prompt": prompt, "system": system, **kwargs})
        index = min(len(self.calls), len(self.responses)) - 1
        response = self.responses[index]
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def job_store(tmp_path):
    return FileJobStore(tmp_path)


@pytest.fixture
def content_store(tmp_path):
    return FileContentStore(tmp_path)


@pytest.fixture
def section(content_store):
    sec = Section(
        section_id=SECTION_ID,
        course_id=COURSE_ID,
        title="Renal physiology",
        file_id="file-1",
        file_name="renal.pdf",
        topic_tags=["renal"],
        difficulty=3,
        blueprint={
            "learning_objectives": ["Explain the renin-angiotensin system"],
            "key_concepts": ["ACE", "ADH"],
        },
    )
    return content_store.save_section(sec)


@pytest.fixture
def dispatcher():
    return QueueDispatcher()


@pytest.fixture
def make_worker(job_store, content_store, dispatcher):
    """Build a worker around a ScriptedLLM; returns (worker, llm)."""

    def _make(*responses, planner=None):
        llm = ScriptedLLM(*responses)
        worker = BackfillWorker(
            job_store,
            content_store,
            planner or StaticPlanner(),
            QuestionGenerator(llm, sleep=lambda s: None),
            dispatcher,
            lease_seconds=300,
        )
        return worker, llm

    return _make


def seed_questions(content_store, stems, section_id=SECTION_ID, course_id=COURSE_ID):
    content_store.add_questions([
        Question(course_id=course_id, section_id=section_id, stem=s, options=["a", "b"], correct_index=0)
        for s in stems
    ])
