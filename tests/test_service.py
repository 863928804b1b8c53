"""Tests for starting a backfill chain."""

from datetime import timedelta

import pytest

from quizfill.backfill.errors import ChainConflictError, InvalidPayloadError, SectionNotFoundError
from quizfill.backfill.service import is_live_job, start_question_backfill
from quizfill.backfill.sweeper import LEASE_EXPIRED_ERROR
from quizfill.jobs.models import JobStatus, new_backfill_job
from quizfill.schemas.content import QuestionsStatus, utcnow

from conftest import COURSE_ID, SECTION_ID


def _start(job_store, content_store, dispatcher, target=10, course_id=COURSE_ID, section_id=SECTION_ID):
    return start_question_backfill(
        course_id,
        section_id,
        target,
        job_store=job_store,
        content_store=content_store,
        dispatcher=dispatcher,
    )


def test_start_creates_pending_job_and_marks_section(job_store, content_store, section, dispatcher):
    job = _start(job_store, content_store, dispatcher, target=20)

    stored = job_store.get(job.job_id)
    assert stored.status == JobStatus.PENDING
    assert stored.attempt == 1
    assert stored.max_attempts == 60
    assert stored.no_progress_streak == 0
    assert dispatcher.dispatched == [job.job_id]

    sec = content_store.get_section(SECTION_ID)
    assert sec.questions_status == QuestionsStatus.GENERATING
    assert sec.active_question_job_id == job.job_id


def test_start_clamps_target(job_store, content_store, section, dispatcher):
    job = _start(job_store, content_store, dispatcher, target=500)
    assert job.target_count == 30


def test_start_unknown_section(job_store, content_store, section, dispatcher):
    with pytest.raises(SectionNotFoundError):
        _start(job_store, content_store, dispatcher, section_id="ghost")
    with pytest.raises(SectionNotFoundError):
        _start(job_store, content_store, dispatcher, course_id="other-course")
    assert dispatcher.dispatched == []


def test_start_requires_blueprint(job_store, content_store, section, dispatcher):
    content_store.update_section(SECTION_ID, {"blueprint": {}})
    with pytest.raises(InvalidPayloadError):
        _start(job_store, content_store, dispatcher)


def test_start_refuses_second_live_chain(job_store, content_store, section, dispatcher):
    first = _start(job_store, content_store, dispatcher)
    with pytest.raises(ChainConflictError) as exc:
        _start(job_store, content_store, dispatcher)
    assert exc.value.active_job_id == first.job_id
    assert dispatcher.dispatched == [first.job_id]


def test_start_after_previous_chain_finished(job_store, content_store, section, dispatcher):
    first = _start(job_store, content_store, dispatcher)
    claimed = job_store.claim(first.job_id, 300)
    job_store.finish(claimed.model_copy(update={"status": JobStatus.COMPLETED}))

    second = _start(job_store, content_store, dispatcher)
    assert second.job_id != first.job_id
    assert content_store.get_section(SECTION_ID).active_question_job_id == second.job_id


def test_start_over_expired_lease(job_store, content_store, section, dispatcher):
    first = _start(job_store, content_store, dispatcher)
    job_store.claim(first.job_id, -1)
    second = _start(job_store, content_store, dispatcher)
    assert content_store.get_section(SECTION_ID).active_question_job_id == second.job_id

    replaced = job_store.get(first.job_id)
    assert replaced.status == JobStatus.FAILED
    assert replaced.error == LEASE_EXPIRED_ERROR
    assert replaced.lease_expires_at is None
    # The abandoned step's late terminal write is refused.
    assert not job_store.finish(replaced.model_copy(update={"status": JobStatus.COMPLETED}))


def test_is_live_job():
    now = utcnow()
    job = new_backfill_job("c", "s")
    assert not is_live_job(None)
    assert is_live_job(job)
    running = job.model_copy(update={"status": JobStatus.RUNNING, "lease_expires_at": now + timedelta(seconds=30)})
    assert is_live_job(running, now)
    assert not is_live_job(running, now + timedelta(seconds=60))
    assert not is_live_job(job.model_copy(update={"status": JobStatus.FAILED}))
