"""Tests for the lease sweeper and orphaned-section repair."""

from datetime import timedelta

from quizfill.backfill.sweeper import LEASE_EXPIRED_ERROR, sweep_expired_jobs
from quizfill.jobs.models import JobStatus, new_backfill_job
from quizfill.schemas.content import QuestionsStatus, utcnow

from conftest import COURSE_ID, DISTINCT_STEMS, SECTION_ID, seed_questions


def _sweep(job_store, content_store, dispatcher, **kwargs):
    return sweep_expired_jobs(job_store=job_store, content_store=content_store, dispatcher=dispatcher, **kwargs)


def _running_job(job_store, content_store, lease_seconds=-1, own_section=True, **fields):
    job = new_backfill_job(COURSE_ID, SECTION_ID, 10)
    if fields:
        job = job.model_copy(update=fields)
    job_store.create(job)
    if own_section:
        content_store.update_section(SECTION_ID, {
            "questions_status": QuestionsStatus.GENERATING,
            "active_question_job_id": job.job_id,
        })
    return job_store.claim(job.job_id, lease_seconds)


def test_expired_job_with_budget_is_continued(job_store, content_store, section, dispatcher):
    job = _running_job(job_store, content_store)

    report = _sweep(job_store, content_store, dispatcher)

    assert report.expired == [job.job_id]
    failed = job_store.get(job.job_id)
    assert failed.status == JobStatus.FAILED
    assert failed.error == LEASE_EXPIRED_ERROR

    nxt = job_store.get(failed.next_job_id)
    assert nxt.status == JobStatus.PENDING
    assert nxt.attempt == 2
    assert nxt.no_progress_streak == 1
    assert report.continued == [nxt.job_id]
    assert dispatcher.dispatched == [nxt.job_id]

    sec = content_store.get_section(SECTION_ID)
    assert sec.questions_status == QuestionsStatus.GENERATING
    assert sec.active_question_job_id == nxt.job_id


def test_expired_job_without_budget_resolves_section(job_store, content_store, section, dispatcher):
    seed_questions(content_store, DISTINCT_STEMS[:2])
    job = _running_job(job_store, content_store, no_progress_streak=3)

    report = _sweep(job_store, content_store, dispatcher)

    assert report.expired == [job.job_id]
    assert report.continued == []
    assert job_store.get(job.job_id).next_job_id is None
    sec = content_store.get_section(SECTION_ID)
    assert sec.questions_status == QuestionsStatus.COMPLETED
    assert sec.questions_count == 2
    assert sec.active_question_job_id is None


def test_live_lease_untouched(job_store, content_store, section, dispatcher):
    job = _running_job(job_store, content_store, lease_seconds=300)
    report = _sweep(job_store, content_store, dispatcher)
    assert report.total == 0
    assert job_store.get(job.job_id).status == JobStatus.RUNNING


def test_expired_job_of_foreign_chain_not_continued(job_store, content_store, section, dispatcher):
    job = _running_job(job_store, content_store, own_section=False)
    report = _sweep(job_store, content_store, dispatcher)
    assert report.expired == [job.job_id]
    assert report.continued == []
    assert job_store.get(job.job_id).next_job_id is None
    assert content_store.get_section(SECTION_ID).questions_status == QuestionsStatus.PENDING


def test_orphaned_section_with_missing_job_fails(job_store, content_store, section, dispatcher):
    content_store.update_section(SECTION_ID, {
        "questions_status": QuestionsStatus.GENERATING,
        "active_question_job_id": "qjob_gone",
    })
    report = _sweep(job_store, content_store, dispatcher)
    assert report.repaired_sections == [SECTION_ID]
    sec = content_store.get_section(SECTION_ID)
    assert sec.questions_status == QuestionsStatus.FAILED
    assert sec.active_question_job_id is None
    assert sec.questions_error_message


def test_orphaned_section_with_terminal_job_completes(job_store, content_store, section, dispatcher):
    seed_questions(content_store, DISTINCT_STEMS[:4])
    job = _running_job(job_store, content_store, lease_seconds=300)
    job_store.finish(job.model_copy(update={"status": JobStatus.COMPLETED}))

    _sweep(job_store, content_store, dispatcher)

    sec = content_store.get_section(SECTION_ID)
    assert sec.questions_status == QuestionsStatus.COMPLETED
    assert sec.questions_count == 4
    assert sec.active_question_job_id is None


def test_section_moves_to_unclaimed_successor(job_store, content_store, section, dispatcher):
    job = _running_job(job_store, content_store, lease_seconds=300)
    successor = job.continuation(0)
    job_store.finish(job.model_copy(update={"status": JobStatus.COMPLETED, "next_job_id": successor.job_id}))
    job_store.create(successor)

    report = _sweep(job_store, content_store, dispatcher)

    assert report.repaired_sections == [SECTION_ID]
    assert dispatcher.dispatched == [successor.job_id]
    assert content_store.get_section(SECTION_ID).active_question_job_id == successor.job_id


def test_stale_pending_job_redispatched(job_store, content_store, section, dispatcher):
    job = new_backfill_job(COURSE_ID, SECTION_ID).model_copy(update={"created_at": utcnow() - timedelta(hours=1)})
    job_store.create(job)
    content_store.update_section(SECTION_ID, {
        "questions_status": QuestionsStatus.GENERATING,
        "active_question_job_id": job.job_id,
    })

    report = _sweep(job_store, content_store, dispatcher, lease_seconds=300)
    assert report.redispatched == [job.job_id]
    assert dispatcher.dispatched == [job.job_id]


def test_fresh_pending_job_left_alone(job_store, content_store, section, dispatcher):
    job = job_store.create(new_backfill_job(COURSE_ID, SECTION_ID))
    content_store.update_section(SECTION_ID, {
        "questions_status": QuestionsStatus.GENERATING,
        "active_question_job_id": job.job_id,
    })
    report = _sweep(job_store, content_store, dispatcher)
    assert report.total == 0
    assert dispatcher.dispatched == []
