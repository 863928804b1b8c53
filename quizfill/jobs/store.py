"""Backfill job storage: Postgres, or a file-based fallback.

Both backends implement the same compare-and-swap primitives: ``claim``
moves a job PENDING → RUNNING and ``finish`` writes the terminal state only
while the job is still RUNNING. These are the only mutual-exclusion
guarantees in the pipeline.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Protocol

from filelock import FileLock

from quizfill.config import get_settings
from quizfill.jobs.models import BackfillJob, JobStatus

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    def create(self, job: BackfillJob) -> BackfillJob: ...
    def get(self, job_id: str) -> BackfillJob | None: ...
    def claim(self, job_id: str, lease_seconds: int) -> BackfillJob | None: ...
    def finish(self, job: BackfillJob) -> bool: ...
    def list_expired_running(self, now: datetime | None = None) -> list[BackfillJob]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_dict(value) -> dict:
    if isinstance(value, dict):
        return value
    return json.loads(value) if value else {}


def abandon_pending(store: JobStore, job: BackfillJob, error: str) -> bool:
    """Fail a PENDING job that must never run. False if someone else claimed it first."""
    claimed = store.claim(job.job_id, 0)
    if claimed is None:
        return False
    return store.finish(claimed.model_copy(update={
        "status": JobStatus.FAILED,
        "finished_at": _utcnow(),
        "error": error,
    }))


# ---------------------------------------------------------------------------
# Postgres implementation
# ---------------------------------------------------------------------------

class PostgresJobStore:
    """Persist jobs in Postgres. Claims are a single conditional UPDATE."""

    def __init__(self, database_url: str):
        self._url = database_url
        self._conn = self._connect()

    def _connect(self):
        try:
            import psycopg
        except ImportError:
            raise ImportError(
                "psycopg required for Postgres job store. pip install 'psycopg[binary]'"
            )
        conn = psycopg.connect(self._url, autocommit=True)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS qf_backfill_jobs (
                job_id TEXT PRIMARY KEY,
                section_id TEXT NOT NULL,
                status TEXT NOT NULL,
                lease_expires_at TIMESTAMPTZ,
                data JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_qf_backfill_jobs_running
            ON qf_backfill_jobs (status, lease_expires_at)
        """)
        return conn

    def create(self, job: BackfillJob) -> BackfillJob:
        self._conn.execute(
            """
            INSERT INTO qf_backfill_jobs (job_id, section_id, status, data, created_at, updated_at)
            VALUES (%s, %s, %s, %s::jsonb, NOW(), NOW())
            """,
            (job.job_id, job.section_id, job.status.value, job.model_dump_json()),
        )
        return job

    def get(self, job_id: str) -> BackfillJob | None:
        row = self._conn.execute(
            "SELECT data FROM qf_backfill_jobs WHERE job_id = %s",
            (job_id,),
        ).fetchone()
        if not row:
            return None
        return BackfillJob.model_validate(_as_dict(row[0]))

    def claim(self, job_id: str, lease_seconds: int) -> BackfillJob | None:
        now = _utcnow()
        lease_until = now + timedelta(seconds=lease_seconds)
        patch = {
            "status": JobStatus.RUNNING.value,
            "started_at": now.isoformat(),
            "lease_expires_at": lease_until.isoformat(),
        }
        row = self._conn.execute(
            """
            UPDATE qf_backfill_jobs SET
                status = %s, lease_expires_at = %s,
                data = data || %s::jsonb, updated_at = NOW()
            WHERE job_id = %s AND status = %s
            RETURNING data
            """,
            (JobStatus.RUNNING.value, lease_until, json.dumps(patch), job_id, JobStatus.PENDING.value),
        ).fetchone()
        if not row:
            return None
        return BackfillJob.model_validate(_as_dict(row[0]))

    def finish(self, job: BackfillJob) -> bool:
        cur = self._conn.execute(
            """
            UPDATE qf_backfill_jobs SET
                status = %s, lease_expires_at = NULL,
                data = %s::jsonb, updated_at = NOW()
            WHERE job_id = %s AND status = %s
            """,
            (
                job.status.value,
                job.model_copy(update={"lease_expires_at": None}).model_dump_json(),
                job.job_id,
                JobStatus.RUNNING.value,
            ),
        )
        return cur.rowcount == 1

    def list_expired_running(self, now: datetime | None = None) -> list[BackfillJob]:
        rows = self._conn.execute(
            """
            SELECT data FROM qf_backfill_jobs
            WHERE status = %s AND lease_expires_at IS NOT NULL AND lease_expires_at < %s
            ORDER BY lease_expires_at
            """,
            (JobStatus.RUNNING.value, now or _utcnow()),
        ).fetchall()
        return [BackfillJob.model_validate(_as_dict(r[0])) for r in rows]


# ---------------------------------------------------------------------------
# File-based implementation (fallback when no Postgres)
# ---------------------------------------------------------------------------

class FileJobStore:
    """Persist jobs as JSON files; read-verify-write runs under a per-job file lock."""

    def __init__(self, data_dir: Path, lock_timeout: float = 10.0):
        self._dir = Path(data_dir) / "jobs"
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock_timeout = lock_timeout

    def _job_path(self, job_id: str) -> Path:
        return self._dir / f"{job_id}.json"

    def _lock(self, job_id: str) -> FileLock:
        return FileLock(str(self._dir / f"{job_id}.lock"), timeout=self._lock_timeout)

    def create(self, job: BackfillJob) -> BackfillJob:
        with self._lock(job.job_id):
            if self._job_path(job.job_id).exists():
                raise ValueError(f"Job already exists: {job.job_id}")
            self._write_job(job)
        return job

    def get(self, job_id: str) -> BackfillJob | None:
        path = self._job_path(job_id)
        if not path.exists():
            return None
        return self._read_job(path)

    def claim(self, job_id: str, lease_seconds: int) -> BackfillJob | None:
        with self._lock(job_id):
            current = self.get(job_id)
            if current is None or current.status != JobStatus.PENDING:
                return None
            now = _utcnow()
            claimed = current.model_copy(update={
                "status": JobStatus.RUNNING,
                "started_at": now,
                "lease_expires_at": now + timedelta(seconds=lease_seconds),
            })
            self._write_job(claimed)
        return claimed

    def finish(self, job: BackfillJob) -> bool:
        with self._lock(job.job_id):
            current = self.get(job.job_id)
            if current is None or current.status != JobStatus.RUNNING:
                return False
            self._write_job(job.model_copy(update={"lease_expires_at": None}))
        return True

    def list_expired_running(self, now: datetime | None = None) -> list[BackfillJob]:
        cutoff = now or _utcnow()
        expired = []
        for path in sorted(self._dir.glob("*.json")):
            job = self._read_job(path)
            if job.status == JobStatus.RUNNING and job.lease_expires_at and job.lease_expires_at < cutoff:
                expired.append(job)
        return expired

    def _write_job(self, job: BackfillJob) -> None:
        path = self._job_path(job.job_id)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(job.model_dump_json(indent=2))
        os.replace(tmp, path)

    def _read_job(self, path: Path) -> BackfillJob:
        with open(path, "r", encoding="utf-8") as f:
            return BackfillJob.model_validate_json(f.read())


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_store: JobStore | None = None


def get_job_store() -> JobStore:
    """Return singleton job store (Postgres if configured, else file-based)."""
    global _store
    if _store is not None:
        return _store
    settings = get_settings()
    if settings.qf_database_url:
        try:
            _store = PostgresJobStore(settings.qf_database_url)
            logger.info("Using Postgres job store")
        except Exception as e:
            logger.warning("Postgres job store failed (%s), falling back to file store", e)
            _store = FileJobStore(settings.data_dir)
    else:
        _store = FileJobStore(settings.data_dir)
        logger.info("Using file-based job store (QF_DATA_DIR/jobs)")
    return _store
