"""Fire-and-forget job dispatch.

Creating a job and dispatching it are the only way one step reaches the
next; a step never waits on its continuation.
"""

from __future__ import annotations

import logging
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Protocol

logger = logging.getLogger(__name__)

JobHandler = Callable[[str], object]


class JobDispatcher(Protocol):
    def dispatch(self, job_id: str) -> None:
        """Schedule exactly one worker invocation for ``job_id``."""
        ...


class ThreadPoolDispatcher:
    """Run each dispatched job on a background thread (used by the HTTP API)."""

    def __init__(self, handler: JobHandler | None = None, max_workers: int = 4):
        self._handler = handler
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="qf-worker")

    def bind(self, handler: JobHandler) -> None:
        self._handler = handler

    def dispatch(self, job_id: str) -> None:
        if self._handler is None:
            raise RuntimeError("ThreadPoolDispatcher has no handler bound.")
        future = self._executor.submit(self._handler, job_id)
        future.add_done_callback(lambda f, jid=job_id: self._log_failure(jid, f))

    @staticmethod
    def _log_failure(job_id: str, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Worker invocation for job %s raised: %s", job_id, exc)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class QueueDispatcher:
    """Collect dispatched job ids and run them one at a time on ``drain``.

    Continuations dispatched while a job runs are appended to the queue, so a
    whole chain executes iteratively with no recursion.
    """

    def __init__(self) -> None:
        self._pending: deque[str] = deque()
        self.dispatched: list[str] = []

    def dispatch(self, job_id: str) -> None:
        self._pending.append(job_id)
        self.dispatched.append(job_id)

    def __len__(self) -> int:
        return len(self._pending)

    def drain(self, handler: JobHandler, max_jobs: int | None = None) -> int:
        """Run queued jobs until the queue is empty (or ``max_jobs`` ran). Returns jobs run."""
        ran = 0
        while self._pending and (max_jobs is None or ran < max_jobs):
            handler(self._pending.popleft())
            ran += 1
        return ran
