"""Backfill error taxonomy.

A lost claim is not an error (the worker returns ``None``) and a stall is a
step outcome, not an exception.
"""


class BackfillError(Exception):
    """Base class for question backfill errors."""


class InvalidPayloadError(BackfillError):
    """Job payload or referenced section cannot be backfilled; fails immediately, no retry."""


class SectionNotFoundError(InvalidPayloadError):
    """Referenced section does not exist."""


class GenerationError(BackfillError):
    """Planner or generator produced no usable output; counted as no progress."""


class ChainConflictError(BackfillError):
    """A live backfill chain already owns the section."""

    def __init__(self, section_id: str, active_job_id: str):
        super().__init__(f"Section {section_id} already has an active backfill job: {active_job_id}")
        self.section_id = section_id
        self.active_job_id = active_job_id
