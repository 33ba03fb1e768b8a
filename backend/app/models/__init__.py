"""ORM model package — registers all models with Base.metadata."""

from app.models.job import (
    Job,
    JobStatus,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    new_job_id,
    utcnow,
)

__all__ = [
    "Job",
    "JobStatus",
    "TERMINAL_STATUSES",
    "VALID_TRANSITIONS",
    "new_job_id",
    "utcnow",
]
