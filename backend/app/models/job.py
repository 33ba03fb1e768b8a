from __future__ import annotations
"""Job ORM model — one video generation request tracked end to end."""

import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class JobStatus(str, enum.Enum):
    """Job lifecycle statuses."""

    CREATED = "created"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATUSES: frozenset[str] = frozenset({
    JobStatus.SUCCEEDED.value,
    JobStatus.FAILED.value,
})

# Allowed status transitions: {current_status: [allowed_next_statuses]}
VALID_TRANSITIONS: dict[JobStatus, list[JobStatus]] = {
    JobStatus.CREATED: [JobStatus.RUNNING, JobStatus.SUCCEEDED, JobStatus.FAILED],
    JobStatus.RUNNING: [JobStatus.SUCCEEDED, JobStatus.FAILED],
    JobStatus.SUCCEEDED: [],
    JobStatus.FAILED: [],
}


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the DATETIME columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_job_id() -> str:
    return str(uuid.uuid4())


class Job(Base):
    """A generation job and its provider bookkeeping."""

    __tablename__ = "jobs"
    __table_args__ = (
        Index("ix_jobs_status_updated", "status", "updated_at"),
        {
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_job_id,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.CREATED.value
    )
    model_code: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[str] = mapped_column(String(64), nullable=False)

    # Handle assigned by the provider for deferred work
    provider_job_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )

    input: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    output: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps (UTC, set by the application so TTL math is portable)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
