"""Job store gateway — the only code that reads or writes the ``jobs`` table.

All writes are single UPDATE statements so a concurrent reader never sees a
half-applied transition (e.g. ``succeeded`` with no output). ``transition``
adds a status guard to the WHERE clause, which turns "check then write" into
a compare-and-swap: whichever writer reaches a terminal state first wins and
every later writer sees ``False``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.job import (
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    Job,
    JobStatus,
    new_job_id,
    utcnow,
)
from app.services.errors import IntegrityError

logger = logging.getLogger(__name__)

_WRITABLE_FIELDS = frozenset({"status", "provider_job_id", "output", "error"})


@dataclass(frozen=True)
class JobRecord:
    """Detached, read-only snapshot of a job row."""

    id: str
    status: str
    model_code: str
    provider: str
    provider_job_id: str | None
    input: dict[str, Any]
    output: dict[str, Any] | None
    error: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_row(cls, row: Job) -> "JobRecord":
        return cls(
            id=row.id,
            status=row.status,
            model_code=row.model_code,
            provider=row.provider,
            provider_job_id=row.provider_job_id,
            input=dict(row.input or {}),
            output=row.output,
            error=row.error,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


def _normalize_fields(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - _WRITABLE_FIELDS
    if unknown:
        raise ValueError(f"Job fields are not writable: {sorted(unknown)}")
    values = dict(fields)
    if isinstance(values.get("status"), JobStatus):
        values["status"] = values["status"].value
    values["updated_at"] = utcnow()
    return values


def _status_values(statuses: Iterable[str | JobStatus]) -> list[str]:
    return [s.value if isinstance(s, JobStatus) else s for s in statuses]


def _check_transition(from_statuses: list[str], target: str | JobStatus | None) -> None:
    if target is None:
        return
    target = JobStatus(target)
    for current in from_statuses:
        if target not in VALID_TRANSITIONS[JobStatus(current)]:
            raise ValueError(f"Invalid job transition {current} -> {target.value}")


class SqlJobStore:
    """Job store backed by an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def insert(
        self,
        *,
        model_code: str,
        provider: str,
        input: dict[str, Any],
        status: JobStatus = JobStatus.CREATED,
        created_at: datetime | None = None,
    ) -> str:
        """Persist a new job and return its id."""
        now = created_at or utcnow()
        job = Job(
            id=new_job_id(),
            status=status.value,
            model_code=model_code,
            provider=provider,
            input=input,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._session_factory() as session:
                session.add(job)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Job insert failed (model=%s provider=%s): %s", model_code, provider, e)
            raise IntegrityError("Failed to create job", details=str(e)) from e
        return job.id

    async def get_by_id(self, job_id: str) -> JobRecord | None:
        return await self._fetch_one(select(Job).where(Job.id == job_id))

    async def get_by_provider_job_id(self, provider_job_id: str) -> JobRecord | None:
        return await self._fetch_one(
            select(Job).where(Job.provider_job_id == provider_job_id).limit(1)
        )

    async def update(self, job_id: str, **fields: Any) -> bool:
        """Unconditional atomic update of the given fields.

        Returns False when no row has that id.
        """
        stmt = update(Job).where(Job.id == job_id).values(**_normalize_fields(fields))
        return await self._execute_write(stmt, job_id)

    async def transition(
        self,
        job_id: str,
        from_statuses: Iterable[str | JobStatus],
        **fields: Any,
    ) -> bool:
        """Conditional atomic update, applied only while status is in ``from_statuses``.

        Returns True when this call wrote the row, False when another writer
        had already moved it out of the expected statuses (or it is gone).
        A status change ``VALID_TRANSITIONS`` does not allow raises ``ValueError``.
        """
        from_values = _status_values(from_statuses)
        _check_transition(from_values, fields.get("status"))
        stmt = (
            update(Job)
            .where(Job.id == job_id, Job.status.in_(from_values))
            .values(**_normalize_fields(fields))
        )
        return await self._execute_write(stmt, job_id)

    async def list_stale_running(self, older_than: datetime, limit: int = 100) -> list[JobRecord]:
        """Running jobs whose row has not been touched since ``older_than``."""
        stmt = (
            select(Job)
            .where(Job.status == JobStatus.RUNNING.value, Job.updated_at <= older_than)
            .order_by(Job.updated_at)
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise IntegrityError("Failed to list running jobs", details=str(e)) from e
        return [JobRecord.from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fetch_one(self, stmt) -> JobRecord | None:
        try:
            async with self._session_factory() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise IntegrityError("Failed to read job", details=str(e)) from e
        return JobRecord.from_row(row) if row is not None else None

    async def _execute_write(self, stmt, job_id: str) -> bool:
        stmt = stmt.execution_options(synchronize_session=False)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Job %s update failed: %s", job_id, e)
            raise IntegrityError(f"Failed to update job {job_id}", details=str(e)) from e
        return result.rowcount == 1
