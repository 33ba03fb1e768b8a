"""Job orchestrator — the job lifecycle state machine.

    created ──► running ──► succeeded | failed
       └──────────────────► succeeded | failed   (immediate providers)

Progress is request-driven: ``get_job_status`` enforces the TTL and polls
the provider at most once per call. Terminal writes go through
``commit_terminal``, a compare-and-swap shared with the webhook path, so
whichever path observes completion first wins and the other is a no-op.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from app.config import Settings
from app.models.job import JobStatus, utcnow
from app.services.errors import (
    ConfigurationError,
    IntegrityError,
    JobServiceError,
    NotFoundError,
    ValidationError,
    truncate_message,
)
from app.services.job_store import JobRecord, SqlJobStore
from app.services.provider_registry import ProviderRegistry
from app.services.providers.base import PollResult, PollState, SubmitKind

logger = logging.getLogger(__name__)

TIMEOUT_ERROR = "This job took too long and was aborted"
NON_TERMINAL = (JobStatus.CREATED, JobStatus.RUNNING)


@dataclass(frozen=True)
class JobView:
    """Client-visible projection of a job."""

    id: str
    status: str
    output: dict[str, Any] | None
    error: str | None
    model_code: str

    @classmethod
    def from_record(cls, job: JobRecord) -> "JobView":
        return cls(
            id=job.id,
            status=job.status,
            output=job.output,
            error=job.error,
            model_code=job.model_code,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "output": self.output,
            "error": self.error,
            "modelCode": self.model_code,
        }


async def commit_terminal(
    store: SqlJobStore,
    job: JobRecord,
    fields: dict[str, Any],
    from_statuses: Iterable[str | JobStatus] = NON_TERMINAL,
    *,
    tolerate_write_errors: bool = True,
) -> tuple[JobRecord, bool]:
    """Apply ``fields`` only if ``job`` is still in ``from_statuses``.

    Returns the record as it now stands and whether this call wrote it.
    When another writer got there first the row is re-read so the caller
    reports the winner's state. A failed write is logged and the caller
    gets the intended state back (the row catches up on a later read)
    unless ``tolerate_write_errors`` is False, in which case it is raised.
    """
    try:
        won = await store.transition(job.id, from_statuses, **fields)
    except IntegrityError as e:
        if not tolerate_write_errors:
            raise
        logger.error("Job %s terminal write failed: %s", job.id, e)
        return replace(job, **fields), False

    if won:
        return replace(job, **fields), True

    logger.info("Job %s already moved on; keeping the existing result", job.id)
    current = await store.get_by_id(job.id)
    return (current or job), False


def poll_fields(result: PollResult, max_error_length: int) -> dict[str, Any] | None:
    """Row fields for a terminal poll result, None while still running."""
    if result.state is PollState.SUCCEEDED:
        return {
            "status": JobStatus.SUCCEEDED.value,
            "output": result.output.to_dict(),
            "error": None,
        }
    if result.state is PollState.FAILED:
        return {
            "status": JobStatus.FAILED.value,
            "output": None,
            "error": truncate_message(result.error, max_error_length),
        }
    return None


class JobOrchestrator:
    """Creates jobs, dispatches them to providers, and reconciles their status."""

    def __init__(
        self,
        store: SqlJobStore,
        registry: ProviderRegistry,
        *,
        ttl_seconds: int = 900,
        max_input_bytes: int = 1024 * 1024,
        max_error_length: int = 500,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.registry = registry
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_input_bytes = max_input_bytes
        self.max_error_length = max_error_length
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: SqlJobStore,
        registry: ProviderRegistry,
    ) -> "JobOrchestrator":
        return cls(
            store,
            registry,
            ttl_seconds=settings.JOB_TTL_SECONDS,
            max_input_bytes=settings.MAX_INPUT_JSON_BYTES,
            max_error_length=settings.MAX_ERROR_MESSAGE_LENGTH,
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_job(
        self,
        model_code: str,
        input: dict[str, Any],
        requested_provider: str | None = None,
    ) -> str:
        """Create a job and submit it; returns the job id.

        Setup errors (validation, unknown or unconfigured provider) raise and
        no row is written. Once the row exists, submission failures are
        recorded on the job instead of raised.
        """
        if not isinstance(model_code, str) or not model_code.strip():
            raise ValidationError("modelCode is required")
        if not isinstance(input, dict):
            raise ValidationError("input must be a JSON object")
        size = len(json.dumps(input, default=str).encode())
        if size > self.max_input_bytes:
            raise ValidationError(
                "Input payload too large",
                details=f"{size} bytes exceeds the {self.max_input_bytes} byte limit",
            )

        adapter = self.registry.resolve(requested_provider, model_code)
        if not adapter.is_configured:
            raise ConfigurationError(f"Provider {adapter.name} is not configured")
        adapter.validate(input)

        job_id = await self.store.insert(model_code=model_code, provider=adapter.name, input=input)
        logger.info("Job %s created (model=%s provider=%s)", job_id, model_code, adapter.name)

        try:
            result = await adapter.submit(input)
        except Exception as e:
            message = e.message if isinstance(e, JobServiceError) else str(e)
            logger.warning("Job %s submit failed: %s", job_id, message, exc_info=True)
            await self._record(
                job_id,
                (JobStatus.CREATED,),
                status=JobStatus.FAILED.value,
                error=truncate_message(f"Provider failed: {message}", self.max_error_length),
            )
            return job_id

        if result.kind is SubmitKind.IMMEDIATE:
            await self._record(
                job_id,
                (JobStatus.CREATED,),
                status=JobStatus.SUCCEEDED.value,
                output=result.output.to_dict(),
            )
        else:
            await self._record(
                job_id,
                (JobStatus.CREATED,),
                status=JobStatus.RUNNING.value,
                provider_job_id=result.provider_job_id,
            )
        return job_id

    async def _record(self, job_id: str, from_statuses, **fields: Any) -> None:
        # The id is already promised to the caller; a lost write is only logged.
        try:
            written = await self.store.transition(job_id, from_statuses, **fields)
        except IntegrityError as e:
            logger.error("Job %s left stale after submit: %s", job_id, e)
            return
        if not written:
            logger.warning("Job %s changed before its submit result was recorded", job_id)
        else:
            logger.info("Job %s -> %s", job_id, fields["status"])

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_job_status(self, job_id: str) -> JobView:
        """Current job state, after TTL enforcement and at most one provider poll.

        Only a missing job raises; provider trouble never does.
        """
        job = await self.store.get_by_id(job_id)
        if job is None:
            raise NotFoundError("Job not found", details=f"No job with id {job_id}")

        if job.status == JobStatus.RUNNING.value and self._expired(job):
            logger.warning("Job %s exceeded %ss TTL, failing it", job.id, int(self.ttl.total_seconds()))
            job, _ = await commit_terminal(
                self.store,
                job,
                {"status": JobStatus.FAILED.value, "output": None, "error": TIMEOUT_ERROR},
                (JobStatus.RUNNING,),
            )

        if job.status == JobStatus.RUNNING.value and job.provider_job_id:
            job = await self._poll_once(job)

        return JobView.from_record(job)

    def _expired(self, job: JobRecord) -> bool:
        return self._clock() - job.created_at > self.ttl

    async def _poll_once(self, job: JobRecord) -> JobRecord:
        try:
            adapter = self.registry.get(job.provider)
            result = await adapter.poll(job.provider_job_id, job.input)
        except Exception as e:
            logger.warning("Job %s poll raised, still running: %s", job.id, e, exc_info=True)
            return job

        if not result.is_terminal:
            return job

        fields = poll_fields(result, self.max_error_length)
        job, won = await commit_terminal(self.store, job, fields, (JobStatus.RUNNING,))
        if won:
            logger.info("Job %s -> %s via poll", job.id, job.status)
        return job

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    async def sweep_running(self, idle_seconds: int, limit: int = 100) -> int:
        """Drive idle running jobs through ``get_job_status``; returns how many finished."""
        cutoff = self._clock() - timedelta(seconds=idle_seconds)
        finished = 0
        for job in await self.store.list_stale_running(cutoff, limit):
            try:
                view = await self.get_job_status(job.id)
            except NotFoundError:
                continue
            if view.status != JobStatus.RUNNING.value:
                finished += 1
        if finished:
            logger.info("Reconcile sweep finished %d job(s)", finished)
        return finished
