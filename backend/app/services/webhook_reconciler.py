"""Webhook reconciler — applies provider push notifications to jobs.

Providers only know their own request id, so jobs are looked up by
``provider_job_id``. A job that is already terminal is acknowledged without
a write, and the terminal write itself is the same compare-and-swap the
poll path uses, so a webhook racing a status poll can never overwrite it.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any

from app.models.job import JobStatus
from app.services.errors import (
    NotFoundError,
    UnauthorizedError,
    ValidationError,
    truncate_message,
)
from app.services.job_orchestrator import commit_terminal
from app.services.job_store import SqlJobStore
from app.services.provider_registry import ProviderRegistry

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("x-signature-sha256", "x-hub-signature-256")

# Provider vocabulary (lower-cased) → job status
STATUS_MAP: dict[str, JobStatus] = {
    "completed": JobStatus.SUCCEEDED,
    "succeeded": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
    "error": JobStatus.FAILED,
    "running": JobStatus.RUNNING,
    "in_progress": JobStatus.RUNNING,
}

DEFAULT_FAILURE = "Provider processing failed"


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """HMAC-SHA256 hex digest of ``body``; an optional ``sha256=`` prefix is accepted."""
    if not signature or not secret:
        return False
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


@dataclass(frozen=True)
class WebhookOutcome:
    job_id: str
    status: str
    applied: bool

    def to_dict(self) -> dict[str, Any]:
        message = "Webhook processed successfully" if self.applied else "Job already completed"
        return {"message": message, "jobId": self.job_id, "status": self.status}


class WebhookReconciler:
    def __init__(
        self,
        store: SqlJobStore,
        registry: ProviderRegistry,
        *,
        secret: str,
        max_error_length: int = 500,
    ):
        self.store = store
        self.registry = registry
        self.secret = secret
        self.max_error_length = max_error_length

    async def handle(self, body: bytes, signature: str | None) -> WebhookOutcome:
        """Verify, parse and apply one webhook delivery."""
        if not self.secret:
            raise UnauthorizedError("Webhook not configured", details="WEBHOOK_SECRET is not set")
        if not verify_signature(body, signature, self.secret):
            raise UnauthorizedError("Unauthorized", details="Invalid webhook signature")

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise ValidationError("Invalid payload", details="Webhook payload must be valid JSON") from e
        if not isinstance(payload, dict):
            raise ValidationError("Invalid payload", details="Webhook payload must be a JSON object")

        provider_job_id = payload.get("request_id")
        raw_status = payload.get("status")
        if not provider_job_id:
            raise ValidationError("Invalid payload", details="request_id is required")
        if not raw_status or not isinstance(raw_status, str):
            raise ValidationError("Invalid payload", details="status is required")

        job = await self.store.get_by_provider_job_id(str(provider_job_id))
        if job is None:
            raise NotFoundError(
                "Job not found", details=f"No job found with provider ID: {provider_job_id}"
            )

        if job.is_terminal:
            logger.info("Webhook for job %s ignored, already %s", job.id, job.status)
            return WebhookOutcome(job.id, job.status, applied=False)

        status = STATUS_MAP.get(raw_status.lower())
        if status is None:
            raise ValidationError("Invalid status", details=f"Unknown provider status: {raw_status}")

        if status is JobStatus.RUNNING:
            return WebhookOutcome(job.id, job.status, applied=True)

        if status is JobStatus.SUCCEEDED:
            adapter = self.registry.get(job.provider)
            try:
                output = adapter.output_from_webhook(payload.get("output"), job.input)
            except (TypeError, ValueError) as e:
                logger.warning("Webhook %s output unreadable: %s", job.id, e)
                raise ValidationError("Invalid payload", details="Unreadable webhook output") from e
            if output is None:
                raise ValidationError("Invalid payload", details="Completed webhook carried no video output")
            fields = {"status": status.value, "output": output.to_dict(), "error": None}
        else:
            error = payload.get("error") or DEFAULT_FAILURE
            if not isinstance(error, str):
                error = json.dumps(error)
            fields = {
                "status": status.value,
                "output": None,
                "error": truncate_message(error, self.max_error_length),
            }

        job, won = await commit_terminal(self.store, job, fields, tolerate_write_errors=False)
        if won:
            logger.info("Job %s -> %s via webhook (model: %s)", job.id, job.status, job.model_code)
        return WebhookOutcome(job.id, job.status, applied=won)
