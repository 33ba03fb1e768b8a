from __future__ import annotations
"""Pydantic v2 schemas for jobs, uploads and webhook acknowledgements."""

from typing import Any, Literal

from pydantic import BaseModel, Field

from app.models.job import JobStatus


class JobCreate(BaseModel):
    """Job creation request; ``modelCode`` may also be given inside ``input``."""

    model_config = {"populate_by_name": True, "protected_namespaces": ()}

    model_code: str | None = Field(default=None, alias="modelCode")
    input: dict[str, Any] = Field(default_factory=dict)
    provider: str | None = None

    @property
    def resolved_model_code(self) -> str | None:
        code = self.model_code or self.input.get("modelCode")
        return code if isinstance(code, str) and code else None


class JobCreated(BaseModel):
    model_config = {"populate_by_name": True, "protected_namespaces": ()}

    id: str
    model_code: str = Field(alias="modelCode")


class JobStatusRead(BaseModel):
    """Client-visible job state."""

    model_config = {"populate_by_name": True, "protected_namespaces": ()}

    id: str
    status: JobStatus
    output: dict[str, Any] | None = None
    error: str | None = None
    model_code: str = Field(alias="modelCode")


class WebhookAck(BaseModel):
    model_config = {"populate_by_name": True, "protected_namespaces": ()}

    message: str
    job_id: str = Field(alias="jobId")
    status: JobStatus


class UploadResult(BaseModel):
    model_config = {"populate_by_name": True, "protected_namespaces": ()}

    status: Literal["succeeded"] = "succeeded"
    path: str
    public_url: str | None = Field(default=None, alias="publicUrl")
    signed_url: str | None = Field(default=None, alias="signedUrl")
    mime: str
    size: int


class ErrorResponse(BaseModel):
    """Unified error body for every failed request."""

    status: Literal["failed"] = "failed"
    error: str
    details: str | None = None
