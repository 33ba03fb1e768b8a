"""Pydantic v2 schemas package."""

from app.schemas.job import (
    ErrorResponse,
    JobCreate,
    JobCreated,
    JobStatusRead,
    UploadResult,
    WebhookAck,
)

__all__ = [
    "ErrorResponse",
    "JobCreate",
    "JobCreated",
    "JobStatusRead",
    "UploadResult",
    "WebhookAck",
]
