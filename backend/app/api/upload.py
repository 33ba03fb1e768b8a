"""Upload API — store a source image or video and return a signed URL for it."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Request, UploadFile

from app.api.deps import get_storage, log_route, request_id
from app.config import Settings, get_settings
from app.schemas.job import UploadResult
from app.services.errors import StorageError, ValidationError
from app.services.storage import MediaStorage

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_IMAGE_TYPES = ("image/png", "image/jpeg", "image/webp", "image/jpg")
ALLOWED_VIDEO_TYPES = (
    "video/mp4", "video/avi", "video/mov", "video/quicktime", "video/x-msvideo", "video/webm",
)
ALLOWED_MIME_TYPES = ALLOWED_IMAGE_TYPES + ALLOWED_VIDEO_TYPES


@router.post("", response_model=UploadResult, status_code=201)
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    storage: MediaStorage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    rid = request_id(request)
    data = await file.read()
    size = len(data)

    if size == 0:
        raise ValidationError("No file provided", details="File field is required")
    if size > settings.MAX_UPLOAD_BYTES:
        raise ValidationError(
            f"File too large ({size / 1024 / 1024:.1f}MB)",
            details=f"Maximum file size is {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB",
        )

    mime = (file.content_type or "").lower()
    if mime not in ALLOWED_MIME_TYPES:
        raise ValidationError("Invalid file type", details=f"Allowed types: {', '.join(ALLOWED_MIME_TYPES)}")

    path = storage.generate_file_path(file.filename or "upload")
    await storage.upload(path, data, mime)

    signed_url = None
    try:
        signed_url = await storage.create_signed_url(path, settings.SIGNED_URL_EXPIRES_IN)
    except StorageError as e:
        # The file is stored; the client can still reference it by path.
        logger.error("[%s] Failed to create signed URL for %s: %s", rid, path, e)

    log_route(rid, "POST", "/api/upload", 201, f"Uploaded {path} ({size} bytes, {mime})")
    return UploadResult(path=path, signed_url=signed_url, mime=mime, size=size)
