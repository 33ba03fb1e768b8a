"""Signed media downloads."""

from __future__ import annotations

import mimetypes

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from app.api.deps import get_storage
from app.services.errors import StorageError
from app.services.storage import MediaStorage

router = APIRouter()


@router.get("/{path:path}")
async def get_media(
    path: str,
    expires: int,
    token: str,
    storage: MediaStorage = Depends(get_storage),
):
    """Serve a stored object while its signed-URL token is valid."""
    if not storage.verify_signed_url(path, expires, token):
        raise HTTPException(status_code=403, detail="Invalid or expired signature")
    try:
        target = storage.resolve(path)
    except StorageError:
        raise HTTPException(status_code=404, detail="Not found")
    if not target.is_file():
        raise HTTPException(status_code=404, detail="Not found")
    media_type = mimetypes.guess_type(target.name)[0] or "application/octet-stream"
    return FileResponse(target, media_type=media_type)
