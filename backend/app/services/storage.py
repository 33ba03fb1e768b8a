"""Object storage over the local media volume, with HMAC-signed URLs.

Objects live under ``<MEDIA_VOLUME>/<bucket>/<path>``. Signed URLs point at
the ``/api/media`` route, which serves a file only while its ``expires`` /
``token`` pair verifies.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import os
import tempfile
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Callable
from urllib.parse import quote, urlencode

from app.config import Settings, get_settings
from app.services.errors import StorageError

logger = logging.getLogger(__name__)


class MediaStorage:
    """Bucket-scoped file store."""

    def __init__(
        self,
        root: str | Path,
        *,
        bucket: str = "uploads",
        signing_key: str,
        public_base_url: str,
        clock: Callable[[], float] = time.time,
    ):
        self.bucket = bucket
        self._base = (Path(root) / bucket).resolve()
        self._key = signing_key.encode()
        self._public_base_url = public_base_url.rstrip("/")
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "MediaStorage":
        settings = settings or get_settings()
        return cls(
            settings.MEDIA_VOLUME,
            bucket=settings.UPLOAD_BUCKET,
            signing_key=settings.STORAGE_SIGNING_KEY,
            public_base_url=settings.PUBLIC_BASE_URL,
        )

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @staticmethod
    def generate_file_path(original_name: str, now: datetime | None = None) -> str:
        """``yyyymmdd/<uuid>.<ext>`` for a freshly uploaded file."""
        now = now or datetime.now(timezone.utc)
        ext = PurePosixPath(original_name).suffix.lstrip(".").lower() or "bin"
        return f"{now:%Y%m%d}/{uuid.uuid4()}.{ext}"

    def resolve(self, path: str) -> Path:
        """Absolute filesystem path for an object, refusing anything outside the bucket."""
        rel = PurePosixPath(path.lstrip("/"))
        if not rel.parts or any(part in ("..", "") for part in rel.parts):
            raise StorageError(f"Invalid storage path: {path}")
        full = (self._base / Path(*rel.parts)).resolve()
        if self._base not in full.parents:
            raise StorageError(f"Invalid storage path: {path}")
        return full

    # ------------------------------------------------------------------
    # Objects
    # ------------------------------------------------------------------

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str,
        *,
        upsert: bool = False,
    ) -> str:
        """Write ``data`` at ``path``; with ``upsert`` an existing object is replaced.

        The write goes to a temp file that is renamed into place, so repeating
        an upsert with the same path is safe.
        """
        target = self.resolve(path)
        try:
            await asyncio.to_thread(self._write, target, data, upsert)
        except FileExistsError as e:
            raise StorageError(f"Object already exists: {path}") from e
        except OSError as e:
            logger.error("Storage upload failed for %s: %s", path, e)
            raise StorageError(f"Failed to store {path}", details=str(e)) from e
        logger.info("Stored %s (%d bytes, %s)", path, len(data), content_type)
        return path

    @staticmethod
    def _write(target: Path, data: bytes, upsert: bool) -> None:
        if target.exists() and not upsert:
            raise FileExistsError(str(target))
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def exists(self, path: str) -> bool:
        target = self.resolve(path)
        return await asyncio.to_thread(target.is_file)

    async def read(self, path: str) -> bytes:
        target = self.resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except OSError as e:
            raise StorageError(f"Failed to read {path}", details=str(e)) from e

    # ------------------------------------------------------------------
    # Signed URLs
    # ------------------------------------------------------------------

    def _sign(self, path: str, expires: int) -> str:
        msg = f"{self.bucket}/{path}:{expires}".encode()
        return hmac.new(self._key, msg, hashlib.sha256).hexdigest()

    async def create_signed_url(self, path: str, ttl_seconds: int) -> str:
        """Time-limited URL for an existing object."""
        if not await self.exists(path):
            raise StorageError(f"Object not found: {path}")
        expires = int(self._clock()) + int(ttl_seconds)
        query = urlencode({"expires": expires, "token": self._sign(path, expires)})
        return f"{self._public_base_url}/api/media/{quote(path)}?{query}"

    def verify_signed_url(self, path: str, expires: int, token: str) -> bool:
        if expires < int(self._clock()):
            return False
        return hmac.compare_digest(self._sign(path, expires), token)
