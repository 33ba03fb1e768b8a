"""Splice video-to-video via the Decart vid2vid API.

The API is one blocking POST that returns the processed MP4 as raw bytes,
so the work happens on poll (see ``ProcessOnPollAdapter``) and the result
is kept under ``processed/<handle>.mp4``.
"""

from __future__ import annotations

import base64
import logging
from typing import Any

import httpx

from app.services.errors import ValidationError
from app.services.media_probe import LANDSCAPE, PORTRAIT, probe_orientation
from app.services.providers.base import (
    MediaFile,
    ProcessOnPollAdapter,
    VideoOutput,
    check_file,
    check_prompt,
)

logger = logging.getLogger(__name__)

MAX_FILE_MB = 100
MAX_PROMPT_LENGTH = 1000
ALLOWED_VIDEO_MIME = (
    "video/mp4", "video/avi", "video/mov", "video/quicktime", "video/x-msvideo", "video/webm",
)
ALLOWED_IMAGE_MIME = ("image/png", "image/jpeg", "image/webp")

DIMENSIONS = {
    LANDSCAPE: (1280, 704),
    PORTRAIT: (704, 1280),
}


class SpliceProvider(ProcessOnPollAdapter):
    name = "splice"
    model_codes = ("Splice",)
    handle_prefix = "splice"

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.DECART_API_KEY and self.settings.SPLICE_ENDPOINT)

    @property
    def sync_mode(self) -> bool:
        return self.settings.SPLICE_SYNC_MODE

    @property
    def process_timeout(self) -> float:
        return self.settings.SPLICE_PROCESS_TIMEOUT

    def output_path(self, handle: str) -> str:
        return f"processed/{handle}.mp4"

    def validate(self, input: dict[str, Any]) -> None:
        file = MediaFile.from_input(input)
        check_file(file, max_mb=MAX_FILE_MB, allowed_mime=ALLOWED_VIDEO_MIME + ALLOWED_IMAGE_MIME)
        check_prompt(input.get("prompt"), max_length=MAX_PROMPT_LENGTH, required=True)
        orientation = input.get("orientation")
        if orientation is not None and orientation not in DIMENSIONS:
            raise ValidationError('Orientation must be either "landscape" or "portrait"')
        enhance = input.get("enhance_prompt")
        if enhance is not None and not isinstance(enhance, bool):
            raise ValidationError("enhance_prompt must be a boolean")

    async def _describe(self, input: dict[str, Any], client: httpx.AsyncClient) -> dict[str, Any]:
        orientation = input.get("orientation")
        if orientation not in DIMENSIONS:
            file = MediaFile.from_input(input)
            orientation = await probe_orientation(
                file.signed_url,
                file.mime,
                client=client,
                default=PORTRAIT if file.is_video else LANDSCAPE,
            )
        width, height = DIMENSIONS[orientation]
        return {"orientation": orientation, "width": width, "height": height}

    async def _process(
        self,
        input: dict[str, Any],
        params: dict[str, Any],
        client: httpx.AsyncClient,
    ) -> bytes:
        file = MediaFile.from_input(input)
        source = await self._fetch_source(client, file.signed_url)
        payload = {
            "prompt": input["prompt"],
            "video_base64": base64.b64encode(source).decode(),
            "enhance_prompt": input.get("enhance_prompt", True),
            "width": params["width"],
            "height": params["height"],
        }
        logger.info(
            "PROVIDER %s processing %s (%dx%d, %d bytes in)",
            self.name, params["orientation"], params["width"], params["height"], len(source),
        )
        resp = await self._send_with_retry(
            client,
            "POST",
            self.settings.SPLICE_ENDPOINT,
            attempts=1,
            timeout=self.process_timeout,
            json=payload,
            headers={"X-API-KEY": self.settings.DECART_API_KEY},
        )
        return resp.content

    def _build_output(self, input: dict[str, Any], params: dict[str, Any], url: str) -> VideoOutput:
        return VideoOutput(
            url=url,
            provider=self.name,
            model="vid2vid",
            width=params["width"],
            height=params["height"],
            prompt=input.get("prompt"),
            extra={"orientation": params["orientation"]},
        )
