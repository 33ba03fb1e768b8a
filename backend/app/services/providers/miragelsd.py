"""MirageLSD video-to-video.

Multipart upload of the source video; the response body is the generated
MP4, stored under ``output_model/out_<handle>.mp4``. The endpoint takes no
credentials.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from app.services.media_probe import LANDSCAPE, PORTRAIT, probe_orientation
from app.services.providers.base import (
    MediaFile,
    ProcessOnPollAdapter,
    VideoOutput,
    check_file,
    check_int_range,
    check_prompt,
)

logger = logging.getLogger(__name__)

MAX_FILE_MB = 200
MAX_PROMPT_LENGTH = 1000
MAX_GENERATIONS = 10
ALLOWED_MIME = (
    "video/mp4", "video/avi", "video/mov", "video/quicktime", "video/x-msvideo", "video/webm",
)

DIMENSIONS = {
    LANDSCAPE: (1280, 704),
    PORTRAIT: (704, 1280),
}


class MirageLSDProvider(ProcessOnPollAdapter):
    name = "miragelsd"
    model_codes = ("MirageLSD",)
    handle_prefix = "miragelsd"

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.MIRAGE_ENDPOINT)

    @property
    def sync_mode(self) -> bool:
        return self.settings.MIRAGE_SYNC_MODE

    @property
    def process_timeout(self) -> float:
        return self.settings.MIRAGE_PROCESS_TIMEOUT

    def output_path(self, handle: str) -> str:
        return f"output_model/out_{handle}.mp4"

    def validate(self, input: dict[str, Any]) -> None:
        file = MediaFile.from_input(input)
        check_file(file, max_mb=MAX_FILE_MB, allowed_mime=ALLOWED_MIME)
        check_prompt(input.get("prompt"), max_length=MAX_PROMPT_LENGTH, required=True)
        check_int_range(
            input.get("generationsCount"), "generationsCount", low=1, high=MAX_GENERATIONS,
        )

    async def _describe(self, input: dict[str, Any], client: httpx.AsyncClient) -> dict[str, Any]:
        file = MediaFile.from_input(input)
        orientation = await probe_orientation(
            file.signed_url, file.mime, client=client, default=LANDSCAPE,
        )
        width, height = DIMENSIONS[orientation]
        return {
            "orientation": orientation,
            "width": width,
            "height": height,
            "generations": input.get("generationsCount") or 1,
        }

    async def _process(
        self,
        input: dict[str, Any],
        params: dict[str, Any],
        client: httpx.AsyncClient,
    ) -> bytes:
        file = MediaFile.from_input(input)
        source = await self._fetch_source(client, file.signed_url)
        logger.info(
            "PROVIDER %s processing %d generation(s), %d bytes in",
            self.name, params["generations"], len(source),
        )
        resp = await self._send_with_retry(
            client,
            "POST",
            self.settings.MIRAGE_ENDPOINT,
            attempts=1,
            timeout=self.process_timeout,
            files={"video": ("video.mp4", source, file.mime or "video/mp4")},
            data={
                "prompt": input["prompt"],
                "generationsCount": str(params["generations"]),
            },
        )
        return resp.content

    def _build_output(self, input: dict[str, Any], params: dict[str, Any], url: str) -> VideoOutput:
        return VideoOutput(
            url=url,
            provider=self.name,
            model="mirage",
            width=params["width"],
            height=params["height"],
            prompt=input.get("prompt"),
            extra={"generationsCount": params["generations"]},
        )
