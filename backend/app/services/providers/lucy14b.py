"""Lucy 14B image-to-video via FAL.

Submission is asynchronous on FAL's side (``sync: false``): the POST returns
a ``request_id`` that is polled at ``<endpoint>/requests/<request_id>``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from app.services.errors import ProviderRejectedError, ProviderTransportError
from app.services.providers.base import (
    MediaFile,
    PollResult,
    ProviderAdapter,
    SubmitResult,
    VideoOutput,
    check_file,
    check_int_range,
    check_prompt,
    parse_dimension,
    response_error_text,
)

logger = logging.getLogger(__name__)

MAX_FILE_MB = 10
MAX_PROMPT_LENGTH = 500
MAX_DURATION = 10
DEFAULT_DURATION = 4
DEFAULT_PROMPT = "Generate smooth video from image"
ALLOWED_MIME = ("image/png", "image/jpeg", "image/webp")

DEFAULT_WIDTH = 1280
DEFAULT_HEIGHT = 720

_COMPLETED = "COMPLETED"
_FAILED = ("FAILED", "ERROR")


class Lucy14bProvider(ProviderAdapter):
    name = "lucy14b"
    model_codes = ("Lucy14b", "Lucy5b")

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.FAL_CREDENTIAL and self.settings.FAL_BASE_URL)

    @property
    def endpoint(self) -> str:
        return self.settings.LUCY14B_ENDPOINT

    @property
    def submit_url(self) -> str:
        return f"{self.settings.FAL_BASE_URL.rstrip('/')}/{self.endpoint}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Key {self.settings.FAL_CREDENTIAL}",
            "Content-Type": "application/json",
        }

    def validate(self, input: dict[str, Any]) -> None:
        file = MediaFile.from_input(input)
        check_file(file, max_mb=MAX_FILE_MB, allowed_mime=ALLOWED_MIME)
        check_prompt(input.get("prompt"), max_length=MAX_PROMPT_LENGTH, required=False)
        check_int_range(input.get("duration"), "Duration", low=1, high=MAX_DURATION)

    async def _submit(self, input: dict[str, Any]) -> SubmitResult:
        payload = {
            "image_url": input["file"]["signedUrl"],
            "prompt": input.get("prompt") or DEFAULT_PROMPT,
            "duration": input.get("duration") or DEFAULT_DURATION,
            "enable_safety_checker": False,
            "sync": False,
        }

        async with self._client(self.settings.PROVIDER_SUBMIT_TIMEOUT) as client:
            resp = await self._send_with_retry(
                client,
                "POST",
                self.submit_url,
                attempts=self.settings.PROVIDER_SUBMIT_ATTEMPTS,
                timeout=self.settings.PROVIDER_SUBMIT_TIMEOUT,
                json=payload,
                headers=self._headers(),
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderTransportError(
                f"{self.name} returned a non-JSON submit response", provider=self.name,
            ) from e
        if not isinstance(data, dict):
            raise ProviderTransportError(
                f"{self.name} returned an unexpected submit response", provider=self.name,
            )

        output = self._parse_video(data, input)
        if output is not None and str(data.get("status", _COMPLETED)).upper() == _COMPLETED:
            return SubmitResult.immediate(output)

        request_id = data.get("request_id")
        if not request_id:
            raise ProviderTransportError(
                f"{self.name} submit response missing request_id", provider=self.name,
            )
        return SubmitResult.deferred(str(request_id))

    async def poll(self, provider_job_id: str, input: dict[str, Any]) -> PollResult:
        status_url = f"{self.submit_url}/requests/{provider_job_id}"

        try:
            async with self._client(self.settings.PROVIDER_POLL_TIMEOUT) as client:
                resp = await self._send_with_retry(
                    client,
                    "GET",
                    status_url,
                    attempts=1,
                    timeout=self.settings.PROVIDER_POLL_TIMEOUT,
                    headers={"Authorization": f"Key {self.settings.FAL_CREDENTIAL}"},
                )
        except ProviderRejectedError as e:
            if e.provider_status == 404:
                logger.debug("PROVIDER %s poll - %s not found yet", self.name, provider_job_id)
                return PollResult.running()
            if e.provider_status == 429:
                return PollResult.running()
            logger.error("PROVIDER %s poll error - %s", self.name, e)
            return PollResult.failed(f"Video generation failed: {e.message}")
        except ProviderTransportError as e:
            logger.warning("PROVIDER %s poll error - %s (still running)", self.name, e)
            return PollResult.running()

        try:
            data = resp.json()
        except ValueError:
            logger.warning("PROVIDER %s poll - non-JSON status response", self.name)
            return PollResult.running()
        if not isinstance(data, dict):
            return PollResult.running()

        status = str(data.get("status") or "").upper()
        if status == _COMPLETED:
            output = self._parse_video(data, input)
            if output is not None:
                return PollResult.succeeded(output)
            logger.warning("PROVIDER %s poll - completed without video yet", self.name)
            return PollResult.running()
        if status in _FAILED:
            return PollResult.failed(str(data.get("error") or "Video generation failed"))

        logger.debug("PROVIDER %s poll - %s %s", self.name, provider_job_id, status or "pending")
        return PollResult.running()

    def output_from_webhook(self, raw: Any, input: dict[str, Any]) -> VideoOutput | None:
        if not isinstance(raw, dict):
            return None
        return self._parse_video(raw, input) or super().output_from_webhook(raw, input)

    def _parse_video(self, data: dict[str, Any], input: dict[str, Any]) -> VideoOutput | None:
        video = data.get("video")
        if not isinstance(video, dict) or not video.get("url"):
            return None
        return VideoOutput(
            url=video["url"],
            provider=self.name,
            model=self.endpoint,
            width=parse_dimension(video.get("width"), DEFAULT_WIDTH),
            height=parse_dimension(video.get("height"), DEFAULT_HEIGHT),
            prompt=input.get("prompt"),
            extra={"duration_s": input.get("duration") or DEFAULT_DURATION},
        )
