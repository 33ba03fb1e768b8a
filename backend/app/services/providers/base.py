"""Provider adapter contract and shared machinery.

Every external generation API sits behind ``ProviderAdapter``:

    submit(input)                 -> SubmitResult  (immediate | deferred)
    poll(provider_job_id, input)  -> PollResult    (running | succeeded | failed)

Adapters never touch the job store. Provider-specific response shapes are
parsed inside the adapter and only ever leave it as one of the result types
below, carrying a ``VideoOutput``.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import secrets
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from app.config import Settings
from app.services.errors import (
    ConfigurationError,
    ProviderRejectedError,
    ProviderTransportError,
    StorageError,
    ValidationError,
)
from app.services.storage import MediaStorage

logger = logging.getLogger(__name__)

MB = 1024 * 1024


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VideoOutput:
    """Provider-independent description of a generated video."""

    url: str
    provider: str
    model: str
    width: int
    height: int
    prompt: str | None = None
    format: str = "mp4"
    type: str = "video"
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "type": self.type,
            "url": self.url,
            "format": self.format,
            "width": self.width,
            "height": self.height,
            "provider": self.provider,
            "model": self.model,
            "prompt": self.prompt,
        }
        data.update(self.extra)
        return data


class SubmitKind(str, enum.Enum):
    IMMEDIATE = "immediate"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class SubmitResult:
    kind: SubmitKind
    output: VideoOutput | None = None
    provider_job_id: str | None = None

    def __post_init__(self):
        if self.kind is SubmitKind.IMMEDIATE and self.output is None:
            raise ValueError("immediate submit result requires an output")
        if self.kind is SubmitKind.DEFERRED and not self.provider_job_id:
            raise ValueError("deferred submit result requires a provider job id")

    @classmethod
    def immediate(cls, output: VideoOutput) -> "SubmitResult":
        return cls(SubmitKind.IMMEDIATE, output=output)

    @classmethod
    def deferred(cls, provider_job_id: str) -> "SubmitResult":
        return cls(SubmitKind.DEFERRED, provider_job_id=provider_job_id)


class PollState(str, enum.Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class PollResult:
    state: PollState
    output: VideoOutput | None = None
    error: str | None = None

    def __post_init__(self):
        if self.state is PollState.SUCCEEDED and self.output is None:
            raise ValueError("succeeded poll result requires an output")
        if self.state is PollState.FAILED and not self.error:
            raise ValueError("failed poll result requires an error message")

    @property
    def is_terminal(self) -> bool:
        return self.state is not PollState.RUNNING

    @classmethod
    def running(cls) -> "PollResult":
        return cls(PollState.RUNNING)

    @classmethod
    def succeeded(cls, output: VideoOutput) -> "PollResult":
        return cls(PollState.SUCCEEDED, output=output)

    @classmethod
    def failed(cls, error: str) -> "PollResult":
        return cls(PollState.FAILED, error=error or "Video generation failed")


@dataclass(frozen=True)
class MediaFile:
    """The uploaded source file referenced by a job input."""

    path: str | None
    signed_url: str | None
    mime: str
    size: int

    @property
    def size_mb(self) -> float:
        return self.size / MB

    @property
    def is_video(self) -> bool:
        return self.mime.startswith("video/")

    @classmethod
    def from_input(cls, input: dict[str, Any]) -> "MediaFile":
        raw = input.get("file")
        if not isinstance(raw, dict):
            raise ValidationError("A file reference is required")
        size = raw.get("size", 0)
        if isinstance(size, bool) or not isinstance(size, (int, float)) or size < 0:
            raise ValidationError("File size must be a non-negative number")
        return cls(
            path=raw.get("path"),
            signed_url=raw.get("signedUrl"),
            mime=str(raw.get("mime") or "").lower(),
            size=int(size),
        )


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def check_file(file: MediaFile, *, max_mb: int, allowed_mime: tuple[str, ...]) -> None:
    if not file.signed_url:
        raise ValidationError("File with signed URL required")
    if file.size_mb > max_mb:
        raise ValidationError(f"File too large ({file.size_mb:.1f}MB max {max_mb}MB)")
    if file.mime not in allowed_mime:
        raise ValidationError(
            f"Unsupported file type: {file.mime or 'unknown'}. Allowed: {', '.join(allowed_mime)}"
        )


def check_prompt(prompt: Any, *, max_length: int, required: bool) -> None:
    if prompt is None or (isinstance(prompt, str) and not prompt.strip()):
        if required:
            raise ValidationError("Prompt is required")
        return
    if not isinstance(prompt, str):
        raise ValidationError("Prompt must be a string")
    if len(prompt) > max_length:
        raise ValidationError(f"Prompt too long (max {max_length} chars)")


def check_int_range(value: Any, name: str, *, low: int, high: int) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise ValidationError(f"{name} must be an integer between {low} and {high}")


def parse_dimension(value: Any, default: int) -> int:
    """Pixel dimension reported by a provider; ``default`` when missing or unreadable."""
    if isinstance(value, bool):
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def response_error_text(resp: httpx.Response) -> str:
    """Short human-readable reason from a provider error response."""
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("error", "message", "detail"):
            if data.get(key):
                return str(data[key])[:200]
    return (resp.text or resp.reason_phrase or "")[:200]


# ---------------------------------------------------------------------------
# Adapter base class
# ---------------------------------------------------------------------------

class ProviderAdapter(ABC):
    """Uniform two-method wrapper around one external generation API."""

    name: str = ""
    model_codes: tuple[str, ...] = ()

    def __init__(
        self,
        settings: Settings,
        *,
        storage: MediaStorage | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.storage = storage
        self._http_client = http_client

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """True when required credentials/endpoints are present. No network I/O."""

    @abstractmethod
    def validate(self, input: dict[str, Any]) -> None:
        """Raise ``ValidationError`` if ``input`` violates this provider's limits."""

    @abstractmethod
    async def _submit(self, input: dict[str, Any]) -> SubmitResult:
        ...

    @abstractmethod
    async def poll(self, provider_job_id: str, input: dict[str, Any]) -> PollResult:
        ...

    async def submit(self, input: dict[str, Any]) -> SubmitResult:
        """Validate, then hand the work to the provider.

        Raises ``ConfigurationError`` or ``ValidationError`` before any network
        call; ``ProviderTransportError`` once retries are exhausted and
        ``ProviderRejectedError`` on a 4xx.
        """
        if not self.is_configured:
            raise ConfigurationError(f"{self.name} is not configured")
        self.validate(input)
        result = await self._submit(input)
        logger.info(
            "PROVIDER %s submit success - %s%s",
            self.name, result.kind.value,
            f" ({result.provider_job_id})" if result.provider_job_id else "",
        )
        return result

    def output_from_webhook(self, raw: Any, input: dict[str, Any]) -> VideoOutput | None:
        """Normalize a webhook ``output`` payload; None when it carries no video."""
        if not isinstance(raw, dict):
            return None
        video = raw.get("video") if isinstance(raw.get("video"), dict) else raw
        url = video.get("url")
        if not url:
            return None
        return VideoOutput(
            url=url,
            provider=self.name,
            model=str(raw.get("model") or self.name),
            width=parse_dimension(video.get("width"), 1280),
            height=parse_dimension(video.get("height"), 720),
            prompt=input.get("prompt"),
        )

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _client(self, timeout: float) -> AsyncIterator[httpx.AsyncClient]:
        client = self._http_client or httpx.AsyncClient(timeout=timeout)
        own_client = self._http_client is None
        try:
            yield client
        finally:
            if own_client:
                await client.aclose()

    async def _send_with_retry(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        *,
        attempts: int,
        timeout: float,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, retrying transport errors, timeouts and 5xx.

        A 4xx raises ``ProviderRejectedError`` immediately.
        """
        attempts = max(1, attempts)
        last_error: ProviderTransportError | None = None

        for attempt in range(attempts):
            try:
                resp = await client.request(method, url, timeout=timeout, **kwargs)
            except httpx.TransportError as e:
                kind = "timeout" if isinstance(e, httpx.TimeoutException) else "network error"
                last_error = ProviderTransportError(
                    f"{self.name} {kind}: {e}", provider=self.name,
                )
            else:
                if resp.status_code >= 500:
                    last_error = ProviderTransportError(
                        f"{self.name} API error {resp.status_code}: {response_error_text(resp)}",
                        provider=self.name,
                        provider_status=resp.status_code,
                    )
                elif resp.status_code >= 400:
                    raise ProviderRejectedError(
                        f"{self.name} API rejected request ({resp.status_code}): "
                        f"{response_error_text(resp)}",
                        provider=self.name,
                        provider_status=resp.status_code,
                    )
                else:
                    return resp

            if attempt < attempts - 1:
                delay = self.settings.PROVIDER_RETRY_DELAY * (attempt + 1)
                logger.warning(
                    "PROVIDER %s attempt %d/%d failed: %s (retry in %.1fs)",
                    self.name, attempt + 1, attempts, last_error, delay,
                )
                await asyncio.sleep(delay)

        logger.error("PROVIDER %s all %d attempts failed: %s", self.name, attempts, last_error)
        raise last_error


# ---------------------------------------------------------------------------
# Process-on-poll adapters
# ---------------------------------------------------------------------------

class ProcessOnPollAdapter(ProviderAdapter):
    """Providers that answer one long blocking call with raw video bytes.

    ``submit`` only mints a handle; the first ``poll`` makes the processing
    call, stores the bytes at ``output_path(handle)`` and returns a signed
    URL. Storage writes overwrite, and a poll that finds the object already
    stored returns it without calling the provider again. Polls of one handle
    are serialized per adapter instance, so concurrent status reads make a
    single provider call. With ``sync_mode`` the processing happens inside
    ``submit`` instead.
    """

    handle_prefix: str = ""
    content_type = "video/mp4"

    def __init__(self, settings: Settings, **kwargs: Any):
        super().__init__(settings, **kwargs)
        self._handle_locks: dict[str, asyncio.Lock] = {}

    @property
    @abstractmethod
    def sync_mode(self) -> bool:
        ...

    @property
    @abstractmethod
    def process_timeout(self) -> float:
        ...

    @abstractmethod
    def output_path(self, handle: str) -> str:
        ...

    @abstractmethod
    async def _describe(self, input: dict[str, Any], client: httpx.AsyncClient) -> dict[str, Any]:
        """Derive request parameters (dimensions, orientation, ...) from the input."""

    @abstractmethod
    async def _process(
        self,
        input: dict[str, Any],
        params: dict[str, Any],
        client: httpx.AsyncClient,
    ) -> bytes:
        """Run the provider call and return the generated video bytes."""

    @abstractmethod
    def _build_output(self, input: dict[str, Any], params: dict[str, Any], url: str) -> VideoOutput:
        ...

    def new_handle(self) -> str:
        return f"{self.handle_prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"

    async def _submit(self, input: dict[str, Any]) -> SubmitResult:
        handle = self.new_handle()
        if not self.sync_mode:
            return SubmitResult.deferred(handle)
        return SubmitResult.immediate(await self._process_and_store(handle, input))

    async def poll(self, provider_job_id: str, input: dict[str, Any]) -> PollResult:
        if not provider_job_id.startswith(f"{self.handle_prefix}_"):
            return PollResult.failed(f"Unknown {self.name} job handle: {provider_job_id}")

        try:
            return PollResult.succeeded(await self._process_and_store(provider_job_id, input))
        except ProviderTransportError as e:
            logger.warning("PROVIDER %s poll error - %s (still running)", self.name, e)
            return PollResult.running()
        except (ProviderRejectedError, ValidationError) as e:
            logger.error("PROVIDER %s poll error - %s", self.name, e)
            return PollResult.failed(f"Video generation failed: {e.message}")
        except StorageError as e:
            logger.error("PROVIDER %s poll error - storage: %s", self.name, e)
            return PollResult.failed(f"Failed to store generated video: {e.message}")

    async def _process_and_store(self, handle: str, input: dict[str, Any]) -> VideoOutput:
        if self.storage is None:
            raise StorageError(f"{self.name} requires object storage")

        lock = self._handle_locks.setdefault(handle, asyncio.Lock())
        try:
            async with lock:
                return await self._process_and_store_locked(handle, input)
        finally:
            if not lock.locked() and self._handle_locks.get(handle) is lock:
                del self._handle_locks[handle]

    async def _process_and_store_locked(self, handle: str, input: dict[str, Any]) -> VideoOutput:
        path = self.output_path(handle)
        async with self._client(self.process_timeout) as client:
            params = await self._describe(input, client)
            if await self.storage.exists(path):
                logger.info("PROVIDER %s poll - %s already stored", self.name, path)
            else:
                video = await self._process(input, params, client)
                if not video:
                    raise ProviderTransportError(
                        f"{self.name} returned an empty video", provider=self.name,
                    )
                await self.storage.upload(path, video, self.content_type, upsert=True)

        url = await self.storage.create_signed_url(path, self.settings.SIGNED_URL_EXPIRES_IN)
        return self._build_output(input, params, url)

    async def _fetch_source(self, client: httpx.AsyncClient, url: str) -> bytes:
        try:
            resp = await client.get(url)
        except httpx.TransportError as e:
            raise ProviderTransportError(f"Failed to fetch source file: {e}", provider=self.name) from e
        if resp.status_code >= 500:
            raise ProviderTransportError(
                f"Failed to fetch source file: {resp.status_code}", provider=self.name,
            )
        if resp.status_code >= 400:
            raise ProviderRejectedError(
                f"Failed to fetch source file: {resp.status_code}",
                provider=self.name,
                provider_status=resp.status_code,
            )
        return resp.content
