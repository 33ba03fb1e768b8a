"""Video generation provider adapters.

Each provider module implements the two-step adapter contract:
  submit(input) → immediate output or deferred handle
  poll(handle, input) → running / succeeded / failed
"""

from app.services.providers.base import (
    MediaFile,
    PollResult,
    PollState,
    ProcessOnPollAdapter,
    ProviderAdapter,
    SubmitKind,
    SubmitResult,
    VideoOutput,
)
from app.services.providers.lucy14b import Lucy14bProvider
from app.services.providers.miragelsd import MirageLSDProvider
from app.services.providers.splice import SpliceProvider

__all__ = [
    "MediaFile",
    "PollResult",
    "PollState",
    "ProcessOnPollAdapter",
    "ProviderAdapter",
    "SubmitKind",
    "SubmitResult",
    "VideoOutput",
    "Lucy14bProvider",
    "MirageLSDProvider",
    "SpliceProvider",
]
