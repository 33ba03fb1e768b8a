"""Provider registry and declarative model catalog.

Usage:
    registry = ProviderRegistry.from_settings(settings, storage=storage)
    adapter = registry.resolve(None, "Lucy14b")      # -> Lucy14bProvider
    registry.is_configured("splice")
    MODEL_CATALOG.get_by_slug("lucy-14b")

The default provider is picked once, when the registry is built, from
``PROVIDER_NAME`` and whichever providers are configured.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

import httpx

from app.config import Settings
from app.services.errors import ConfigurationError, UnknownProviderError
from app.services.providers import (
    Lucy14bProvider,
    MirageLSDProvider,
    ProviderAdapter,
    SpliceProvider,
)
from app.services.storage import MediaStorage

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], ProviderAdapter]


# ---------------------------------------------------------------------------
# Model catalog
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelConfig:
    """Catalog entry for one selectable model."""
    slug: str
    name: str
    description: str
    code: str
    enabled: bool = True
    provider_model: str | None = None


class ModelCatalog:
    """In-memory catalog of models, indexed by slug and by code."""

    def __init__(self, models: Iterable[ModelConfig] = ()) -> None:
        self._by_slug: dict[str, ModelConfig] = {}
        self._by_code: dict[str, ModelConfig] = {}
        for model in models:
            self.register(model)

    def register(self, model: ModelConfig) -> None:
        self._by_slug[model.slug] = model
        self._by_code[model.code] = model

    def get_by_slug(self, slug: str) -> ModelConfig | None:
        return self._by_slug.get(slug)

    def get_by_code(self, code: str) -> ModelConfig | None:
        return self._by_code.get(code)

    def list_models(self, enabled_only: bool = False) -> list[ModelConfig]:
        return [m for m in self._by_slug.values() if m.enabled or not enabled_only]

    def __contains__(self, code: object) -> bool:
        return code in self._by_code


MODEL_CATALOG = ModelCatalog([
    ModelConfig(
        slug="lucy-14b",
        name="Lucy 14B",
        description="High quality Image to video model",
        code="Lucy14b",
        provider_model="fal-ai/wan/v2.2-a14b/image-to-video",
    ),
    ModelConfig(
        slug="lucy-5b",
        name="Lucy 5B",
        description="Fast Image to video model",
        code="Lucy5b",
        enabled=False,
    ),
    ModelConfig(
        slug="splice",
        name="Splice",
        description="Real-time video editing",
        code="Splice",
        provider_model="vid2vid",
    ),
    ModelConfig(
        slug="miragelsd",
        name="MirageLSD",
        description="High-quality video to video transformation",
        code="MirageLSD",
        provider_model="mirage",
    ),
    ModelConfig(
        slug="lucid",
        name="Lucid",
        description="Experimental model without a dedicated provider",
        code="Lucid",
        enabled=False,
    ),
])

# modelCode → provider id (many-to-one)
MODEL_PROVIDER_MAP: dict[str, str] = {
    "Lucy14b": "lucy14b",
    "Lucy5b": "lucy14b",
    "Splice": "splice",
    "MirageLSD": "miragelsd",
}

# Fallback order when PROVIDER_NAME is unset or unconfigured
PROVIDER_PRIORITY: tuple[str, ...] = ("lucy14b", "splice", "miragelsd")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ProviderRegistry:
    """Maps provider ids to adapters and model codes to provider ids."""

    def __init__(
        self,
        factories: dict[str, ProviderFactory],
        *,
        default_provider: str | None = None,
        model_providers: dict[str, str] | None = None,
        catalog: ModelCatalog = MODEL_CATALOG,
    ) -> None:
        self._factories = dict(factories)
        self._instances: dict[str, ProviderAdapter] = {}
        self._model_providers = dict(MODEL_PROVIDER_MAP if model_providers is None else model_providers)
        self.catalog = catalog
        if default_provider is not None and default_provider not in self._factories:
            raise UnknownProviderError(f"Unknown default provider: {default_provider}")
        self.default_provider = default_provider

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        storage: MediaStorage | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "ProviderRegistry":
        kwargs: dict[str, Any] = {"storage": storage, "http_client": http_client}
        factories: dict[str, ProviderFactory] = {
            "lucy14b": lambda: Lucy14bProvider(settings, **kwargs),
            "splice": lambda: SpliceProvider(settings, **kwargs),
            "miragelsd": lambda: MirageLSDProvider(settings, **kwargs),
        }
        registry = cls(factories)
        registry.default_provider = registry.pick_default(settings.PROVIDER_NAME or None)
        logger.info(
            "Provider configuration: PROVIDER_NAME=%s configured=%s default=%s",
            settings.PROVIDER_NAME or "-", registry.available(), registry.default_provider,
        )
        return registry

    @property
    def provider_ids(self) -> list[str]:
        return list(self._factories)

    def get(self, provider_id: str) -> ProviderAdapter:
        if provider_id not in self._factories:
            raise UnknownProviderError(
                f"Unknown provider: {provider_id}. "
                f"Available providers: {', '.join(self._factories)}"
            )
        if provider_id not in self._instances:
            self._instances[provider_id] = self._factories[provider_id]()
        return self._instances[provider_id]

    def is_configured(self, provider_id: str) -> bool:
        """Credential check only; unknown ids are simply not configured."""
        if provider_id not in self._factories:
            return False
        return self.get(provider_id).is_configured

    def available(self) -> list[str]:
        return [pid for pid in self._factories if self.is_configured(pid)]

    def pick_default(self, preferred: str | None) -> str | None:
        """``preferred`` when it is configured, else the first configured provider."""
        if preferred and self.is_configured(preferred):
            return preferred
        if preferred:
            logger.warning("PROVIDER_NAME=%s is not configured; falling back", preferred)
        order = [p for p in PROVIDER_PRIORITY if p in self._factories]
        order += [p for p in self._factories if p not in order]
        for provider_id in order:
            if self.is_configured(provider_id):
                return provider_id
        logger.warning("No AI provider configured")
        return None

    def provider_for_model(self, model_code: str) -> str | None:
        return self._model_providers.get(model_code)

    def resolve(self, requested_provider: str | None, model_code: str) -> ProviderAdapter:
        """Pick the adapter for a job.

        Explicit provider first, then the model-code table, then the default
        (only for catalogued model codes). Raises ``UnknownProviderError``
        for ids or codes nothing is registered for.
        """
        if requested_provider:
            return self.get(requested_provider)

        mapped = self.provider_for_model(model_code)
        if mapped:
            return self.get(mapped)

        if model_code not in self.catalog:
            raise UnknownProviderError(f"Unknown model code: {model_code}")
        if self.default_provider is None:
            raise ConfigurationError(
                "No AI provider configured. Set PROVIDER_NAME and the required API keys."
            )
        return self.get(self.default_provider)
