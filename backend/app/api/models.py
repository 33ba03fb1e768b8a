"""Model catalog API — list selectable models and whether they can run."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_registry
from app.services.provider_registry import ModelConfig, ProviderRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


def _model_dict(model: ModelConfig, registry: ProviderRegistry) -> dict[str, Any]:
    provider = registry.provider_for_model(model.code) or registry.default_provider
    return {
        "slug": model.slug,
        "name": model.name,
        "description": model.description,
        "code": model.code,
        "enabled": model.enabled,
        "provider": provider,
        "configured": bool(provider) and registry.is_configured(provider),
    }


@router.get("")
async def list_models(
    enabled_only: bool = False,
    registry: ProviderRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """List catalog models with their provider and configuration state."""
    models = registry.catalog.list_models(enabled_only=enabled_only)
    return {
        "models": [_model_dict(m, registry) for m in models],
        "providers": registry.available(),
        "default_provider": registry.default_provider,
        "total": len(models),
    }


@router.get("/{slug}")
async def get_model(slug: str, registry: ProviderRegistry = Depends(get_registry)) -> dict[str, Any]:
    model = registry.catalog.get_by_slug(slug)
    if model is None:
        raise HTTPException(status_code=404, detail=f"Unknown model: {slug}")
    return _model_dict(model, registry)
