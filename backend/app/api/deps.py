"""Shared FastAPI dependencies — service singletons and request logging.

Singletons are cached per process; tests swap them out through
``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
import uuid
from functools import lru_cache

from fastapi import Depends, Request

from app.config import Settings, get_settings
from app.database import async_session_factory
from app.services.job_orchestrator import JobOrchestrator
from app.services.job_store import SqlJobStore
from app.services.provider_registry import ProviderRegistry
from app.services.storage import MediaStorage
from app.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger("app.api")


@lru_cache
def get_storage() -> MediaStorage:
    return MediaStorage.from_settings(get_settings())


@lru_cache
def get_job_store() -> SqlJobStore:
    return SqlJobStore(async_session_factory)


@lru_cache
def get_registry() -> ProviderRegistry:
    """Built once per process; the default provider is fixed at this point."""
    return ProviderRegistry.from_settings(get_settings(), storage=get_storage())


def get_orchestrator(
    store: SqlJobStore = Depends(get_job_store),
    registry: ProviderRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
) -> JobOrchestrator:
    return JobOrchestrator.from_settings(settings, store, registry)


def get_webhook_reconciler(
    store: SqlJobStore = Depends(get_job_store),
    registry: ProviderRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
) -> WebhookReconciler:
    return WebhookReconciler(
        store,
        registry,
        secret=settings.WEBHOOK_SECRET,
        max_error_length=settings.MAX_ERROR_MESSAGE_LENGTH,
    )


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


def request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None)
    if rid is None:
        rid = request.state.request_id = new_request_id()
    return rid


def log_route(rid: str, method: str, route: str, status: int, message: str) -> None:
    """One line per handled request: ``[rid] METHOD route status - message``."""
    level = logging.ERROR if status >= 500 else logging.WARNING if status >= 400 else logging.INFO
    logger.log(level, "[%s] %s %s %d - %s", rid, method, route, status, message)
