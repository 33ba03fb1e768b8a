from __future__ import annotations
"""Celery Beat task that reconciles idle running jobs.

Disabled unless ENABLE_RECONCILE_SWEEP is set. Each stale job goes through
the same status path a client poll would use (TTL check, then one provider
poll), so a job nobody is watching still reaches a terminal state.
"""

import logging

from celery import shared_task

from app.config import get_settings
from app.database import async_session_factory
from app.services.job_orchestrator import JobOrchestrator
from app.services.job_store import SqlJobStore
from app.services.provider_registry import ProviderRegistry
from app.services.storage import MediaStorage
from app.tasks import run_async

logger = logging.getLogger(__name__)
settings = get_settings()


def build_orchestrator() -> JobOrchestrator:
    registry = ProviderRegistry.from_settings(
        settings, storage=MediaStorage.from_settings(settings),
    )
    return JobOrchestrator.from_settings(settings, SqlJobStore(async_session_factory), registry)


async def _sweep(orchestrator: JobOrchestrator) -> int:
    return await orchestrator.sweep_running(
        idle_seconds=settings.RECONCILE_SWEEP_MINUTES * 60,
        limit=settings.RECONCILE_SWEEP_BATCH,
    )


@shared_task
def reconcile_stale_jobs() -> int:
    """Poll running jobs untouched for a full sweep interval. Returns jobs finished."""
    finished = run_async(_sweep(build_orchestrator()))
    logger.info("Reconcile sweep done: %d job(s) reached a final state", finished)
    return finished
