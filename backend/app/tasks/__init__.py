"""Celery application configuration.

The worker only exists for the optional reconcile sweep; job progress is
otherwise driven entirely by status requests and webhooks.
"""

import asyncio
import threading

from celery import Celery
from celery.schedules import crontab

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "frameshift",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "app.tasks.reconcile_task",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,               # ACK after task completes, not on receive
    task_reject_on_worker_lost=True,    # Re-queue task if worker crashes/restarts
    worker_prefetch_multiplier=1,       # Fetch one task at a time per worker
)

# Celery Beat schedule for the reconcile sweep, only when enabled
celery_app.conf.beat_schedule = {}
if settings.ENABLE_RECONCILE_SWEEP:
    celery_app.conf.beat_schedule["reconcile-stale-jobs"] = {
        "task": "app.tasks.reconcile_task.reconcile_stale_jobs",
        "schedule": crontab(minute=f"*/{max(1, settings.RECONCILE_SWEEP_MINUTES)}"),
    }

# Thread-local storage for event loop reuse within Celery workers
_thread_local = threading.local()


def run_async(coro):
    """Run async code in a sync Celery task.

    Reuses a thread-local event loop so pooled database connections stay
    bound to the loop that opened them.
    """
    loop = getattr(_thread_local, "loop", None)
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        _thread_local.loop = loop
    return loop.run_until_complete(coro)
