"""System status endpoint — checks health of the services jobs depend on."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import redis
from fastapi import APIRouter, Depends

from app.api.deps import get_registry
from app.config import get_settings
from app.database import ping_db
from app.services.provider_registry import ProviderRegistry
from app.tasks import celery_app

router = APIRouter()
settings = get_settings()


def _check_redis() -> dict[str, Any]:
    """Check Redis connectivity and basic info."""
    t0 = time.time()
    try:
        r = redis.Redis.from_url(settings.REDIS_URL, socket_timeout=3)
        info = r.info("server")
        ping = r.ping()
        latency_ms = round((time.time() - t0) * 1000, 1)
        return {
            "status": "ok" if ping else "error",
            "latency_ms": latency_ms,
            "version": info.get("redis_version", "unknown"),
        }
    except redis.RedisError as e:
        return {"status": "error", "error": str(e)}


def _check_celery_workers() -> dict[str, Any]:
    """Check Celery workers via ping broadcast."""
    try:
        inspector = celery_app.control.inspect(timeout=2)
        ping_result = inspector.ping()
    except Exception as e:
        return {"status": "error", "error": str(e), "workers": [], "count": 0}

    if not ping_result:
        return {
            "status": "offline",
            "workers": [],
            "count": 0,
            "message": "No running Celery worker detected",
        }
    workers = [
        {"name": name, "status": "ok" if pong.get("ok") == "pong" else "error"}
        for name, pong in ping_result.items()
    ]
    return {"status": "ok", "workers": workers, "count": len(workers)}


async def _check_database() -> dict[str, Any]:
    t0 = time.time()
    ok = await ping_db()
    return {
        "status": "ok" if ok else "error",
        "latency_ms": round((time.time() - t0) * 1000, 1),
    }


@router.get("/status")
async def system_status(registry: ProviderRegistry = Depends(get_registry)):
    """Full system status — database, providers, and the reconcile sweep if enabled."""
    services: dict[str, Any] = {"database": await _check_database()}

    if settings.ENABLE_RECONCILE_SWEEP:
        services["redis"], services["celery"] = await asyncio.gather(
            asyncio.to_thread(_check_redis),
            asyncio.to_thread(_check_celery_workers),
        )

    all_ok = all(s.get("status") == "ok" for s in services.values())
    return {
        "overall": "ok" if all_ok and registry.default_provider else "degraded",
        "services": services,
        "providers": {
            pid: {"configured": registry.is_configured(pid)} for pid in registry.provider_ids
        },
        "default_provider": registry.default_provider,
        "reconcile_sweep": {
            "enabled": settings.ENABLE_RECONCILE_SWEEP,
            "interval_minutes": settings.RECONCILE_SWEEP_MINUTES,
        },
    }
