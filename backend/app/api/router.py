from __future__ import annotations
"""Master API router — mounts all sub-routers."""

from fastapi import APIRouter

from app.api.jobs import router as jobs_router
from app.api.media import router as media_router
from app.api.models import router as models_router
from app.api.system import router as system_router
from app.api.upload import router as upload_router
from app.api.webhooks import router as webhooks_router

api_router = APIRouter(prefix="/api", redirect_slashes=False)

api_router.include_router(jobs_router, prefix="/jobs", tags=["Jobs"])
api_router.include_router(webhooks_router, prefix="/webhooks", tags=["Webhooks"])
api_router.include_router(upload_router, prefix="/upload", tags=["Upload"])
api_router.include_router(media_router, prefix="/media", tags=["Media"])
api_router.include_router(models_router, prefix="/models", tags=["Models"])
api_router.include_router(system_router, prefix="/system", tags=["System"])
