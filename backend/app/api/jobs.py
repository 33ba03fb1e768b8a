"""Job API — create generation jobs and read their status."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request

from app.api.deps import get_orchestrator, log_route, request_id
from app.schemas.job import JobCreate, JobCreated, JobStatusRead
from app.services.errors import ValidationError
from app.services.job_orchestrator import JobOrchestrator

router = APIRouter()


@router.post("", response_model=JobCreated, status_code=201)
async def create_job(
    data: JobCreate,
    request: Request,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Create a job and hand it to its provider.

    Returns as soon as the provider accepted (or rejected) the submission;
    the outcome is read through ``GET /api/jobs/{id}``.
    """
    rid = request_id(request)
    model_code = data.resolved_model_code
    if not model_code:
        raise ValidationError("modelCode is required")

    job_id = await orchestrator.create_job(model_code, data.input, data.provider)
    log_route(rid, "POST", "/api/jobs", 201, f"Created job {job_id} (model: {model_code})")
    return JobCreated(id=job_id, model_code=model_code)


@router.get("/{job_id}", response_model=JobStatusRead)
async def get_job(
    job_id: str,
    request: Request,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Current job status; polls the provider once if the job is still running."""
    try:
        uuid.UUID(job_id)
    except ValueError:
        raise ValidationError("Invalid job ID format", details="Job ID must be a valid UUID")

    view = await orchestrator.get_job_status(job_id)
    log_route(request_id(request), "GET", f"/api/jobs/{job_id}", 200, f"status={view.status}")
    return view.to_dict()
