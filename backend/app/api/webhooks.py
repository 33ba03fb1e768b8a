"""Provider webhook endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from app.api.deps import get_webhook_reconciler, log_route, request_id
from app.schemas.job import WebhookAck
from app.services.webhook_reconciler import SIGNATURE_HEADERS, WebhookReconciler

router = APIRouter()


@router.post("/fal", response_model=WebhookAck)
async def fal_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    """FAL completion callback. The raw body is signed, so it is read before parsing."""
    body = await request.body()
    signature = next(
        (request.headers[h] for h in SIGNATURE_HEADERS if request.headers.get(h)),
        None,
    )
    outcome = await reconciler.handle(body, signature)
    log_route(
        request_id(request), "POST", "/api/webhooks/fal", 200,
        f"job {outcome.job_id} {outcome.status}" + ("" if outcome.applied else " (already final)"),
    )
    return outcome.to_dict()
