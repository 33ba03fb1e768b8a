"""Webhook signature checks and reconciliation against the job store."""
import asyncio
import hashlib
import hmac
import json

import pytest

from app.services.errors import NotFoundError, UnauthorizedError, ValidationError
from app.services.job_orchestrator import JobOrchestrator
from app.services.provider_registry import ProviderRegistry
from app.services.providers.base import PollResult, SubmitResult
from app.services.webhook_reconciler import WebhookReconciler, verify_signature
from conftest import FakeAdapter, open_store, video

SECRET = "whsec-test"
INPUT = {
    "prompt": "sunset",
    "file": {"signedUrl": "https://files.example/in.png", "mime": "image/png", "size": 10},
}


def sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def body_for(**payload) -> bytes:
    return json.dumps(payload).encode()


async def running_job(store, adapter, request_id="req_abc"):
    adapter.submit_result = SubmitResult.deferred(request_id)
    registry = ProviderRegistry({adapter.name: lambda: adapter}, default_provider=adapter.name)
    orch = JobOrchestrator(store, registry)
    job_id = await orch.create_job("Lucy14b", INPUT)
    return orch, WebhookReconciler(store, registry, secret=SECRET), job_id


def test_verify_signature():
    body = b'{"request_id":"r"}'
    assert verify_signature(body, sign(body), SECRET)
    assert verify_signature(body, "sha256=" + sign(body), SECRET)
    assert not verify_signature(body, sign(body, "other"), SECRET)
    assert not verify_signature(body, None, SECRET)
    assert not verify_signature(body, sign(body), "")


def test_completed_webhook_finishes_job(db_url):
    async def scenario():
        adapter = FakeAdapter()
        async with open_store(db_url) as store:
            orch, reconciler, job_id = await running_job(store, adapter, "req_abc")
            body = body_for(
                request_id="req_abc",
                status="COMPLETED",
                output={"video": {"url": "https://cdn.example/hook.mp4", "width": 720, "height": 1280}},
            )

            outcome = await reconciler.handle(body, sign(body))
            assert outcome.applied
            assert outcome.to_dict() == {
                "message": "Webhook processed successfully",
                "jobId": job_id,
                "status": "succeeded",
            }

            job = await store.get_by_id(job_id)
            assert job.status == "succeeded"
            assert job.output["url"] == "https://cdn.example/hook.mp4"
            assert (job.output["width"], job.output["height"]) == (720, 1280)
            assert job.output["prompt"] == "sunset"

            # A later poll never overwrites the webhook result
            adapter.poll_results = [PollResult.failed("late failure")]
            view = await orch.get_job_status(job_id)
            assert view.status == "succeeded"
            assert adapter.poll_calls == []

    asyncio.run(scenario())


def test_duplicate_webhook_is_acknowledged_without_change(db_url):
    async def scenario():
        async with open_store(db_url) as store:
            _, reconciler, job_id = await running_job(store, FakeAdapter(), "req_dup")
            done = body_for(request_id="req_dup", status="FAILED", error="NSFW content")
            await reconciler.handle(done, sign(done))

            again = body_for(
                request_id="req_dup", status="COMPLETED",
                output={"video": {"url": "https://cdn.example/late.mp4"}},
            )
            outcome = await reconciler.handle(again, sign(again))
            assert not outcome.applied
            assert outcome.to_dict()["message"] == "Job already completed"

            job = await store.get_by_id(job_id)
            assert job.status == "failed"
            assert job.error == "NSFW content"
            assert job.output is None

    asyncio.run(scenario())


def test_failed_webhook_without_error_uses_default_message(db_url):
    async def scenario():
        async with open_store(db_url) as store:
            _, reconciler, job_id = await running_job(store, FakeAdapter(), "req_f")
            body = body_for(request_id="req_f", status="error")
            await reconciler.handle(body, sign(body))
            job = await store.get_by_id(job_id)
            assert job.status == "failed"
            assert job.error == "Provider processing failed"

    asyncio.run(scenario())


def test_structured_error_is_serialized(db_url):
    async def scenario():
        async with open_store(db_url) as store:
            _, reconciler, job_id = await running_job(store, FakeAdapter(), "req_s")
            body = body_for(request_id="req_s", status="FAILED", error={"code": "quota"})
            await reconciler.handle(body, sign(body))
            job = await store.get_by_id(job_id)
            assert job.error == '{"code": "quota"}'

    asyncio.run(scenario())


def test_running_webhook_changes_nothing(db_url):
    async def scenario():
        async with open_store(db_url) as store:
            _, reconciler, job_id = await running_job(store, FakeAdapter(), "req_r")
            before = await store.get_by_id(job_id)
            body = body_for(request_id="req_r", status="IN_PROGRESS")
            outcome = await reconciler.handle(body, sign(body))
            assert outcome.status == "running"
            assert await store.get_by_id(job_id) == before

    asyncio.run(scenario())


def test_rejects_bad_signature_before_touching_jobs(db_url):
    async def scenario():
        async with open_store(db_url) as store:
            _, reconciler, job_id = await running_job(store, FakeAdapter(), "req_sig")
            body = body_for(request_id="req_sig", status="COMPLETED")
            with pytest.raises(UnauthorizedError):
                await reconciler.handle(body, sign(body, "wrong-secret"))
            with pytest.raises(UnauthorizedError):
                await reconciler.handle(body, None)
            assert (await store.get_by_id(job_id)).status == "running"

    asyncio.run(scenario())


def test_missing_secret_rejects_every_delivery(db_url):
    async def scenario():
        async with open_store(db_url) as store:
            reconciler = WebhookReconciler(store, ProviderRegistry({}), secret="")
            body = body_for(request_id="req", status="COMPLETED")
            with pytest.raises(UnauthorizedError) as exc:
                await reconciler.handle(body, sign(body))
            assert exc.value.message == "Webhook not configured"

    asyncio.run(scenario())


def test_unknown_request_id_is_not_found(db_url):
    async def scenario():
        async with open_store(db_url) as store:
            reconciler = WebhookReconciler(store, ProviderRegistry({}), secret=SECRET)
            body = body_for(request_id="req_nobody", status="COMPLETED")
            with pytest.raises(NotFoundError):
                await reconciler.handle(body, sign(body))

    asyncio.run(scenario())


def test_unknown_status_is_rejected(db_url):
    async def scenario():
        async with open_store(db_url) as store:
            _, reconciler, job_id = await running_job(store, FakeAdapter(), "req_u")
            body = body_for(request_id="req_u", status="EXPLODED")
            with pytest.raises(ValidationError) as exc:
                await reconciler.handle(body, sign(body))
            assert exc.value.message == "Invalid status"
            assert (await store.get_by_id(job_id)).status == "running"

    asyncio.run(scenario())


@pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b'{"status": "COMPLETED"}', b'{"request_id": "x"}'])
def test_malformed_payloads_are_rejected(db_url, body):
    async def scenario():
        async with open_store(db_url) as store:
            reconciler = WebhookReconciler(store, ProviderRegistry({}), secret=SECRET)
            with pytest.raises(ValidationError):
                await reconciler.handle(body, sign(body))

    asyncio.run(scenario())


def test_completed_without_video_is_rejected(db_url):
    async def scenario():
        async with open_store(db_url) as store:
            _, reconciler, job_id = await running_job(store, FakeAdapter(), "req_nv")
            body = body_for(request_id="req_nv", status="COMPLETED", output={})
            with pytest.raises(ValidationError):
                await reconciler.handle(body, sign(body))
            assert (await store.get_by_id(job_id)).status == "running"

    asyncio.run(scenario())


def test_completed_webhook_with_unreadable_dimensions_uses_defaults(db_url):
    async def scenario():
        async with open_store(db_url) as store:
            _, reconciler, job_id = await running_job(store, FakeAdapter(), "req_wide")
            body = body_for(
                request_id="req_wide",
                status="COMPLETED",
                output={"video": {"url": "https://cdn.example/w.mp4", "width": "wide", "height": None}},
            )
            outcome = await reconciler.handle(body, sign(body))
            assert outcome.applied

            job = await store.get_by_id(job_id)
            assert job.status == "succeeded"
            assert (job.output["width"], job.output["height"]) == (1280, 720)

    asyncio.run(scenario())


def test_unreadable_webhook_output_is_invalid_payload(db_url):
    class BrokenOutputAdapter(FakeAdapter):
        def output_from_webhook(self, raw, input):
            raise ValueError("invalid literal for int() with base 10: 'wide'")

    async def scenario():
        async with open_store(db_url) as store:
            _, reconciler, job_id = await running_job(store, BrokenOutputAdapter(), "req_bad")
            body = body_for(
                request_id="req_bad",
                status="COMPLETED",
                output={"video": {"url": "https://cdn.example/b.mp4", "width": "wide"}},
            )
            with pytest.raises(ValidationError) as exc:
                await reconciler.handle(body, sign(body))
            assert exc.value.message == "Invalid payload"
            assert exc.value.status_code == 400
            assert (await store.get_by_id(job_id)).status == "running"

    asyncio.run(scenario())


def test_webhook_and_poll_race_has_single_outcome(db_url):
    async def scenario():
        adapter = FakeAdapter()
        async with open_store(db_url) as store:
            orch, reconciler, job_id = await running_job(store, adapter, "req_race")
            adapter.poll_results = [PollResult.succeeded(video("https://cdn.example/poll.mp4"))]
            body = body_for(
                request_id="req_race", status="COMPLETED",
                output={"video": {"url": "https://cdn.example/hook.mp4"}},
            )

            view, outcome = await asyncio.gather(
                orch.get_job_status(job_id), reconciler.handle(body, sign(body)),
            )
            job = await store.get_by_id(job_id)
            assert job.status == "succeeded"
            assert view.output == job.output
            assert outcome.status == "succeeded"

    asyncio.run(scenario())
