"""HTTP surface: routing, status codes and the unified error body."""
import asyncio
import hashlib
import hmac
import json

import httpx
import pytest

from app.api.deps import get_job_store, get_registry, get_storage
from app.config import get_settings
from app.main import app
from app.services.provider_registry import ProviderRegistry
from app.services.providers.base import PollResult, SubmitResult
from conftest import FakeAdapter, count_jobs, make_settings, open_store, video

INPUT = {"file": {"signedUrl": "https://files.example/in.png", "mime": "image/png", "size": 100}}


@pytest.fixture
def api(db_url, storage):
    """Runs ``scenario(client, adapter, store)`` against the app with test services."""

    def run(scenario, adapter=None, **overrides):
        adapter = adapter or FakeAdapter()
        registry = ProviderRegistry({"lucy14b": lambda: adapter}, default_provider="lucy14b")
        settings = make_settings(**overrides)

        async def main():
            async with open_store(db_url) as store:
                app.dependency_overrides[get_job_store] = lambda: store
                app.dependency_overrides[get_registry] = lambda: registry
                app.dependency_overrides[get_storage] = lambda: storage
                app.dependency_overrides[get_settings] = lambda: settings
                transport = httpx.ASGITransport(app=app)
                async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
                    await scenario(client, adapter, store)

        try:
            asyncio.run(main())
        finally:
            app.dependency_overrides.clear()

    return run


def test_create_and_poll_job(api):
    async def scenario(client, adapter, store):
        resp = await client.post("/api/jobs", json={"modelCode": "Lucy14b", "input": INPUT})
        assert resp.status_code == 201
        body = resp.json()
        assert body["modelCode"] == "Lucy14b"
        assert "X-Request-ID" in resp.headers

        status = await client.get(f"/api/jobs/{body['id']}")
        assert status.status_code == 200
        assert status.json() == {
            "id": body["id"],
            "status": "running",
            "output": None,
            "error": None,
            "modelCode": "Lucy14b",
        }

        done = (await client.get(f"/api/jobs/{body['id']}")).json()
        assert done["status"] == "succeeded"
        assert done["output"]["url"] == "https://cdn.example/out.mp4"

    api(scenario, FakeAdapter(poll_results=[PollResult.running(), PollResult.succeeded(video())]))


def test_model_code_inside_input_is_accepted(api):
    async def scenario(client, adapter, store):
        resp = await client.post("/api/jobs", json={"input": {**INPUT, "modelCode": "Lucy14b"}})
        assert resp.status_code == 201
        assert resp.json()["modelCode"] == "Lucy14b"

    api(scenario, FakeAdapter(submit_result=SubmitResult.immediate(video())))


def test_unknown_model_code_is_400(api):
    async def scenario(client, adapter, store):
        resp = await client.post("/api/jobs", json={"modelCode": "Nope", "input": INPUT})
        assert resp.status_code == 400
        assert resp.json() == {"status": "failed", "error": "Unknown model code: Nope"}

    api(scenario)


@pytest.mark.parametrize("payload", [{"input": INPUT}, {"modelCode": "Lucy14b", "input": "text"}])
def test_malformed_create_requests_are_400(api, payload):
    async def scenario(client, adapter, store):
        resp = await client.post("/api/jobs", json=payload)
        assert resp.status_code == 400
        assert resp.json()["status"] == "failed"
        assert adapter.submit_calls == 0

    api(scenario)


def test_oversized_input_is_400_without_a_job(api):
    async def scenario(client, adapter, store):
        resp = await client.post(
            "/api/jobs", json={"modelCode": "Lucy14b", "input": {**INPUT, "prompt": "x" * 400}},
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "Input payload too large"
        assert body["status"] == "failed"
        assert adapter.submit_calls == 0
        assert await count_jobs(store) == 0

    api(scenario, MAX_INPUT_JSON_BYTES=256)


def test_provider_validation_error_is_400(api):
    async def scenario(client, adapter, store):
        resp = await client.post("/api/jobs", json={"modelCode": "Lucy14b", "input": {**INPUT, "invalid": True}})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Prompt too long (max 500 chars)"

    api(scenario)


def test_job_lookup_errors(api):
    async def scenario(client, adapter, store):
        bad = await client.get("/api/jobs/not-a-uuid")
        assert bad.status_code == 400
        assert bad.json()["error"] == "Invalid job ID format"

        missing = await client.get("/api/jobs/6f1c2d3e-4b5a-4c6d-8e7f-001122334455")
        assert missing.status_code == 404
        assert missing.json()["error"] == "Job not found"

    api(scenario)


def test_fal_webhook(api):
    async def scenario(client, adapter, store):
        created = await client.post("/api/jobs", json={"modelCode": "Lucy14b", "input": INPUT})
        job_id = created.json()["id"]
        body = json.dumps({
            "request_id": "req_hook",
            "status": "COMPLETED",
            "output": {"video": {"url": "https://cdn.example/hook.mp4"}},
        }).encode()
        sig = hmac.new(b"whsec-test", body, hashlib.sha256).hexdigest()

        rejected = await client.post("/api/webhooks/fal", content=body, headers={"x-signature-sha256": "0" * 64})
        assert rejected.status_code == 401

        resp = await client.post("/api/webhooks/fal", content=body, headers={"x-signature-sha256": sig})
        assert resp.status_code == 200
        assert resp.json() == {
            "message": "Webhook processed successfully", "jobId": job_id, "status": "succeeded",
        }

        status = (await client.get(f"/api/jobs/{job_id}")).json()
        assert status["output"]["url"] == "https://cdn.example/hook.mp4"

    api(scenario, FakeAdapter(submit_result=SubmitResult.deferred("req_hook")))


def test_upload_and_signed_download(api):
    async def scenario(client, adapter, store):
        resp = await client.post(
            "/api/upload", files={"file": ("frame.png", b"\x89PNG-data", "image/png")},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "succeeded"
        assert body["path"].endswith(".png")
        assert body["mime"] == "image/png"
        assert body["size"] == 9

        download = await client.get(body["signedUrl"])
        assert download.status_code == 200
        assert download.content == b"\x89PNG-data"

        forged = await client.get(f"/api/media/{body['path']}", params={"expires": 9999999999, "token": "x"})
        assert forged.status_code == 403
        assert forged.json()["status"] == "failed"

    api(scenario)


@pytest.mark.parametrize("upload, error", [
    (("notes.txt", b"hello", "text/plain"), "Invalid file type"),
    (("empty.png", b"", "image/png"), "No file provided"),
])
def test_upload_rejections(api, upload, error):
    async def scenario(client, adapter, store):
        resp = await client.post("/api/upload", files={"file": upload})
        assert resp.status_code == 400
        assert resp.json()["error"] == error

    api(scenario)


def test_models_listing(api):
    async def scenario(client, adapter, store):
        resp = await client.get("/api/models", params={"enabled_only": True})
        assert resp.status_code == 200
        body = resp.json()
        assert body["default_provider"] == "lucy14b"
        by_code = {m["code"]: m for m in body["models"]}
        assert by_code["Lucy14b"]["configured"] is True
        assert by_code["Splice"]["configured"] is False
        assert body["total"] == 3

        one = await client.get("/api/models/lucy-14b")
        assert one.json()["provider"] == "lucy14b"
        assert (await client.get("/api/models/unknown")).status_code == 404

    api(scenario)
