"""Pytest configuration helpers.

Puts ``backend/`` on ``sys.path`` so tests can import the ``app`` package
however pytest is invoked, pins environment the app reads at import time,
and provides builders for settings, a SQLite-backed job store and
scriptable provider doubles.
"""
import os
import sys
import tempfile
from contextlib import asynccontextmanager

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
BACKEND = os.path.join(ROOT, "backend")
if BACKEND not in sys.path:
    sys.path.insert(0, BACKEND)

os.environ["DB_URL"] = "sqlite+aiosqlite://"
os.environ["MEDIA_VOLUME"] = tempfile.mkdtemp(prefix="frameshift-media-")
for _name in ("FAL_API_KEY", "FAL_KEY", "DECART_API_KEY", "PROVIDER_NAME", "WEBHOOK_SECRET"):
    os.environ[_name] = ""

import pytest  # noqa: E402
from sqlalchemy import func, select  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from app.config import Settings  # noqa: E402
from app.database import Base  # noqa: E402
from app.models.job import Job  # noqa: E402
from app.services.job_store import SqlJobStore  # noqa: E402
from app.services.providers.base import (  # noqa: E402
    PollResult,
    ProviderAdapter,
    SubmitResult,
    VideoOutput,
)
from app.services.errors import ValidationError  # noqa: E402
from app.services.storage import MediaStorage  # noqa: E402


def make_settings(**overrides) -> Settings:
    values = {
        "FAL_API_KEY": "fal-test-key",
        "DECART_API_KEY": "decart-test-key",
        "PROVIDER_RETRY_DELAY": 0,
        "WEBHOOK_SECRET": "whsec-test",
        "STORAGE_SIGNING_KEY": "signing-test",
        "PUBLIC_BASE_URL": "http://testserver",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def storage(tmp_path):
    return MediaStorage(
        tmp_path / "media",
        bucket="uploads",
        signing_key="signing-test",
        public_base_url="http://testserver",
    )


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"


@asynccontextmanager
async def open_store(db_url: str):
    """Fresh schema on a file-backed SQLite database; yields the store."""
    engine = create_async_engine(db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield SqlJobStore(async_sessionmaker(engine, expire_on_commit=False))
    finally:
        await engine.dispose()


async def count_jobs(store: SqlJobStore) -> int:
    async with store._session_factory() as session:
        return (await session.execute(select(func.count()).select_from(Job))).scalar_one()


def video(url: str = "https://cdn.example/out.mp4", provider: str = "lucy14b") -> VideoOutput:
    return VideoOutput(url=url, provider=provider, model="test-model", width=1280, height=720, prompt="p")


class FakeAdapter(ProviderAdapter):
    """Scriptable adapter: ``submit_result`` / ``poll_results`` drive the outcome.

    Entries may be results, exceptions (raised) or callables (awaited and
    their return used), which lets a test interleave other writes.
    """

    def __init__(self, name="lucy14b", *, submit_result=None, poll_results=(), configured=True):
        super().__init__(Settings())
        self.name = name
        self.submit_result = submit_result or SubmitResult.deferred("req_1")
        self.poll_results = list(poll_results)
        self.configured = configured
        self.submit_calls = 0
        self.poll_calls: list[str] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    def validate(self, input):
        if input.get("invalid"):
            raise ValidationError("Prompt too long (max 500 chars)")

    async def _submit(self, input):
        self.submit_calls += 1
        if isinstance(self.submit_result, Exception):
            raise self.submit_result
        return self.submit_result

    async def poll(self, provider_job_id, input):
        self.poll_calls.append(provider_job_id)
        step = self.poll_results.pop(0) if self.poll_results else PollResult.running()
        if callable(step):
            step = await step()
        if isinstance(step, Exception):
            raise step
        return step
