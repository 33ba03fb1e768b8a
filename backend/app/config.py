from __future__ import annotations
"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """FrameShift application settings.

    Loaded from environment variables or .env file.
    """

    # --- Application ---
    APP_NAME: str = "FrameShift"
    DEBUG: bool = False
    CORS_ORIGINS: str = (
        "http://localhost:3000,http://127.0.0.1:3000,"
        "http://localhost:9000,http://127.0.0.1:9000"
    )
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # --- Database (MySQL 8.0+) ---
    DB_HOST: str = "127.0.0.1"
    DB_PORT: int = 3306
    DB_USER: str = "root"
    DB_PASSWORD: str = ""
    DB_NAME: str = "frameshift"
    DB_URL: str = ""  # full override, e.g. sqlite+aiosqlite:///frameshift.db

    @property
    def DATABASE_URL(self) -> str:
        """Async connection string; asyncmy driver unless DB_URL overrides it."""
        if self.DB_URL:
            return self.DB_URL
        encoded_password = quote_plus(self.DB_PASSWORD)
        return (
            f"mysql+asyncmy://{self.DB_USER}:{encoded_password}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            "?charset=utf8mb4"
        )

    # --- Redis (Celery broker for the reconcile sweep) ---
    REDIS_URL: str = "redis://localhost:6379/0"

    # --- Media storage ---
    MEDIA_VOLUME: str = "media_volume"
    UPLOAD_BUCKET: str = "uploads"
    STORAGE_SIGNING_KEY: str = "change-me"
    SIGNED_URL_EXPIRES_IN: int = 3600

    # --- Request limits ---
    MAX_UPLOAD_BYTES: int = 100 * 1024 * 1024
    MAX_INPUT_JSON_BYTES: int = 1024 * 1024
    MAX_ERROR_MESSAGE_LENGTH: int = 500

    # --- Job lifecycle ---
    JOB_TTL_SECONDS: int = 15 * 60

    # --- Provider strategy ---
    PROVIDER_NAME: str = ""  # default provider id; empty = first configured
    PROVIDER_SUBMIT_TIMEOUT: float = 30.0
    PROVIDER_POLL_TIMEOUT: float = 8.0
    PROVIDER_SUBMIT_ATTEMPTS: int = 2
    PROVIDER_RETRY_DELAY: float = 2.0

    # --- FAL (Lucy image-to-video) ---
    FAL_API_KEY: str = ""
    FAL_KEY: str = ""  # legacy name, used when FAL_API_KEY is empty
    FAL_BASE_URL: str = "https://fal.run"
    LUCY14B_ENDPOINT: str = "fal-ai/wan/v2.2-a14b/image-to-video"

    # --- Decart (Splice video-to-video) ---
    DECART_API_KEY: str = ""
    SPLICE_ENDPOINT: str = "https://cdn.api.decart.ai/vid2vid/process"
    SPLICE_PROCESS_TIMEOUT: float = 300.0
    SPLICE_SYNC_MODE: bool = False

    # --- Mirage (MirageLSD video-to-video) ---
    MIRAGE_ENDPOINT: str = "https://bouncer.staging.mirage.decart.ai/process_video"
    MIRAGE_PROCESS_TIMEOUT: float = 600.0
    MIRAGE_SYNC_MODE: bool = False

    # --- Webhooks ---
    WEBHOOK_SECRET: str = ""

    # --- Background reconcile sweep (off by default) ---
    ENABLE_RECONCILE_SWEEP: bool = False
    RECONCILE_SWEEP_MINUTES: int = 5
    RECONCILE_SWEEP_BATCH: int = 100

    # --- Convenience aliases ---
    @property
    def FAL_CREDENTIAL(self) -> str:
        return self.FAL_API_KEY or self.FAL_KEY

    @property
    def CORS_ORIGIN_LIST(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton."""
    return Settings()
