from __future__ import annotations
"""FrameShift — FastAPI application entry point.

Mounts the API routes, configures CORS and the unified error format, and
prepares storage and the provider registry on startup.
"""

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.deps import get_registry, new_request_id
from app.api.router import api_router
from app.config import get_settings
from app.database import close_db, init_db, ping_db
from app.services.errors import JobServiceError, truncate_message

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: prepare storage and providers, close DB on shutdown."""
    logger.info("%s starting up...", settings.APP_NAME)
    os.makedirs(settings.MEDIA_VOLUME, exist_ok=True)

    if settings.DATABASE_URL.startswith("sqlite"):
        await init_db()
    else:
        logger.info("Database: %s@%s/%s (schema managed by alembic)",
                    settings.DB_USER, settings.DB_HOST, settings.DB_NAME)

    registry = get_registry()
    if registry.default_provider is None:
        logger.warning("No AI provider configured; jobs will be rejected until one is")

    yield

    await close_db()
    logger.info("%s shut down", settings.APP_NAME)


app = FastAPI(
    title="FrameShift API",
    description="Video generation jobs over pluggable AI providers",
    version="0.1.0",
    lifespan=lifespan,
    redirect_slashes=False,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGIN_LIST,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request ids and unified error responses
# ---------------------------------------------------------------------------

def _error_response(status_code: int, error: str, details: str | None = None) -> JSONResponse:
    limit = settings.MAX_ERROR_MESSAGE_LENGTH
    body: dict[str, str] = {"status": "failed", "error": truncate_message(error, limit)}
    if details:
        body["details"] = truncate_message(details, limit)
    return JSONResponse(status_code=status_code, content=body)


def _rid(request: Request) -> str:
    return getattr(request.state, "request_id", "-")


@app.middleware("http")
async def assign_request_id(request: Request, call_next):
    request.state.request_id = new_request_id()
    t0 = time.time()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request.state.request_id
    logger.debug(
        "[%s] %s %s %d (%.0fms)",
        request.state.request_id, request.method, request.url.path,
        response.status_code, (time.time() - t0) * 1000,
    )
    return response


@app.exception_handler(JobServiceError)
async def job_service_error_handler(request: Request, exc: JobServiceError):
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level, "[%s] %s %s %d - %s%s",
        _rid(request), request.method, request.url.path, exc.status_code,
        exc.message, f" ({exc.details})" if exc.details else "",
    )
    return _error_response(exc.status_code, exc.message, exc.details)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    details = f"{where}: {first.get('msg')}" if where else first.get("msg")
    logger.warning("[%s] %s %s 400 - invalid request (%s)",
                   _rid(request), request.method, request.url.path, details)
    return _error_response(400, "Invalid request", details)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("[%s] %s %s 500 - unexpected error", _rid(request), request.method, request.url.path)
    return _error_response(500, "Unexpected server error")


# Mount API routes
app.include_router(api_router)


@app.get("/")
async def root():
    return {"service": settings.APP_NAME, "status": "running"}


@app.get("/health")
async def health():
    """Liveness, database reachability and the configured providers."""
    registry = get_registry()
    db_ok = await ping_db()
    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "ok" if db_ok else "error",
        "providers": registry.available(),
        "default_provider": registry.default_provider,
    }
