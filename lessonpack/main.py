"""
Main FastAPI application for the lesson-pack generator.
Handles CORS, request logging middleware, lifespan events, and router registration.
"""
import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lessonpack.config import settings
from lessonpack.routers import health, pipeline
from lessonpack.services.credentials import (
    PublishConfigurationError,
    describe_publish_config,
    load_publish_config,
)
from lessonpack.services.llm_client import ChatCompletionClient

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup helpers
# ---------------------------------------------------------------------------

async def _check_generation_endpoint() -> bool:
    """Check the chat-completions endpoint.  Never raises; warnings are logged instead."""
    reachable = await ChatCompletionClient().check_health()
    if reachable:
        logger.info("✓ Generation endpoint reachable at %s", settings.LLM_BASE_URL)
    else:
        logger.warning(
            "⚠ Generation endpoint %s did not answer; generation will fail",
            settings.LLM_BASE_URL,
        )
    return reachable


def _log_publish_config() -> None:
    try:
        summary = describe_publish_config(load_publish_config())
    except PublishConfigurationError as exc:
        logger.error("✗ Publishing configuration invalid: %s", exc)
        return
    if summary["mode"] == "none":
        logger.warning("⚠ Google publishing disabled; packs will be generated but not published")
    else:
        logger.info("✓ Google publishing via %s (%s)", summary["mode"], summary["source"])


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log the state of every external dependency; nothing here is fatal."""
    base = f"http://{settings.HOST}:{settings.PORT}"
    logger.info("=" * 60)
    logger.info("  Lesson-pack generator starting (format %s)", settings.DEBATE_FORMAT)
    logger.info("=" * 60)

    await _check_generation_endpoint()
    _log_publish_config()

    input_dir = os.path.abspath(settings.NOTES_INPUT_DIR)
    if os.path.isdir(input_dir):
        logger.info("✓ Input directory: %s", input_dir)
    else:
        logger.warning("⚠ Input directory %s does not exist yet", input_dir)

    logger.info("  Listening on %s  (docs: %s/docs)", base, base)
    logger.info("=" * 60)

    yield

    logger.info("Lesson-pack generator stopped")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Lesson Pack API",
    description=(
        "Turns debate notes (PDF, DOCX, Markdown, transcripts) into structured "
        "lesson packs and publishes them to Google Docs.\n\n"
        "Key endpoints:\n"
        "- `POST /api/pipeline/process-all` — start a batch over the input directory\n"
        "- `GET  /api/pipeline/status` — batch progress and per-file outcomes\n"
        "- `GET  /api/health` — generation endpoint and publishing status\n"
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request logging
# ---------------------------------------------------------------------------

# Polled by dashboards every few seconds
_QUIET_PATHS = frozenset({"/", "/api/health/", "/api/pipeline/status"})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status and latency; set ``X-Process-Time`` (ms)."""
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    if request.url.path not in _QUIET_PATHS:
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

def _error_body(request: Request, detail: str, exc: Exception) -> dict:
    return {
        "detail": detail,
        "error": str(exc),
        "path": str(request.url.path),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.exception_handler(PublishConfigurationError)
async def publish_config_handler(request: Request, exc: PublishConfigurationError):
    logger.error("Publishing misconfigured (%s %s): %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=_error_body(request, "Publishing is misconfigured", exc),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Structured JSON 500 for anything not handled by a router."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(request, "Internal server error", exc),
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,   prefix="/api/health",   tags=["Health"])
app.include_router(pipeline.router, prefix="/api/pipeline", tags=["Pipeline"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root — returns basic service info."""
    return {
        "name": "Lesson Pack API",
        "version": "0.1.0",
        "description": "Debate lesson-pack generator",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "process_all": "/api/pipeline/process-all",
            "status": "/api/pipeline/status",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lessonpack.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
