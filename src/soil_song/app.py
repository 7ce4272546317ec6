"""Application factory for the FastAPI service."""

from __future__ import annotations

import logging
import os
import time
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .config import PROJECT_ROOT, get_settings
from .routers.soil import router as soil_router
from .services.generation import GenerationOrchestrator
from .services.granite import GraniteClient
from .services.mock_narrative import MockNarrativeGenerator
from .services.rate_limit import RATE_LIMIT_MESSAGE, RateLimiter
from .services.token_cache import TokenCache
from .services.tts import SpeechSynthesizer
from .services.tts.synthesizer import AUDIO_URL_PREFIX
from .services.uploads import UPLOAD_URL_PREFIX, ImageStore

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("soil_song.access")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = []

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

        # Errors also go to a sibling error.log for quick triage
        error_handler = logging.FileHandler(
            log_path.with_name("error.log"), encoding="utf-8"
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        handlers.append(error_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logging.getLogger("soil_song").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Quiet down noisy third-party libraries unless debugging
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    else:
        logging.getLogger("httpx").setLevel(log_level)
        logging.getLogger("httpcore").setLevel(log_level)


def _resolve_under(base: Path, p: Path) -> Path:
    # Allow absolute paths as-is (useful for tests and external mounts).
    if p.is_absolute():
        return p.resolve()
    resolved = (base / p).resolve()
    if not resolved.is_relative_to(base):
        raise ValueError(f"Configured path {resolved} escapes project root {base}")
    return resolved


def create_app() -> FastAPI:
    # Configure logging first thing
    _configure_logging()

    settings = get_settings()

    audio_dir = _resolve_under(PROJECT_ROOT, settings.audio_storage_path)
    upload_dir = _resolve_under(PROJECT_ROOT, settings.upload_path)
    for directory in (audio_dir, upload_dir):
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
            logger.info("Created directory: %s", directory)

    ibm_http = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.inference_timeout, connect=5.0)
    )
    tts_http = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.tts_timeout, connect=5.0)
    )
    iam_http = httpx.AsyncClient(timeout=httpx.Timeout(settings.iam_timeout))

    token_cache = TokenCache(
        api_key=(
            settings.ibm_api_key.get_secret_value() if settings.ibm_api_key else None
        ),
        token_url=str(settings.ibm_iam_url),
        http_client=iam_http,
        expiry_buffer_seconds=settings.token_expiry_buffer_seconds,
    )
    generator: GraniteClient | MockNarrativeGenerator
    if settings.use_mock_service:
        generator = MockNarrativeGenerator()
    else:
        generator = GraniteClient(settings, token_cache, http_client=ibm_http)

    synthesizer = SpeechSynthesizer(settings, http_client=tts_http, storage_dir=audio_dir)
    image_store = ImageStore(upload_dir, max_bytes=settings.max_image_bytes)
    orchestrator = GenerationOrchestrator(generator, synthesizer, image_store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "SoilSong API starting in %s mode (%s)", settings.mode, settings.environment
        )
        try:
            yield
        finally:
            for client in (ibm_http, iam_http, tts_http):
                try:
                    await client.aclose()
                except Exception as exc:
                    logger.warning("Error closing HTTP client: %s", exc)

    app = FastAPI(
        title="SoilSong API",
        version="0.1.0",
        description="Turns soil measurements into a narrated soil story.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.token_cache = token_cache
    app.state.generation_orchestrator = orchestrator
    app.state.image_store = image_store

    rate_limiter = RateLimiter(
        settings.rate_limit_max, settings.rate_limit_window_ms / 1000
    )
    app.state.rate_limiter = rate_limiter

    @app.middleware("http")
    async def limit_and_log_requests(request: Request, call_next):
        started = time.perf_counter()
        client_host = request.client.host if request.client else "unknown"
        decision = rate_limiter.hit(client_host)
        if decision.allowed:
            response = await call_next(request)
        else:
            response = JSONResponse(
                status_code=429,
                content={"detail": RATE_LIMIT_MESSAGE},
                headers={"Retry-After": str(decision.retry_after)},
            )
        if rate_limiter.enabled:
            response.headers["X-RateLimit-Limit"] = str(settings.rate_limit_max)
            response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        access_logger.info(
            "%s %s %d %.3f ms",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    # CORS is the outer layer, so 429 responses carry CORS headers too.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(soil_router)
    app.mount(AUDIO_URL_PREFIX, StaticFiles(directory=audio_dir), name="audio")
    app.mount(UPLOAD_URL_PREFIX, StaticFiles(directory=upload_dir), name="uploads")

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        content: dict[str, object] = {"detail": "Internal server error"}
        if not settings.is_production:
            content["error"] = {
                "type": type(exc).__name__,
                "message": str(exc),
                "stack": traceback.format_exception(type(exc), exc, exc.__traceback__),
            }
        return JSONResponse(status_code=500, content=content)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str]:
        return {
            "status": "ok",
            "mode": settings.mode,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


__all__ = ["create_app"]
