"""
Portrait Backdrop Service - Main FastAPI Application

Upload a portrait photo, preview it centered over a blurred copy of itself,
and save the full-resolution composite.

Key features:
- Uploads are validated, then staged in a bounded in-memory cache
- Previews are rendered at a small canvas for interactive latency
- Saves render the full canvas and write a JPEG to the output directory
- Composition runs on a dedicated thread pool, off the event loop
"""

from __future__ import annotations

import asyncio
import functools
import logging
import math
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse

from .compositor import CompositionSettings, ImageCompositor, OutputSize, validate_image
from .config import Settings, get_settings
from .errors import CompositionError, ErrorKind
from .event_log import EventLog
from .health import router as health_router
from .models import (
    AppliedSettings,
    CompositionRequest,
    ImageMetadataModel,
    PreviewResponse,
    SaveResponse,
    UploadResponse,
)
from .pages import mount_static, router as pages_router
from .security import install_sessions, require_auth, router as auth_router
from .staging import StagingCache

logger = logging.getLogger("backdrop.main")


# Allowed MIME types for image uploads
ALLOWED_MIME = {"image/jpeg", "image/png", "image/heic", "image/heif"}

NOT_FOUND_MESSAGE = "Image not found or expired. Please upload again."


class ApiError(HTTPException):
    """HTTPException that also carries a machine-readable error code."""

    def __init__(self, kind: ErrorKind, detail: str):
        super().__init__(status_code=kind.status_code, detail=detail)
        self.error_code = kind.value


def clamp_setting(value: Any, minimum: int, maximum: int, default: int) -> int:
    """
    Round a client-supplied number and clamp it into [minimum, maximum].

    Anything that is not a finite number (strings, booleans, None, NaN)
    yields the default.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if not math.isfinite(value):
        return default
    return max(minimum, min(maximum, round(value)))


def _output_filename(now: datetime) -> str:
    """YYYY-MM-DD_<8 hex>.jpg"""
    return f"{now.date().isoformat()}_{uuid.uuid4().hex[:8]}.jpg"


def _compose_to_file(
    compositor: ImageCompositor,
    data: bytes,
    settings: CompositionSettings,
    path: Path,
) -> None:
    rendered = compositor.compose(data, settings)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(rendered)


async def _in_pool(request: Request, fn: Callable[..., Any], *args: Any) -> Any:
    """Run CPU-bound work on the application's composition thread pool."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        request.app.state.executor, functools.partial(fn, *args)
    )


def _clamped(settings: Settings, body: CompositionRequest) -> AppliedSettings:
    return AppliedSettings(
        blur=clamp_setting(body.blur, settings.MIN_BLUR, settings.MAX_BLUR, settings.DEFAULT_BLUR),
        scale=clamp_setting(body.scale, settings.MIN_SCALE, settings.MAX_SCALE, settings.DEFAULT_SCALE),
    )


def _reject_too_large(events: EventLog, filename: str, settings: Settings) -> None:
    events.upload_failed(filename, f"File too large (max {settings.MAX_UPLOAD_MB}MB)")
    raise HTTPException(
        status_code=400,
        detail=f"File too large. Maximum size is {settings.MAX_UPLOAD_MB}MB",
    )


def _lookup(request: Request, body: CompositionRequest):
    if not body.temp_id:
        raise HTTPException(status_code=400, detail="Missing temp_id")

    entry = request.app.state.cache.get(body.temp_id)
    if entry is None:
        raise ApiError(ErrorKind.NOT_FOUND_OR_EXPIRED, NOT_FOUND_MESSAGE)
    return entry


def create_app(
    settings: Optional[Settings] = None,
    cache: Optional[StagingCache] = None,
    events: Optional[EventLog] = None,
) -> FastAPI:
    """
    Build the application and the collaborators it owns.

    Args:
        settings: Configuration (read from the environment if omitted)
        cache: Staging cache to use instead of one built from settings
        events: Event log to use instead of one built from settings

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Portrait Backdrop",
        description=(
            "Upload a portrait, preview it over a blurred backdrop of itself, "
            "and save the full-resolution composite."
        ),
        version=settings.SERVICE_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.state.settings = settings
    app.state.cache = cache or StagingCache(
        max_bytes=settings.temp_storage_max_bytes,
        ttl_ms=settings.TEMP_STORAGE_TTL_MS,
        sweep_interval_s=settings.TEMP_STORAGE_SWEEP_S,
    )
    app.state.compositor = ImageCompositor(
        preview_size=settings.preview_size,
        full_size=settings.full_size,
        jpeg_quality=settings.JPEG_QUALITY,
    )
    app.state.events = events or EventLog(settings.LOG_PATH, settings.LOG_RETENTION_DAYS)
    app.state.executor = ThreadPoolExecutor(
        max_workers=max(1, settings.COMPOSE_WORKERS),
        thread_name_prefix="compose",
    )

    install_sessions(app, settings)

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(pages_router)
    mount_static(app)

    # Custom exception handler for consistent error responses
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Return consistent JSON error responses."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                "error_code": getattr(exc, "error_code", None),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        request.app.state.events.error("Unhandled error", exc)
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error_code": None},
        )

    # =========================================================================
    # IMAGE ENDPOINTS
    # =========================================================================

    @app.post(
        "/upload",
        response_model=UploadResponse,
        dependencies=[Depends(require_auth)],
        summary="Upload a portrait",
        description="Validate and stage an image, returning its id and a default preview."
    )
    async def upload(
        request: Request,
        image: UploadFile | None = File(default=None, description="JPEG, PNG or HEIC portrait"),
    ):
        """
        Validate an upload, stage its raw bytes and render a default preview.

        The staged id is what /preview and /save refer to afterwards.
        """
        events: EventLog = request.app.state.events
        cache: StagingCache = request.app.state.cache
        compositor: ImageCompositor = request.app.state.compositor

        if image is None:
            raise HTTPException(status_code=400, detail="No file uploaded")

        filename = image.filename or "unknown"

        if image.content_type not in ALLOWED_MIME:
            reason = f"Invalid file type: {image.content_type}"
            events.upload_failed(filename, reason)
            raise HTTPException(status_code=400, detail=reason)

        # The multipart parser already knows the size; refuse before buffering
        if image.size is not None and image.size > settings.max_upload_bytes:
            _reject_too_large(events, filename, settings)

        data = await image.read()

        if not data:
            raise HTTPException(status_code=400, detail="No file uploaded")

        if len(data) > settings.max_upload_bytes:
            _reject_too_large(events, filename, settings)

        validation = await _in_pool(request, validate_image, data, filename)
        if not validation.valid:
            events.upload_failed(filename, validation.error)
            raise ApiError(validation.error_kind, validation.error)

        stored = cache.store(data, validation.metadata)
        if not stored.ok:
            events.upload_failed(filename, stored.error)
            raise ApiError(stored.error_kind, stored.error)

        try:
            preview = await _in_pool(
                request,
                compositor.preview_data_url,
                data,
                settings.DEFAULT_BLUR,
                settings.DEFAULT_SCALE,
            )
        except CompositionError as e:
            cache.remove(stored.entry_id)
            events.error("Upload processing failed", e)
            raise ApiError(e.kind, "Failed to process image")

        events.upload(filename, len(data) / (1024 * 1024))

        return UploadResponse(
            temp_id=stored.entry_id,
            metadata=ImageMetadataModel(**validation.metadata.to_dict()),
            preview=preview,
            defaults=AppliedSettings(blur=settings.DEFAULT_BLUR, scale=settings.DEFAULT_SCALE),
        )

    @app.post(
        "/preview",
        response_model=PreviewResponse,
        dependencies=[Depends(require_auth)],
        summary="Render a preview",
        description="Render a staged upload at preview size with the given settings."
    )
    async def preview(request: Request, body: CompositionRequest):
        entry = _lookup(request, body)
        applied = _clamped(settings, body)

        try:
            data_url = await _in_pool(
                request,
                request.app.state.compositor.preview_data_url,
                entry.raw_bytes,
                applied.blur,
                applied.scale,
            )
        except CompositionError as e:
            request.app.state.events.error("Preview generation failed", e)
            raise ApiError(e.kind, "Failed to generate preview")

        return PreviewResponse(preview=data_url, settings=applied)

    @app.post(
        "/save",
        response_model=SaveResponse,
        dependencies=[Depends(require_auth)],
        summary="Save the full-resolution image",
        description="Render a staged upload at full size, write it to disk and release it."
    )
    async def save(request: Request, body: CompositionRequest):
        """
        Render the full canvas, write it as YYYY-MM-DD_<id>.jpg and drop the
        staged upload.

        A failure here follows a successful upload and preview of the same
        bytes, so it is logged as an unexpected error.
        """
        events: EventLog = request.app.state.events
        entry = _lookup(request, body)
        applied = _clamped(settings, body)

        filename = _output_filename(datetime.now(timezone.utc))
        path = Path(settings.OUTPUT_PATH) / filename

        try:
            await _in_pool(
                request,
                _compose_to_file,
                request.app.state.compositor,
                entry.raw_bytes,
                CompositionSettings(
                    blur_radius=applied.blur,
                    scale_percent=applied.scale,
                    output_size=OutputSize.FULL,
                ),
                path,
            )
        except (CompositionError, OSError) as e:
            events.error("Save failed", e)
            logger.error("Save of %s failed: %s", body.temp_id, e)
            raise ApiError(ErrorKind.COMPOSITION_FAILURE, "Failed to save image")

        request.app.state.cache.remove(entry.id)
        events.save(filename, applied.blur, applied.scale)

        return SaveResponse(filename=filename, settings=applied)

    # =========================================================================
    # STARTUP / SHUTDOWN EVENTS
    # =========================================================================

    @app.on_event("startup")
    async def startup_event():
        """Application startup tasks."""
        Path(settings.OUTPUT_PATH).mkdir(parents=True, exist_ok=True)
        app.state.cache.start()
        mode = "development mode (HTTP)" if settings.DEV_MODE else "production mode (HTTPS)"
        app.state.events.info("SERVER_MODE", f"Running in {mode}")
        app.state.events.info(
            "SERVER_START",
            f"{settings.SERVICE_NAME} v{settings.SERVICE_VERSION} listening on port {settings.PORT}",
        )
        logger.info(
            "Starting %s v%s", settings.SERVICE_NAME, settings.SERVICE_VERSION
        )
        logger.info(
            "Staging cache: %d MB, TTL %d ms",
            settings.TEMP_STORAGE_MAX_MB, settings.TEMP_STORAGE_TTL_MS,
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        """Application shutdown tasks."""
        logger.info("Shutting down %s", settings.SERVICE_NAME)
        app.state.events.info("SERVER_STOP", "Shutting down...")
        await app.state.cache.stop()
        app.state.cache.clear()
        app.state.executor.shutdown(wait=False)
        app.state.events.close()

    return app
