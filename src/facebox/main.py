"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from facebox.api.routes import router
from facebox.api.schemas import ErrorResponse
from facebox.config import APP_VERSION, Settings, get_settings
from facebox.core.annotator import AnnotationStyle
from facebox.core.codec import ImageCodec
from facebox.core.coordinator import PipelineCoordinator
from facebox.core.errors import (
    BusyError,
    DecodeError,
    DecodeErrorKind,
    DetectionError,
    DetectionErrorKind,
    FaceboxError,
    InvalidRegion,
    PipelineTimeoutError,
    ValidationError,
)
from facebox.core.governor import ResourceGovernor
from facebox.core.models import ImageFormat
from facebox.ml.face_detector import FaceDetector, MockFaceDetector, PluggableFaceDetector
from facebox.ml.model_manager import OnnxModelManager, spec_from_settings
from facebox.ml.onnx_backend import OnnxDetectionBackend

logger = logging.getLogger(__name__)


def build_detector(settings: Settings) -> tuple[FaceDetector, OnnxModelManager | None]:
    """Create the configured detector, plus the model manager when one is needed."""
    if settings.detector == "onnx":
        model_manager = OnnxModelManager(settings)
        spec = spec_from_settings(settings)
        backend = OnnxDetectionBackend(model_manager, spec)
        detector = PluggableFaceDetector(backend, threshold=settings.confidence_threshold, name=f"onnx:{spec.name}")
        return detector, model_manager
    return MockFaceDetector(threshold=settings.confidence_threshold, min_dimension=settings.mock_min_dimension), None


def init_state(app: FastAPI, settings: Settings) -> None:
    """Wire settings, pipeline and governor into ``app.state``."""
    detector, model_manager = build_detector(settings)
    codec = ImageCodec(default_format=ImageFormat(settings.output_format), jpeg_quality=settings.jpeg_quality)
    style = AnnotationStyle(stroke_color=settings.stroke_color, stroke_width=settings.stroke_width)

    app.state.settings = settings
    app.state.model_manager = model_manager
    app.state.coordinator = PipelineCoordinator(detector, codec, style)
    app.state.governor = ResourceGovernor.from_settings(settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting facebox (detector=%s, threshold=%.2f, max_concurrent=%s, max_queue=%s, call_timeout=%.1fs)",
        settings.detector,
        settings.confidence_threshold,
        settings.max_concurrent,
        settings.max_queue,
        settings.call_timeout,
    )

    init_state(app, settings)

    logger.info("facebox ready")
    yield

    logger.info("Shutting down facebox")
    app.state.governor.shutdown()
    if app.state.model_manager is not None:
        app.state.model_manager.shutdown()
    logger.info("facebox shutdown complete")


def _status_for(exc: FaceboxError) -> int:
    if isinstance(exc, ValidationError):
        return 413 if exc.too_large else status.HTTP_400_BAD_REQUEST
    if isinstance(exc, DecodeError):
        if exc.kind is DecodeErrorKind.UNSUPPORTED_FORMAT:
            return status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, DetectionError):
        return {
            DetectionErrorKind.UNREADABLE: 422,
            DetectionErrorKind.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
        }.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if isinstance(exc, InvalidRegion):
        return 422
    if isinstance(exc, BusyError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, PipelineTimeoutError):
        return status.HTTP_504_GATEWAY_TIMEOUT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def facebox_error_handler(request: Request, exc: FaceboxError) -> JSONResponse:
    """Render any FaceboxError as an ErrorResponse with its code."""
    status_code = _status_for(exc)
    if status_code == status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc.message)

    body = ErrorResponse(error=exc.code, detail=exc.message)
    headers = {"Retry-After": "1"} if isinstance(exc, BusyError) else None
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="facebox",
        description="Face detection, annotation and cropping API",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(FaceboxError, facebox_error_handler)
    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("facebox.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
