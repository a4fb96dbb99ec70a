"""API route definitions."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, File, UploadFile, status

from facebox.api.dependencies import (
    coordinator_from,
    governor_from,
    model_manager_from,
    require_api_key,
    settings_from,
)
from facebox.api.schemas import (
    CropPayload,
    CropRegion,
    CropRequest,
    CropResponse,
    DetectionPayload,
    ErrorResponse,
    FaceBox,
    HealthResponse,
    StatusResponse,
    UploadResponse,
)
from facebox.config import APP_VERSION, Settings
from facebox.core.coordinator import PipelineCoordinator
from facebox.core.errors import InvalidRegion, ValidationError
from facebox.core.governor import ResourceGovernor
from facebox.core.models import FaceRegion
from facebox.ml.model_manager import OnnxModelManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(require_api_key)])

_PIPELINE_ERRORS: dict[int | str, dict[str, object]] = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    status.HTTP_504_GATEWAY_TIMEOUT: {"model": ErrorResponse},
}

SettingsDep = Annotated[Settings, Depends(settings_from)]
GovernorDep = Annotated[ResourceGovernor, Depends(governor_from)]
CoordinatorDep = Annotated[PipelineCoordinator, Depends(coordinator_from)]
ModelManagerDep = Annotated[OnnxModelManager | None, Depends(model_manager_from)]


async def _read_upload(upload: UploadFile, max_size: int) -> bytes:
    content_type = upload.content_type or ""
    if not content_type.startswith("image/"):
        raise ValidationError(f"Expected an image upload, got content type '{content_type or 'unknown'}'")
    data = await upload.read(max_size + 1)
    if len(data) > max_size:
        raise ValidationError(f"File exceeds the {max_size} byte limit", too_large=True)
    if not data:
        raise ValidationError("Uploaded file is empty")
    return data


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses=_PIPELINE_ERRORS,
    summary="Detect and annotate faces in an uploaded image",
)
async def upload_image(
    image: Annotated[UploadFile, File(description="Image file to analyze")],
    settings: SettingsDep,
    governor: GovernorDep,
    coordinator: CoordinatorDep,
) -> UploadResponse:
    """Detect faces, returning the original and annotated images as data URLs."""
    data = await _read_upload(image, settings.max_file_size)
    logger.info("Upload received: %s (%d bytes)", image.filename, len(data))

    outcome = await governor.run(coordinator.process_upload, data)

    faces = [
        FaceBox(x=f.x, y=f.y, width=f.width, height=f.height, confidence=f.confidence) for f in outcome.faces
    ]
    return UploadResponse(
        data=DetectionPayload(
            original_image=outcome.original_encoded,
            processed_image=outcome.annotated_encoded,
            faces=faces,
            total_faces=outcome.total_faces,
            processing_time_ms=outcome.processing_duration_ms,
        )
    )


@router.post(
    "/crop",
    response_model=CropResponse,
    responses=_PIPELINE_ERRORS,
    summary="Crop face regions out of an image",
)
async def crop_faces(
    request: CropRequest,
    governor: GovernorDep,
    coordinator: CoordinatorDep,
) -> CropResponse:
    """Crop each requested region; regions outside the image are skipped."""
    logger.info("Crop request for %d regions", len(request.faces))
    regions, request_indices = _regions_from_request(request.faces)
    rejected = len(request.faces) - len(regions)

    outcome = await governor.run(coordinator.process_crop, request.image_data, regions)

    return CropResponse(
        data=CropPayload(
            cropped_faces=[c.data for c in outcome.crops],
            indices=[request_indices[c.index] for c in outcome.crops],
            skipped_count=outcome.skipped_count + rejected,
        )
    )


def _regions_from_request(faces: list[CropRegion]) -> tuple[list[FaceRegion], list[int]]:
    """Build FaceRegions, skipping degenerate rectangles.

    Returns the regions and, for each one, its index in ``faces``.
    """
    regions: list[FaceRegion] = []
    request_indices: list[int] = []
    for index, face in enumerate(faces):
        try:
            region = FaceRegion(x=face.x, y=face.y, width=face.width, height=face.height, confidence=face.confidence)
        except InvalidRegion as exc:
            logger.warning("Skipping crop %d: %s", index, exc)
            continue
        regions.append(region)
        request_indices.append(index)
    return regions, request_indices


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(coordinator: CoordinatorDep, model_manager: ModelManagerDep) -> HealthResponse:
    """Return service health status."""
    return HealthResponse(
        status="ok",
        version=APP_VERSION,
        detector=coordinator.detector.name,
        models_loaded=model_manager.get_loaded_models() if model_manager is not None else [],
        timestamp=datetime.now(UTC),
    )


@router.get(
    "/status",
    response_model=StatusResponse,
    summary="Pipeline load",
)
async def pipeline_status(governor: GovernorDep) -> StatusResponse:
    """Report in-flight calls and the configured ceiling."""
    snapshot = governor.status()
    return StatusResponse(
        in_flight=snapshot.in_flight,
        ceiling=snapshot.ceiling,
        queue_depth=snapshot.queue_depth,
        max_queue=snapshot.max_queue,
    )
