"""Pydantic request/response schemas for the facebox API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class FaceBox(BaseModel):
    """A single detected face in pixel coordinates."""

    x: int = Field(description="Left edge in pixels")
    y: int = Field(description="Top edge in pixels")
    width: int = Field(gt=0, description="Width in pixels")
    height: int = Field(gt=0, description="Height in pixels")
    confidence: float = Field(ge=0.0, le=1.0, description="Detection confidence (0.0-1.0)")


class CropRegion(BaseModel):
    """A rectangle to crop. Confidence is carried for symmetry with FaceBox.

    Degenerate sizes are accepted here and skipped per region by the crop call.
    """

    x: int
    y: int
    width: int
    height: int
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class DetectionPayload(BaseModel):
    original_image: str = Field(description="Uploaded image as a base64 data URL")
    processed_image: str = Field(description="Annotated image as a base64 data URL")
    faces: list[FaceBox]
    total_faces: int
    processing_time_ms: int


class UploadResponse(BaseModel):
    """Response for the upload-and-detect endpoint."""

    success: bool = True
    data: DetectionPayload


class CropRequest(BaseModel):
    """Request body for the crop endpoint."""

    image_data: str = Field(description="Image as a base64 data URL or bare base64")
    faces: list[CropRegion]


class CropPayload(BaseModel):
    cropped_faces: list[str] = Field(description="Cropped images as base64 data URLs, in request order")
    indices: list[int] = Field(description="Index into the request's faces for each cropped image")
    skipped_count: int


class CropResponse(BaseModel):
    """Response for the crop endpoint."""

    success: bool = True
    data: CropPayload


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str
    detector: str
    models_loaded: list[str]
    timestamp: datetime


class StatusResponse(BaseModel):
    """Governor load report."""

    in_flight: int
    ceiling: int
    queue_depth: int
    max_queue: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    success: bool = False
    error: str = Field(description="Stable error code, e.g. 'decode_corrupt' or 'busy'")
    detail: str
