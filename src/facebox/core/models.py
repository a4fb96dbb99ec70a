"""Value types shared by the pipeline stages."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import NamedTuple

import numpy as np
from numpy.typing import NDArray

from facebox.core.errors import InvalidRegion

LANDMARK_NAMES: tuple[str, ...] = ("left_eye", "right_eye", "nose", "mouth_left", "mouth_right")


class ImageFormat(StrEnum):
    PNG = "png"
    JPEG = "jpeg"
    BMP = "bmp"
    WEBP = "webp"

    @property
    def mime_type(self) -> str:
        return f"image/{self.value}"

    @property
    def lossless(self) -> bool:
        return self in (ImageFormat.PNG, ImageFormat.BMP)


class Bounds(NamedTuple):
    """Width and height of an image in pixels."""

    width: int
    height: int


@dataclass(frozen=True, eq=False)
class Image:
    """An RGB raster image.

    The pixel buffer is copied on construction and marked read-only, so an
    Image never shares writable storage with anything else.
    """

    pixels: NDArray[np.uint8]
    format: ImageFormat = ImageFormat.PNG

    def __post_init__(self) -> None:
        pixels = np.array(self.pixels, dtype=np.uint8, copy=True)
        if pixels.ndim != 3 or pixels.shape[2] != 3:
            raise ValueError(f"Expected an HxWx3 pixel buffer, got shape {pixels.shape}")
        if pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise ValueError("Image must have at least one pixel")
        pixels.flags.writeable = False
        object.__setattr__(self, "pixels", pixels)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def bounds(self) -> Bounds:
        return Bounds(self.width, self.height)


@dataclass(frozen=True)
class FaceRegion:
    """A face rectangle in pixel coordinates plus detector confidence."""

    x: int
    y: int
    width: int
    height: int
    confidence: float = 1.0
    landmarks: Mapping[str, tuple[float, float]] | None = field(default=None, hash=False)

    def __post_init__(self) -> None:
        for name in ("x", "y", "width", "height"):
            object.__setattr__(self, name, int(getattr(self, name)))
        object.__setattr__(self, "confidence", float(self.confidence))
        if self.width <= 0 or self.height <= 0:
            raise InvalidRegion(f"Region size must be positive, got {self.width}x{self.height}")
        if math.isnan(self.confidence) or not 0.0 <= self.confidence <= 1.0:
            raise InvalidRegion(f"Confidence must be within [0, 1], got {self.confidence}")
        if self.landmarks is not None:
            object.__setattr__(self, "landmarks", dict(self.landmarks))


@dataclass(frozen=True)
class DetectionResult:
    """Detector output for one image. Region order is detector-determined."""

    image: Image
    regions: tuple[FaceRegion, ...]
    duration_ms: float

    @property
    def total_faces(self) -> int:
        return len(self.regions)


@dataclass(frozen=True)
class CroppedImage:
    image: Image
    index: int


@dataclass(frozen=True)
class CropResult:
    crops: tuple[CroppedImage, ...]
    skipped: int


@dataclass(frozen=True)
class EncodedCrop:
    index: int
    data: str


@dataclass(frozen=True)
class UploadOutcome:
    """Everything the upload-and-detect call returns."""

    original_encoded: str
    annotated_encoded: str
    faces: tuple[FaceRegion, ...]
    processing_duration_ms: int

    @property
    def total_faces(self) -> int:
        return len(self.faces)


@dataclass(frozen=True)
class CropOutcome:
    crops: tuple[EncodedCrop, ...]
    skipped_count: int


@dataclass(frozen=True)
class GovernorStatus:
    in_flight: int
    ceiling: int
    queue_depth: int
    max_queue: int
