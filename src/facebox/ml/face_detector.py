"""Face detection capability and its implementations.

Implementations: MockFaceDetector (deterministic placeholder, also the test
fixture) and PluggableFaceDetector (adapter for any external backend).
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from facebox.core import geometry
from facebox.core.errors import DetectionError, DetectionErrorKind, EmptyRegion
from facebox.core.models import LANDMARK_NAMES, DetectionResult, FaceRegion, Image

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD: float = 0.5


@dataclass(frozen=True)
class RawDetection:
    """One detection as reported by a backend, before thresholding.

    Coordinates are in pixel space of the image handed to the backend and may
    be fractional or extend past the image edges.
    """

    x: float
    y: float
    width: float
    height: float
    score: float
    landmarks: Mapping[str, tuple[float, float]] | None = None


class FaceDetector(Protocol):
    """Protocol for face detectors."""

    @property
    def name(self) -> str:
        """Return the detector identifier string."""
        ...

    def detect(self, image: Image) -> DetectionResult:
        """Detect faces in an image.

        Returns:
            Regions at or above the confidence threshold, clipped to the
            image, in detector order.

        Raises:
            DetectionError: If detection cannot be performed.
        """
        ...


class DetectionBackend(Protocol):
    """The minimal interface an external detection backend must satisfy."""

    def __call__(self, pixels: NDArray[np.uint8], width: int, height: int) -> Iterable[RawDetection]:
        """Run detection on an HxWx3 RGB uint8 array."""
        ...


def _validate_threshold(threshold: float) -> float:
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"Confidence threshold must be within [0, 1], got {threshold}")
    return threshold


def filter_regions(regions: Iterable[FaceRegion], image: Image, threshold: float) -> tuple[FaceRegion, ...]:
    """Drop regions below ``threshold`` and clip the rest to the image.

    Regions that fall entirely outside the image are dropped as well.
    """
    kept: list[FaceRegion] = []
    for region in regions:
        if region.confidence < threshold:
            continue
        try:
            kept.append(geometry.clip(region, image.bounds))
        except EmptyRegion:
            logger.debug("Dropping detection outside the image: %s", region)
    return tuple(kept)


class MockFaceDetector:
    """Placeholder detector producing synthetic boxes from image dimensions.

    The same image dimensions always produce the same ordered boxes, which is
    what makes pipeline output reproducible in tests.
    """

    def __init__(self, threshold: float = DEFAULT_CONFIDENCE_THRESHOLD, min_dimension: int = 200) -> None:
        self.threshold = _validate_threshold(threshold)
        self.min_dimension = min_dimension

    @property
    def name(self) -> str:
        return "mock"

    def detect(self, image: Image) -> DetectionResult:
        start = time.perf_counter()
        candidates = self._synthesize(image.width, image.height)
        regions = filter_regions(candidates, image, self.threshold)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.debug("Mock detection on %dx%d: %d faces", image.width, image.height, len(regions))
        return DetectionResult(image=image, regions=regions, duration_ms=duration_ms)

    def _synthesize(self, width: int, height: int) -> list[FaceRegion]:
        boxes: list[tuple[int, int, int, int, float]] = []
        if width > self.min_dimension and height > self.min_dimension:
            boxes.append((width // 4, height // 4, width // 4, height // 4, 0.95))
        if width > 400 and height > 400:
            boxes.append((width * 2 // 3, height // 3, width // 5, height // 5, 0.87))
        if width > 600 and height > 600:
            boxes.append((width // 2, height * 2 // 3, width // 6, height // 6, 0.92))
        return [FaceRegion(x, y, w, h, conf, _synthetic_landmarks(x, y, w, h)) for x, y, w, h, conf in boxes]


def _synthetic_landmarks(x: int, y: int, w: int, h: int) -> dict[str, tuple[float, float]]:
    # Fractions of the box roughly matching a frontal face.
    offsets = ((0.3, 0.35), (0.7, 0.35), (0.5, 0.55), (0.35, 0.75), (0.65, 0.75))
    return {name: (x + fx * w, y + fy * h) for name, (fx, fy) in zip(LANDMARK_NAMES, offsets, strict=True)}


class PluggableFaceDetector:
    """Adapts an external DetectionBackend to the FaceDetector protocol."""

    def __init__(
        self,
        backend: DetectionBackend,
        threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        name: str = "pluggable",
    ) -> None:
        self._backend = backend
        self._name = name
        self.threshold = _validate_threshold(threshold)

    @property
    def name(self) -> str:
        return self._name

    def detect(self, image: Image) -> DetectionResult:
        start = time.perf_counter()
        try:
            raw = list(self._backend(image.pixels, image.width, image.height))
        except DetectionError:
            raise
        except TimeoutError as exc:
            raise DetectionError(DetectionErrorKind.TIMEOUT, f"Backend {self._name} timed out") from exc
        except ValueError as exc:
            raise DetectionError(DetectionErrorKind.UNREADABLE, f"Backend {self._name} rejected the image: {exc}") from exc
        except Exception as exc:
            logger.exception("Detection backend %s failed", self._name)
            raise DetectionError(DetectionErrorKind.INTERNAL_FAILURE, f"Backend {self._name} failed: {exc}") from exc

        regions = filter_regions(_to_regions(raw), image, self.threshold)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.debug("%s detection: %d raw, %d kept in %.1fms", self._name, len(raw), len(regions), duration_ms)
        return DetectionResult(image=image, regions=regions, duration_ms=duration_ms)


def _to_regions(raw: Iterable[RawDetection]) -> list[FaceRegion]:
    regions: list[FaceRegion] = []
    for det in raw:
        values = (det.x, det.y, det.width, det.height, det.score)
        if not all(math.isfinite(v) for v in values):
            continue
        width = round(det.width)
        height = round(det.height)
        if width <= 0 or height <= 0:
            continue
        regions.append(
            FaceRegion(
                x=round(det.x),
                y=round(det.y),
                width=width,
                height=height,
                confidence=min(1.0, max(0.0, det.score)),
                landmarks=det.landmarks,
            )
        )
    return regions
