"""Sequences the pipeline stages for each logical call.

Upload:  decode -> detect -> annotate -> encode(original) -> encode(annotated)
Crop:    decode -> crop -> encode(each surviving crop)

Both calls are synchronous and meant to run on a governor worker thread.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING

from facebox.core import annotator, cropper
from facebox.core.cancellation import CancellationToken
from facebox.core.models import CropOutcome, EncodedCrop, FaceRegion, UploadOutcome

if TYPE_CHECKING:
    from facebox.core.annotator import AnnotationStyle
    from facebox.core.codec import ImageCodec
    from facebox.ml.face_detector import FaceDetector

logger = logging.getLogger(__name__)


class PipelineCoordinator:
    """Runs upload-and-detect and crop calls against injected collaborators."""

    def __init__(self, detector: FaceDetector, codec: ImageCodec, style: AnnotationStyle | None = None) -> None:
        self.detector = detector
        self.codec = codec
        self.style = style

    def process_upload(self, raw: bytes, token: CancellationToken | None = None) -> UploadOutcome:
        """Detect and annotate faces in an uploaded image.

        All or nothing: any stage failure propagates and no partial payload is
        returned.

        Raises:
            DecodeError: The bytes are not a supported image.
            DetectionError: The detector failed.
            PipelineTimeoutError: The token expired at a stage boundary.
        """
        token = token or CancellationToken()
        token.raise_if_cancelled("decode")
        start = time.perf_counter()

        image = self.codec.decode_bytes(raw)

        token.raise_if_cancelled("detect")
        result = self.detector.detect(image)
        token.raise_if_cancelled("annotate")

        annotated = annotator.draw(image, result.regions, self.style, token)

        token.raise_if_cancelled("encode original")
        original_encoded = self.codec.encode(image)
        token.raise_if_cancelled("encode annotated")
        annotated_encoded = self.codec.encode(annotated)

        duration_ms = round((time.perf_counter() - start) * 1000)
        logger.info(
            "Upload processed: %dx%d, %d faces (detector=%s, detect=%.1fms, total=%dms)",
            image.width,
            image.height,
            result.total_faces,
            self.detector.name,
            result.duration_ms,
            duration_ms,
        )
        return UploadOutcome(
            original_encoded=original_encoded,
            annotated_encoded=annotated_encoded,
            faces=result.regions,
            processing_duration_ms=duration_ms,
        )

    def process_crop(
        self,
        encoded_image: str,
        regions: Sequence[FaceRegion],
        token: CancellationToken | None = None,
    ) -> CropOutcome:
        """Crop the requested regions out of an encoded image.

        Only a failed decode (or an expired token) fails the call; regions
        outside the image are skipped and counted.
        """
        token = token or CancellationToken()
        token.raise_if_cancelled("decode")
        image = self.codec.decode(encoded_image)

        result = cropper.crop(image, regions, token)

        encoded: list[EncodedCrop] = []
        for item in result.crops:
            token.raise_if_cancelled(f"encode crop {item.index}")
            encoded.append(EncodedCrop(index=item.index, data=self.codec.encode(item.image)))

        logger.info("Crop processed: %d requested, %d cropped, %d skipped", len(regions), len(encoded), result.skipped)
        return CropOutcome(crops=tuple(encoded), skipped_count=result.skipped)
