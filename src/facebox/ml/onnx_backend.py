"""DetectionBackend running an ONNX face model through onnxruntime.

Model contract:
    input   1x3xHxW float32, RGB scaled to [0, 1]
    output  Nx5 or Nx15 rows of [x1, y1, x2, y2, score, (lx, ly) * 5]
            in input pixel coordinates
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from facebox.core.models import LANDMARK_NAMES
from facebox.ml.face_detector import RawDetection

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facebox.ml.model_manager import ModelSpec, OnnxModelManager

logger = logging.getLogger(__name__)

_BOX_COLUMNS = 5
_LANDMARK_COLUMNS = 2 * len(LANDMARK_NAMES)


def to_input_tensor(pixels: NDArray[np.uint8]) -> NDArray[np.float32]:
    """HxWx3 uint8 -> 1x3xHxW float32 in [0, 1]."""
    tensor = pixels.astype(np.float32) / 255.0
    return np.ascontiguousarray(tensor.transpose(2, 0, 1)[np.newaxis, ...])


def parse_output(output: NDArray[np.float32]) -> list[RawDetection]:
    """Convert raw model rows into RawDetections."""
    rows = np.asarray(output, dtype=np.float32)
    if rows.size == 0:
        return []
    rows = rows.reshape(-1, rows.shape[-1])
    if rows.shape[1] < _BOX_COLUMNS:
        raise RuntimeError(f"Model output has {rows.shape[1]} columns, expected at least {_BOX_COLUMNS}")
    has_landmarks = rows.shape[1] >= _BOX_COLUMNS + _LANDMARK_COLUMNS

    detections: list[RawDetection] = []
    for row in rows:
        x1, y1, x2, y2, score = (float(v) for v in row[:_BOX_COLUMNS])
        landmarks = None
        if has_landmarks:
            points = row[_BOX_COLUMNS : _BOX_COLUMNS + _LANDMARK_COLUMNS].reshape(-1, 2)
            landmarks = {name: (float(px), float(py)) for name, (px, py) in zip(LANDMARK_NAMES, points, strict=True)}
        detections.append(RawDetection(x=x1, y=y1, width=x2 - x1, height=y2 - y1, score=score, landmarks=landmarks))
    return detections


class OnnxDetectionBackend:
    """Runs the configured ONNX model for each detect call."""

    def __init__(self, model_manager: OnnxModelManager, spec: ModelSpec) -> None:
        self._model_manager = model_manager
        self._spec = spec

    @property
    def model_name(self) -> str:
        return self._spec.name

    def __call__(self, pixels: NDArray[np.uint8], width: int, height: int) -> list[RawDetection]:
        if pixels.shape[:2] != (height, width):
            raise ValueError(f"Pixel buffer shape {pixels.shape} does not match {width}x{height}")
        session = self._model_manager.get_session(self._spec)
        input_name = session.get_inputs()[0].name
        outputs = session.run(None, {input_name: to_input_tensor(pixels)})
        detections = parse_output(outputs[0])
        logger.debug("%s returned %d raw detections", self._spec.name, len(detections))
        return detections
