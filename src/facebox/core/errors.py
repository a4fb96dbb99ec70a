"""Error taxonomy for the facebox pipeline.

Every failure path raises one specific subclass of ``FaceboxError`` carrying a
stable ``code`` tag, so callers can tell overload (``busy``, ``timeout``) apart
from bad input (``decode_*``, ``detection_*``).
"""

from __future__ import annotations

from enum import StrEnum


class FaceboxError(Exception):
    """Base class for all facebox errors."""

    code: str = "facebox_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(FaceboxError):
    """Raised by the ingress before the pipeline runs (content type, size)."""

    code = "validation_error"

    def __init__(self, message: str, *, too_large: bool = False) -> None:
        super().__init__(message)
        self.too_large = too_large


class DecodeErrorKind(StrEnum):
    CORRUPT = "corrupt"
    UNSUPPORTED_FORMAT = "unsupported_format"


class DecodeError(FaceboxError):
    """The transport string or raw bytes could not be turned into an Image."""

    def __init__(self, kind: DecodeErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def code(self) -> str:  # type: ignore[override]
        return f"decode_{self.kind}"


class DetectionErrorKind(StrEnum):
    UNREADABLE = "unreadable"
    TIMEOUT = "timeout"
    INTERNAL_FAILURE = "internal_failure"


class DetectionError(FaceboxError):
    """The detector could not produce a result for an image."""

    def __init__(self, kind: DetectionErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def code(self) -> str:  # type: ignore[override]
        return f"detection_{self.kind}"


class InvalidRegion(FaceboxError):
    """A rectangle is degenerate or cannot be placed on the image."""

    code = "invalid_region"


class EmptyRegion(InvalidRegion):
    """Clipping a region against image bounds left no overlap."""


class BusyError(FaceboxError):
    """The governor's admission queue is full."""

    code = "busy"


class PipelineTimeoutError(FaceboxError):
    """A call exceeded its time budget and was abandoned at a stage boundary."""

    code = "timeout"
