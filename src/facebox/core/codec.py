"""Conversion between Images, raw file bytes and base64 data URLs.

PNG output is lossless: ``decode(encode(image, PNG))`` is pixel-identical to
``image``. JPEG output is lossy and only approximately round-trips.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging

import numpy as np
from PIL import Image as PILImage
from PIL import ImageOps, UnidentifiedImageError

from facebox.core.errors import DecodeError, DecodeErrorKind
from facebox.core.models import Image, ImageFormat

logger = logging.getLogger(__name__)

DECODE_FORMATS: frozenset[ImageFormat] = frozenset(ImageFormat)
ENCODE_FORMATS: frozenset[ImageFormat] = frozenset({ImageFormat.PNG, ImageFormat.JPEG})

_DATA_URL_PREFIX = "data:"
_MIME_ALIASES = {"image/jpg": ImageFormat.JPEG}
# Multi-picture JPEGs written by some cameras.
_PILLOW_ALIASES = {"mpo": ImageFormat.JPEG}


def _format_from_pillow(name: str | None) -> ImageFormat | None:
    if name is None:
        return None
    name = name.lower()
    if name in _PILLOW_ALIASES:
        return _PILLOW_ALIASES[name]
    try:
        return ImageFormat(name)
    except ValueError:
        return None


def _format_from_mime(mime: str) -> ImageFormat | None:
    mime = mime.lower()
    if mime in _MIME_ALIASES:
        return _MIME_ALIASES[mime]
    for fmt in ImageFormat:
        if fmt.mime_type == mime:
            return fmt
    return None


class ImageCodec:
    """Encodes Images to transport strings and decodes them back."""

    def __init__(self, default_format: ImageFormat = ImageFormat.PNG, jpeg_quality: int = 85) -> None:
        if default_format not in ENCODE_FORMATS:
            raise ValueError(f"Cannot encode to {default_format}")
        self.default_format = default_format
        self.jpeg_quality = jpeg_quality

    def encode(self, image: Image, fmt: ImageFormat | None = None) -> str:
        """Encode an Image as a ``data:<mime>;base64,...`` URL.

        The same Image and format always produce the same string.
        """
        fmt = fmt or self.default_format
        if fmt not in ENCODE_FORMATS:
            raise ValueError(f"Cannot encode to {fmt}")

        buffer = io.BytesIO()
        pil_image = PILImage.fromarray(np.asarray(image.pixels))
        if fmt is ImageFormat.JPEG:
            pil_image.save(buffer, format="JPEG", quality=self.jpeg_quality)
        else:
            pil_image.save(buffer, format="PNG")
        payload = base64.b64encode(buffer.getvalue()).decode("ascii")
        return f"data:{fmt.mime_type};base64,{payload}"

    def decode(self, transport: str) -> Image:
        """Decode a data URL (or bare base64 string) into an Image.

        Raises:
            DecodeError: ``CORRUPT`` for malformed base64 or image data,
                ``UNSUPPORTED_FORMAT`` for a declared or detected format
                outside the supported set.
        """
        payload = transport.strip()
        if payload.startswith(_DATA_URL_PREFIX):
            header, sep, payload = payload.partition(",")
            if not sep or not header.endswith(";base64"):
                raise DecodeError(DecodeErrorKind.CORRUPT, "Data URL is not base64 encoded")
            mime = header[len(_DATA_URL_PREFIX) : -len(";base64")]
            if _format_from_mime(mime) is None:
                raise DecodeError(DecodeErrorKind.UNSUPPORTED_FORMAT, f"Unsupported media type: {mime}")

        try:
            data = base64.b64decode("".join(payload.split()), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecodeError(DecodeErrorKind.CORRUPT, f"Invalid base64 payload: {exc}") from exc
        return self.decode_bytes(data)

    def decode_bytes(self, data: bytes) -> Image:
        """Decode raw file bytes, applying EXIF orientation and converting to RGB."""
        if not data:
            raise DecodeError(DecodeErrorKind.CORRUPT, "Empty image payload")

        try:
            with PILImage.open(io.BytesIO(data)) as pil_image:
                fmt = _format_from_pillow(pil_image.format)
                if fmt is None or fmt not in DECODE_FORMATS:
                    raise DecodeError(
                        DecodeErrorKind.UNSUPPORTED_FORMAT,
                        f"Unsupported image format: {pil_image.format}",
                    )
                pil_image.load()
                oriented = ImageOps.exif_transpose(pil_image)
                rgb = oriented.convert("RGB")
        except UnidentifiedImageError as exc:
            raise DecodeError(DecodeErrorKind.CORRUPT, "Could not identify image data") from exc
        except PILImage.DecompressionBombError as exc:
            raise DecodeError(DecodeErrorKind.CORRUPT, f"Image dimensions are too large: {exc}") from exc
        except (OSError, SyntaxError, ValueError) as exc:
            raise DecodeError(DecodeErrorKind.CORRUPT, f"Image data is corrupt: {exc}") from exc

        image = Image(pixels=np.asarray(rgb, dtype=np.uint8), format=fmt)
        logger.debug("Decoded %s image %dx%d", fmt, image.width, image.height)
        return image
