"""Shared fixtures: synthetic test images."""

from __future__ import annotations

import io
from collections.abc import Callable

import numpy as np
import pytest
from numpy.typing import NDArray
from PIL import Image as PILImage

from facebox.core.models import Image


def _test_pixels(width: int, height: int) -> NDArray[np.uint8]:
    """Gradient background with two skin-toned blocks, so crops are distinguishable."""
    ys, xs = np.mgrid[0:height, 0:width]
    pixels = np.stack([xs % 256, ys % 256, (xs + ys) % 256], axis=-1).astype(np.uint8)
    face_size, spacing = 80, 100
    if width > spacing and height > spacing:
        pixels[spacing : spacing + face_size, spacing : spacing + face_size] = (200, 180, 160)
    if width > spacing * 3 and height > spacing:
        pixels[spacing : spacing + face_size, spacing * 3 : spacing * 3 + face_size] = (180, 160, 140)
    return pixels


@pytest.fixture()
def make_image() -> Callable[..., Image]:
    """Factory for in-memory test Images."""

    def factory(width: int = 400, height: int = 400) -> Image:
        return Image(pixels=_test_pixels(width, height))

    return factory


@pytest.fixture()
def make_file_bytes() -> Callable[..., bytes]:
    """Factory for encoded image files (PNG by default)."""

    def factory(width: int = 400, height: int = 400, fmt: str = "PNG", mode: str = "RGB") -> bytes:
        pil_image = PILImage.fromarray(_test_pixels(width, height)).convert(mode)
        buffer = io.BytesIO()
        pil_image.save(buffer, format=fmt)
        return buffer.getvalue()

    return factory
