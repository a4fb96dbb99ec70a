"""Burn face boxes and confidence labels into a copy of an image."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image as PILImage
from PIL import ImageDraw, ImageFont

from facebox.core import geometry
from facebox.core.errors import EmptyRegion
from facebox.core.models import FaceRegion, Image

if TYPE_CHECKING:
    from facebox.core.cancellation import CancellationToken

logger = logging.getLogger(__name__)

DEFAULT_LABEL_FORMAT = "Face {index}: {percent:.1f}%"

_LANDMARK_RADIUS = 2


@dataclass(frozen=True)
class AnnotationStyle:
    """How regions are drawn.

    ``label_format`` receives ``index`` (1-based position in the region list),
    ``confidence`` (0-1) and ``percent`` (0-100).
    """

    stroke_color: tuple[int, int, int] = (0, 255, 0)
    stroke_width: int = 2
    label_format: str = DEFAULT_LABEL_FORMAT
    label_offset: int = 12
    draw_landmarks: bool = False

    def __post_init__(self) -> None:
        if self.stroke_width < 1:
            raise ValueError(f"stroke_width must be at least 1, got {self.stroke_width}")
        if self.label_offset < 0:
            raise ValueError(f"label_offset must not be negative, got {self.label_offset}")

    def format_label(self, index: int, region: FaceRegion) -> str:
        return self.label_format.format(
            index=index,
            confidence=region.confidence,
            percent=region.confidence * 100.0,
        )


@lru_cache(maxsize=1)
def _label_font() -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    return ImageFont.load_default()


def draw(
    image: Image,
    regions: Sequence[FaceRegion],
    style: AnnotationStyle | None = None,
    token: CancellationToken | None = None,
) -> Image:
    """Return a new Image with every region outlined and labelled.

    Regions are drawn in the given order, so later boxes may cover earlier
    ones. The source image is never touched; with no regions the result is a
    byte-identical copy.
    """
    style = style or AnnotationStyle()
    if not regions:
        return Image(pixels=image.pixels, format=image.format)

    canvas = PILImage.fromarray(np.array(image.pixels, copy=True))
    pen = ImageDraw.Draw(canvas)
    font = _label_font()
    bounds = image.bounds

    for index, region in enumerate(regions, start=1):
        if token is not None:
            token.raise_if_cancelled(f"drawing region {index}")
        try:
            box = geometry.clip(region, bounds)
        except EmptyRegion:
            logger.debug("Region %d lies outside the image, not drawn", index)
            continue

        pen.rectangle(
            (box.x, box.y, geometry.right(box) - 1, geometry.bottom(box) - 1),
            outline=style.stroke_color,
            width=style.stroke_width,
        )
        label = style.format_label(index, region)
        if label:
            label_y = max(0, box.y - style.label_offset)
            pen.text((box.x, label_y), label, fill=style.stroke_color, font=font)

        if style.draw_landmarks and region.landmarks:
            for px, py in region.landmarks.values():
                if 0 <= px < bounds.width and 0 <= py < bounds.height:
                    pen.ellipse(
                        (px - _LANDMARK_RADIUS, py - _LANDMARK_RADIUS, px + _LANDMARK_RADIUS, py + _LANDMARK_RADIUS),
                        fill=style.stroke_color,
                    )

    return Image(pixels=np.asarray(canvas), format=image.format)
