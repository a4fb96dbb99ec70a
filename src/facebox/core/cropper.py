"""Per-region crop extraction with skip-and-count for out-of-bounds regions."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from facebox.core import geometry
from facebox.core.errors import EmptyRegion
from facebox.core.models import CroppedImage, CropResult, FaceRegion, Image

if TYPE_CHECKING:
    from facebox.core.cancellation import CancellationToken

logger = logging.getLogger(__name__)


def crop(
    image: Image,
    regions: Sequence[FaceRegion],
    token: CancellationToken | None = None,
) -> CropResult:
    """Cut each region out of ``image``, in the order given.

    A region that clips to nothing is skipped and counted rather than failing
    the batch. Each crop keeps the index of its region in ``regions``.
    """
    crops: list[CroppedImage] = []
    skipped = 0
    bounds = image.bounds

    for index, region in enumerate(regions):
        if token is not None:
            token.raise_if_cancelled(f"cropping region {index}")
        try:
            box = geometry.clip(region, bounds)
        except EmptyRegion as exc:
            logger.warning("Skipping crop %d: %s", index, exc)
            skipped += 1
            continue

        pixels = image.pixels[box.y : geometry.bottom(box), box.x : geometry.right(box)]
        crops.append(CroppedImage(image=Image(pixels=pixels, format=image.format), index=index))

    return CropResult(crops=tuple(crops), skipped=skipped)
