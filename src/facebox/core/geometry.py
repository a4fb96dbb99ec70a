"""Rectangle arithmetic for face regions.

Pure functions only. Every other module goes through here for clipping,
scaling and bounds checks instead of doing its own coordinate math.
"""

from __future__ import annotations

import dataclasses

from facebox.core.errors import EmptyRegion
from facebox.core.models import Bounds, FaceRegion


def bounds_of(width: int, height: int) -> Bounds:
    return Bounds(int(width), int(height))


def right(region: FaceRegion) -> int:
    """Exclusive right edge."""
    return region.x + region.width


def bottom(region: FaceRegion) -> int:
    """Exclusive bottom edge."""
    return region.y + region.height


def area(region: FaceRegion) -> int:
    return region.width * region.height


def is_within(region: FaceRegion, bounds: Bounds) -> bool:
    return region.x >= 0 and region.y >= 0 and right(region) <= bounds.width and bottom(region) <= bounds.height


def intersection_area(a: FaceRegion, b: FaceRegion) -> int:
    w = min(right(a), right(b)) - max(a.x, b.x)
    h = min(bottom(a), bottom(b)) - max(a.y, b.y)
    if w <= 0 or h <= 0:
        return 0
    return w * h


def clip(region: FaceRegion, bounds: Bounds) -> FaceRegion:
    """Intersect ``region`` with the image rectangle ``(0, 0, bounds)``.

    Confidence and landmarks are carried over unchanged.

    Raises:
        EmptyRegion: If the region does not overlap the image at all.
    """
    x0 = max(region.x, 0)
    y0 = max(region.y, 0)
    x1 = min(right(region), bounds.width)
    y1 = min(bottom(region), bounds.height)
    if x1 <= x0 or y1 <= y0:
        raise EmptyRegion(
            f"Region ({region.x}, {region.y}, {region.width}, {region.height}) "
            f"does not overlap image {bounds.width}x{bounds.height}"
        )
    if (x0, y0, x1, y1) == (region.x, region.y, right(region), bottom(region)):
        return region
    return dataclasses.replace(region, x=x0, y=y0, width=x1 - x0, height=y1 - y0)


def scale(region: FaceRegion, factor: float) -> FaceRegion:
    """Scale a region (and its landmarks) about the image origin.

    Sizes are rounded and never drop below one pixel.
    """
    if factor <= 0:
        raise ValueError(f"Scale factor must be positive, got {factor}")
    landmarks = None
    if region.landmarks is not None:
        landmarks = {name: (px * factor, py * factor) for name, (px, py) in region.landmarks.items()}
    return dataclasses.replace(
        region,
        x=round(region.x * factor),
        y=round(region.y * factor),
        width=max(1, round(region.width * factor)),
        height=max(1, round(region.height * factor)),
        landmarks=landmarks,
    )
