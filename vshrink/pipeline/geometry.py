"""Redaction rectangle (on-screen timestamp) for a given video height."""

import math
from typing import Dict
from vshrink.domain.models import CropGeometry

REFERENCE_HEIGHT = 1080

CROP_TABLE: Dict[int, CropGeometry] = {
    720: CropGeometry(width=369, height=71, x=41, y=617),
    1080: CropGeometry(width=554, height=106, x=62, y=926),
}


class InvalidGeometryError(ValueError):
    """Raised when a crop rectangle is requested for a non-positive height."""


def resolve_crop_geometry(height: int) -> CropGeometry:
    """Exact table values for 720/1080, linear scaling (truncated) otherwise."""
    if height <= 0:
        raise InvalidGeometryError(f"Video height must be positive, got {height}")

    exact = CROP_TABLE.get(height)
    if exact is not None:
        return exact

    scale = height / float(REFERENCE_HEIGHT)
    ref = CROP_TABLE[REFERENCE_HEIGHT]
    return CropGeometry(
        width=int(math.floor(scale * ref.width)),
        height=int(math.floor(scale * ref.height)),
        x=int(math.floor(scale * ref.x)),
        y=int(math.floor(scale * ref.y)),
    )
