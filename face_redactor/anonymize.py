"""Destructive anonymization of rectangular pixel regions.

Two policies are supported:

* ``PIXELATE`` splits the region into square blocks anchored at its top-left
  corner and paints every block with the colour of its own top-left pixel.
  Re-running it on the same region changes nothing.
* ``BLUR`` replaces the region with a Gaussian low-pass of itself. The
  standard deviation matches a CSS ``blur()`` radius, so the default of 50
  leaves no facial detail at normal viewing sizes. Only pixels inside the
  region feed the filter.

Alpha is never modified, and pixels outside the region are never written.
"""

from __future__ import annotations

import logging
from typing import Iterable

import cv2
import numpy as np

from .errors import RedactionError
from .redaction_types import AnonymizeMode, FaceRegion, PixelBuffer

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 15
DEFAULT_BLUR_RADIUS = 50.0

_SUPPORTED_CHANNELS = {1, 3, 4}


def _color_channels(buffer: PixelBuffer) -> int:
    if buffer.pixels.dtype != np.uint8:
        raise RedactionError(f"Expected uint8 pixels, got {buffer.pixels.dtype}")
    if buffer.channels not in _SUPPORTED_CHANNELS:
        raise RedactionError(f"Unsupported channel count {buffer.channels}")
    # RGBA keeps its alpha plane untouched.
    return 3 if buffer.channels == 4 else buffer.channels


def _pixelate(view: np.ndarray, block_size: int) -> None:
    height, width = view.shape[:2]
    samples = view[::block_size, ::block_size]
    blocks = np.repeat(np.repeat(samples, block_size, axis=0), block_size, axis=1)
    view[...] = blocks[:height, :width]


def _blur(view: np.ndarray, radius: float) -> None:
    region = np.ascontiguousarray(view)
    blurred = cv2.GaussianBlur(
        region,
        (0, 0),
        sigmaX=radius,
        sigmaY=radius,
        borderType=cv2.BORDER_REPLICATE,
    )
    view[...] = blurred.reshape(region.shape)


def anonymize(
    buffer: PixelBuffer,
    region: FaceRegion,
    mode: AnonymizeMode = AnonymizeMode.PIXELATE,
    *,
    block_size: int = DEFAULT_BLOCK_SIZE,
    blur_radius: float = DEFAULT_BLUR_RADIUS,
) -> bool:
    """Overwrite ``region`` of ``buffer`` in place.

    Returns ``False`` when the region is empty after clipping (nothing to do).
    """
    if block_size < 1:
        raise ValueError(f"block_size must be >= 1, got {block_size}")
    if blur_radius <= 0:
        raise ValueError(f"blur_radius must be > 0, got {blur_radius}")

    color = _color_channels(buffer)
    clipped = region.clip(buffer.width, buffer.height)
    if clipped.area == 0:
        return False

    view = buffer.pixels[
        clipped.y : clipped.y + clipped.height,
        clipped.x : clipped.x + clipped.width,
        :color,
    ]
    if mode is AnonymizeMode.PIXELATE:
        _pixelate(view, block_size)
    elif mode is AnonymizeMode.BLUR:
        _blur(view, blur_radius)
    else:
        raise ValueError(f"Unknown anonymize mode {mode!r}")
    return True


def anonymize_regions(
    buffer: PixelBuffer,
    regions: Iterable[FaceRegion],
    mode: AnonymizeMode = AnonymizeMode.PIXELATE,
    *,
    block_size: int = DEFAULT_BLOCK_SIZE,
    blur_radius: float = DEFAULT_BLUR_RADIUS,
) -> int:
    """Anonymize each region in order; return how many were non-empty."""
    count = 0
    for region in regions:
        if anonymize(
            buffer, region, mode, block_size=block_size, blur_radius=blur_radius
        ):
            count += 1
    logger.debug("Anonymized %d region(s) with %s", count, mode.value)
    return count
