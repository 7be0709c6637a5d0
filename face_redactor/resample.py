"""Uniform rescaling of pixel buffers to a target density."""

from __future__ import annotations

import math
from typing import Tuple

import cv2

from .redaction_types import PixelBuffer


def scale_for(target_ppi: float, source_ppi: float) -> float:
    """Scale factor that converts ``source_ppi`` to ``target_ppi``."""
    if target_ppi <= 0 or source_ppi <= 0:
        raise ValueError("target_ppi and source_ppi must be > 0")
    return target_ppi / source_ppi


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def scaled_size(width: int, height: int, scale: float) -> Tuple[int, int]:
    """Return ``(width, height)`` after scaling, each at least one pixel."""
    if scale <= 0:
        raise ValueError(f"scale must be > 0, got {scale}")
    return (
        max(1, round_half_up(width * scale)),
        max(1, round_half_up(height * scale)),
    )


def resample(buffer: PixelBuffer, scale: float) -> PixelBuffer:
    """Return a new buffer scaled by ``scale`` on both axes.

    Shrinking uses area averaging and enlarging uses bilinear interpolation,
    neither of which rings. The input buffer is left untouched.
    """
    new_width, new_height = scaled_size(buffer.width, buffer.height, scale)
    if (new_width, new_height) == (buffer.width, buffer.height):
        return buffer.copy()

    shrinking = new_width * new_height < buffer.width * buffer.height
    interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR
    resized = cv2.resize(
        buffer.pixels, (new_width, new_height), interpolation=interpolation
    )
    # cv2 drops a trailing singleton channel axis.
    return PixelBuffer(resized.reshape(new_height, new_width, buffer.channels))
