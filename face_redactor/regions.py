"""Conversion of detector boxes into pixel-space face regions."""

from __future__ import annotations

import math
from fnmatch import fnmatchcase
from typing import Iterable, List, Sequence

from .redaction_types import BoundingBox, FaceRegion
from .settings import DEFAULT_ACCEPTED_LABELS

DEFAULT_FACE_FRACTION = 0.4


def is_accepted_label(
    label: str, accepted_labels: Sequence[str] = DEFAULT_ACCEPTED_LABELS
) -> bool:
    """Case-sensitive glob match of ``label`` against ``accepted_labels``.

    With the defaults this accepts exactly ``person`` and any label that
    contains ``face``.
    """
    if not label:
        return False
    return any(fnmatchcase(label, pattern.strip()) for pattern in accepted_labels)


def box_to_region(
    box: BoundingBox,
    image_width: int,
    image_height: int,
    face_fraction: float = DEFAULT_FACE_FRACTION,
) -> FaceRegion:
    """Map the top ``face_fraction`` of ``box`` to a clipped pixel region."""
    x1 = math.floor(box.xmin * image_width)
    y1 = math.floor(box.ymin * image_height)
    x2 = math.floor(box.xmax * image_width)
    y2 = math.floor(box.ymax * image_height)
    face_height = math.floor((y2 - y1) * face_fraction)
    region = FaceRegion(x=x1, y=y1, width=x2 - x1, height=face_height)
    return region.clip(image_width, image_height)


def adapt_boxes(
    boxes: Iterable[BoundingBox],
    image_width: int,
    image_height: int,
    *,
    face_fraction: float = DEFAULT_FACE_FRACTION,
    accepted_labels: Sequence[str] = DEFAULT_ACCEPTED_LABELS,
) -> List[FaceRegion]:
    """Turn detector boxes into face regions, keeping input order.

    Boxes with other labels and regions that collapse to nothing after
    clipping are dropped. Overlapping boxes are kept as separate regions.
    """
    regions: List[FaceRegion] = []
    for box in boxes:
        if not is_accepted_label(box.label, accepted_labels):
            continue
        region = box_to_region(box, image_width, image_height, face_fraction)
        if region.area == 0:
            continue
        regions.append(region)
    return regions
