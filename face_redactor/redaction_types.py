"""Data structures shared by the redaction pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np


class Stage(str, Enum):
    """Pipeline states, in processing order."""

    QUEUED = "queued"
    DECODING = "decoding"
    DETECTING = "detecting"
    REDACTING = "redacting"
    RESAMPLING = "resampling"
    ENCODING = "encoding"
    DONE = "done"


class AnonymizeMode(str, Enum):
    PIXELATE = "pixelate"
    BLUR = "blur"


@dataclass
class PixelBuffer:
    """Decoded raster stored as a ``(height, width, channels)`` uint8 array."""

    pixels: np.ndarray

    def __post_init__(self) -> None:
        if self.pixels.ndim == 2:
            self.pixels = self.pixels[:, :, np.newaxis]
        if self.pixels.ndim != 3:
            raise ValueError(
                f"Pixel array must be 2-D or 3-D, got shape {self.pixels.shape}"
            )

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def channels(self) -> int:
        return int(self.pixels.shape[2])

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.pixels.copy())


@dataclass(frozen=True)
class BoundingBox:
    """Normalized detector box in ``[0, 1]`` coordinates."""

    xmin: float
    ymin: float
    xmax: float
    ymax: float
    label: str
    score: float = 1.0

    def __post_init__(self) -> None:
        for name in ("xmin", "ymin", "xmax", "ymax", "score"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name}={value} is outside [0, 1]")
        if self.xmin >= self.xmax or self.ymin >= self.ymax:
            raise ValueError(
                f"Degenerate box ({self.xmin}, {self.ymin}, {self.xmax}, {self.ymax})"
            )


@dataclass(frozen=True)
class FaceRegion:
    """Pixel-space rectangle to redact."""

    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height

    def clip(self, width: int, height: int) -> "FaceRegion":
        """Clip to ``[0, width) x [0, height)``; the result may be empty."""
        x1 = max(0, min(self.x, width))
        y1 = max(0, min(self.y, height))
        x2 = max(x1, min(self.x + self.width, width))
        y2 = max(y1, min(self.y + self.height, height))
        return FaceRegion(x=x1, y=y1, width=x2 - x1, height=y2 - y1)


@dataclass(frozen=True)
class ProcessedResult:
    """Encoded output of one successful pipeline run."""

    id: str
    source_name: str
    data: bytes = field(repr=False)
    width: int
    height: int
    faces_detected: int
    mime_type: str = "image/jpeg"

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.source_name,
            "width": self.width,
            "height": self.height,
            "faces_detected": self.faces_detected,
            "mime_type": self.mime_type,
            "bytes": len(self.data),
        }


@dataclass(frozen=True)
class ItemFailure:
    """Why one input produced no result."""

    source_name: str
    stage: Stage
    kind: str
    message: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.source_name,
            "stage": self.stage.value,
            "kind": self.kind,
            "message": self.message,
        }


@dataclass(frozen=True)
class ItemOutcome:
    """Completion event for one submitted input."""

    index: int
    source_name: str
    result: Optional[ProcessedResult] = None
    failure: Optional[ItemFailure] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


@dataclass
class BatchOutcome:
    """Outcomes of a batch run keyed by submission index."""

    outcomes: Dict[int, ItemOutcome] = field(default_factory=dict)

    def add(self, outcome: ItemOutcome) -> None:
        self.outcomes[outcome.index] = outcome

    def _ordered(self) -> List[ItemOutcome]:
        return [self.outcomes[idx] for idx in sorted(self.outcomes)]

    @property
    def results(self) -> List[ProcessedResult]:
        return [o.result for o in self._ordered() if o.result is not None]

    @property
    def failures(self) -> List[ItemFailure]:
        return [o.failure for o in self._ordered() if o.failure is not None]

    @property
    def succeeded(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def __len__(self) -> int:
        return len(self.outcomes)
