"""Object detection backends for locating people and faces.

The pipeline only depends on the :class:`Detector` protocol. The production
backend is :class:`DetrDetector`, a Hugging Face DETR model that is loaded on
first use and then shared by every pipeline that holds the same instance.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

import numpy as np
import torch
from PIL import Image

os.environ.setdefault("USE_TF", "0")
os.environ.setdefault("USE_TORCH", "1")
os.environ.setdefault("TRANSFORMERS_NO_TF", "1")
os.environ.setdefault("TRANSFORMERS_NO_FLAX", "1")

from transformers import DetrForObjectDetection, DetrImageProcessor

from .errors import DetectionError
from .redaction_types import BoundingBox, PixelBuffer
from .settings import DEFAULT_MODEL_ID

logger = logging.getLogger(__name__)


class Detector(Protocol):
    def detect(
        self, buffer: PixelBuffer, *, threshold: Optional[float] = None
    ) -> List[BoundingBox]:
        """Return normalized boxes found in ``buffer`` scoring at least ``threshold``."""
        ...


def _clamp_unit(value: float) -> float:
    return max(0.0, min(float(value), 1.0))


def clamp_box(
    xmin: float,
    ymin: float,
    xmax: float,
    ymax: float,
    *,
    label: str,
    score: float,
) -> Optional[BoundingBox]:
    """Clamp normalized coordinates to ``[0, 1]``; return None if degenerate."""
    x1, y1, x2, y2 = (_clamp_unit(v) for v in (xmin, ymin, xmax, ymax))
    if x2 <= x1 or y2 <= y1:
        return None
    return BoundingBox(
        xmin=x1, ymin=y1, xmax=x2, ymax=y2, label=label, score=_clamp_unit(score)
    )


def to_rgb_image(buffer: PixelBuffer) -> Image.Image:
    if buffer.channels == 1:
        return Image.fromarray(buffer.pixels[:, :, 0]).convert("RGB")
    return Image.fromarray(np.ascontiguousarray(buffer.pixels[:, :, :3]))


class StaticDetector:
    """Detector that always reports the same boxes."""

    def __init__(self, boxes: Sequence[BoundingBox] = ()) -> None:
        self._boxes = list(boxes)

    def detect(
        self, buffer: PixelBuffer, *, threshold: Optional[float] = None
    ) -> List[BoundingBox]:
        if threshold is None:
            return list(self._boxes)
        return [box for box in self._boxes if box.score >= threshold]


@dataclass(frozen=True)
class ModelBundle:
    """Grouped model assets for inference."""

    model: DetrForObjectDetection
    processor: DetrImageProcessor
    device: torch.device
    model_id: str


def _resolve_device() -> torch.device:
    return torch.device("cuda" if torch.cuda.is_available() else "cpu")


class DetrDetector:
    """DETR object detector with lazy, at-most-once model loading.

    ``load`` is guarded by a lock with a double check, so threads that call
    ``detect`` while the model is loading block until that single load
    finishes and then reuse it. A failed load is not remembered; the next
    call tries again. Inference on the shared model is serialized.
    """

    def __init__(
        self,
        model_id: str = DEFAULT_MODEL_ID,
        *,
        threshold: float = 0.5,
        device: Optional[torch.device] = None,
    ) -> None:
        self.model_id = model_id
        self.threshold = threshold
        self._device = device
        self._bundle: Optional[ModelBundle] = None
        self._load_lock = threading.Lock()
        self._infer_lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._bundle is not None

    def load(self) -> ModelBundle:
        """Return the model bundle, loading it on first use."""
        bundle = self._bundle
        if bundle is not None:
            return bundle

        with self._load_lock:
            if self._bundle is not None:
                return self._bundle
            logger.info("Loading detection model %s", self.model_id)
            try:
                device = self._device or _resolve_device()
                model = DetrForObjectDetection.from_pretrained(self.model_id)
                model.to(device)
                model.eval()
                processor = DetrImageProcessor.from_pretrained(self.model_id)
            except Exception as exc:
                logger.exception("Failed to load model %s", self.model_id)
                raise DetectionError(
                    f"Detection model {self.model_id} is unavailable: {exc}"
                ) from exc
            self._bundle = ModelBundle(
                model=model, processor=processor, device=device, model_id=self.model_id
            )
            logger.info("Detection model %s ready on %s", self.model_id, device)
            return self._bundle

    def detect(
        self, buffer: PixelBuffer, *, threshold: Optional[float] = None
    ) -> List[BoundingBox]:
        """Run inference; ``threshold`` overrides the detector default for this call."""
        if threshold is None:
            threshold = self.threshold
        bundle = self.load()
        img = to_rgb_image(buffer)
        try:
            with self._infer_lock:
                inputs = bundle.processor(images=img, return_tensors="pt")
                inputs = inputs.to(bundle.device)
                with torch.no_grad():
                    outputs = bundle.model(**inputs)
                # Without target_sizes the boxes stay normalized to [0, 1].
                results = bundle.processor.post_process_object_detection(
                    outputs, threshold=threshold
                )
        except Exception as exc:
            raise DetectionError(f"Inference failed: {exc}") from exc

        id2label = getattr(bundle.model.config, "id2label", None) or {}
        boxes: List[BoundingBox] = []
        for score, label, box in zip(
            results[0]["scores"], results[0]["labels"], results[0]["boxes"]
        ):
            label_id = int(label.item())
            xmin, ymin, xmax, ymax = box.tolist()
            clamped = clamp_box(
                xmin,
                ymin,
                xmax,
                ymax,
                label=str(id2label.get(label_id, label_id)),
                score=float(score.item()),
            )
            if clamped is not None:
                boxes.append(clamped)
        logger.debug("Detector returned %d box(es)", len(boxes))
        return boxes
