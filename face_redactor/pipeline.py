"""Single-image redaction pipeline.

Each image moves through ``DECODING -> DETECTING -> REDACTING -> RESAMPLING
-> ENCODING -> DONE``. A stage either hands its output to the next one or
raises the :class:`~face_redactor.errors.PipelineError` subclass for that
stage; nothing is retried and no partial result is produced.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional, Type, Union

from .anonymize import anonymize_regions
from .detector import Detector
from .errors import (
    DecodeError,
    DetectionError,
    EncodeError,
    PipelineError,
    RedactionError,
    ResampleError,
)
from .image_io import decode_image, encode_image, mime_type_for
from .redaction_types import ItemFailure, ProcessedResult, Stage
from .regions import adapt_boxes
from .resample import resample
from .settings import RedactionSettings

logger = logging.getLogger(__name__)


@contextmanager
def _stage(
    name: str, stage: Stage, error_cls: Type[PipelineError]
) -> Iterator[None]:
    logger.debug("%s: %s", name, stage.value)
    try:
        yield
    except PipelineError:
        raise
    except Exception as exc:
        raise error_cls(f"{stage.value} failed: {exc}", stage=stage) from exc


def failure_from_error(name: str, exc: PipelineError) -> ItemFailure:
    return ItemFailure(
        source_name=name, stage=exc.stage, kind=exc.kind, message=str(exc)
    )


class RedactionPipeline:
    """Decode, redact, resample and re-encode one image at a time.

    The pipeline holds no per-image state, so one instance can serve many
    threads as long as its detector is thread-safe.
    """

    def __init__(
        self, detector: Detector, settings: Optional[RedactionSettings] = None
    ) -> None:
        self.detector = detector
        self.settings = (settings or RedactionSettings()).validate()

    def process(self, image_bytes: bytes, name: str) -> ProcessedResult:
        """Run every stage on ``image_bytes`` or raise the failing stage's error."""
        settings = self.settings

        with _stage(name, Stage.DECODING, DecodeError):
            buffer = decode_image(image_bytes)

        with _stage(name, Stage.DETECTING, DetectionError):
            boxes = self.detector.detect(
                buffer, threshold=settings.detection_threshold
            )
            boxes = [b for b in boxes if b.score >= settings.detection_threshold]

        with _stage(name, Stage.REDACTING, RedactionError):
            regions = adapt_boxes(
                boxes,
                buffer.width,
                buffer.height,
                face_fraction=settings.face_fraction,
                accepted_labels=settings.accepted_labels,
            )
            redacted = anonymize_regions(
                buffer,
                regions,
                settings.anonymize_mode,
                block_size=settings.pixel_block_size,
                blur_radius=settings.blur_radius,
            )

        with _stage(name, Stage.RESAMPLING, ResampleError):
            scaled = resample(buffer, settings.scale)

        with _stage(name, Stage.ENCODING, EncodeError):
            data = encode_image(
                scaled,
                image_format=settings.output_format,
                quality=settings.output_quality,
            )

        logger.info(
            "Redacted %d face region(s) in %s (%dx%d -> %dx%d)",
            redacted,
            name,
            buffer.width,
            buffer.height,
            scaled.width,
            scaled.height,
        )
        return ProcessedResult(
            id=uuid.uuid4().hex,
            source_name=name,
            data=data,
            width=scaled.width,
            height=scaled.height,
            faces_detected=redacted,
            mime_type=mime_type_for(settings.output_format),
        )

    def process_one(
        self, image_bytes: bytes, name: str
    ) -> Union[ProcessedResult, ItemFailure]:
        """Like :meth:`process`, but return per-image errors as a failure."""
        try:
            return self.process(image_bytes, name)
        except PipelineError as exc:
            logger.warning(
                "Failed to process %s during %s: %s", name, exc.stage.value, exc
            )
            return failure_from_error(name, exc)


def process_one(
    image_bytes: bytes, name: str, pipeline: RedactionPipeline
) -> Union[ProcessedResult, ItemFailure]:
    return pipeline.process_one(image_bytes, name)
