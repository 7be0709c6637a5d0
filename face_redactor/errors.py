"""Exception hierarchy for the redaction pipeline."""

from __future__ import annotations

from typing import Optional

from .redaction_types import Stage


class RedactorError(Exception):
    """Base class for all face redactor errors."""


class ConfigurationError(RedactorError, ValueError):
    """Raised for invalid settings before any image is processed."""


class PipelineError(RedactorError):
    """A per-image failure raised by one stage of the pipeline."""

    stage: Stage = Stage.DONE

    def __init__(self, message: str, *, stage: Optional[Stage] = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    @property
    def kind(self) -> str:
        return type(self).__name__


class DecodeError(PipelineError):
    """Input bytes are corrupt or not a supported image format."""

    stage = Stage.DECODING


class DetectionError(PipelineError):
    """The detector could not be loaded or failed during inference."""

    stage = Stage.DETECTING


class RedactionError(PipelineError):
    """A face region could not be written to the pixel buffer."""

    stage = Stage.REDACTING


class ResampleError(PipelineError):
    stage = Stage.RESAMPLING


class EncodeError(PipelineError):
    """The redacted buffer could not be encoded."""

    stage = Stage.ENCODING
