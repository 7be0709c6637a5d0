"""Redaction settings and their loaders.

Settings come from three places, later ones overriding earlier ones:

* the defaults on :class:`RedactionSettings`,
* ``REDACT_*`` environment variables / Function App settings
  (:func:`settings_from_env`),
* per-request query parameters (:func:`settings_from_params`).

Every loader validates the result, so a bad value raises
:class:`~face_redactor.errors.ConfigurationError` before any image is touched.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Mapping, Optional, Tuple

from .errors import ConfigurationError
from .redaction_types import AnonymizeMode

DEFAULT_MODEL_ID = "facebook/detr-resnet-50"
DEFAULT_ACCEPTED_LABELS: Tuple[str, ...] = ("person", "*face*")
SUPPORTED_OUTPUT_FORMATS = {"jpeg", "png"}


def default_max_workers() -> int:
    return max(1, min(4, os.cpu_count() or 1))


@dataclass(frozen=True)
class RedactionSettings:
    """Options recognised by the pipeline and the batch runner."""

    anonymize_mode: AnonymizeMode = AnonymizeMode.PIXELATE
    pixel_block_size: int = 15
    blur_radius: float = 50.0
    face_fraction: float = 0.4
    target_ppi: float = 150.0
    source_ppi: float = 300.0
    detection_threshold: float = 0.5
    accepted_labels: Tuple[str, ...] = DEFAULT_ACCEPTED_LABELS
    output_quality: float = 0.9
    output_format: str = "jpeg"
    detector_model_id: str = DEFAULT_MODEL_ID
    max_workers: int = field(default_factory=default_max_workers)

    @property
    def scale(self) -> float:
        return self.target_ppi / self.source_ppi

    def validate(self) -> "RedactionSettings":
        """Return ``self`` if every option is usable, else raise."""
        if not isinstance(self.anonymize_mode, AnonymizeMode):
            raise ConfigurationError(
                f"anonymize_mode must be one of {_mode_names()}, "
                f"got {self.anonymize_mode!r}"
            )
        if isinstance(self.pixel_block_size, bool) or not isinstance(
            self.pixel_block_size, int
        ):
            raise ConfigurationError("pixel_block_size must be an integer")
        if self.pixel_block_size < 1:
            raise ConfigurationError(
                f"pixel_block_size must be >= 1, got {self.pixel_block_size}"
            )
        if self.blur_radius <= 0:
            raise ConfigurationError(
                f"blur_radius must be > 0, got {self.blur_radius}"
            )
        if not 0.0 < self.face_fraction <= 1.0:
            raise ConfigurationError(
                f"face_fraction must be in (0, 1], got {self.face_fraction}"
            )
        if self.target_ppi <= 0 or self.source_ppi <= 0:
            raise ConfigurationError(
                "target_ppi and source_ppi must both be > 0, "
                f"got {self.target_ppi} / {self.source_ppi}"
            )
        if not 0.0 <= self.detection_threshold <= 1.0:
            raise ConfigurationError(
                f"detection_threshold must be in [0, 1], got {self.detection_threshold}"
            )
        if not self.accepted_labels or not all(
            isinstance(label, str) and label.strip() for label in self.accepted_labels
        ):
            raise ConfigurationError("accepted_labels must be non-empty strings")
        if not 0.0 < self.output_quality <= 1.0:
            raise ConfigurationError(
                f"output_quality must be in (0, 1], got {self.output_quality}"
            )
        if self.output_format not in SUPPORTED_OUTPUT_FORMATS:
            raise ConfigurationError(
                f"output_format must be one of {sorted(SUPPORTED_OUTPUT_FORMATS)}, "
                f"got {self.output_format!r}"
            )
        if not self.detector_model_id:
            raise ConfigurationError("detector_model_id must not be empty")
        if self.max_workers < 1:
            raise ConfigurationError(
                f"max_workers must be >= 1, got {self.max_workers}"
            )
        return self


def _mode_names() -> str:
    return ", ".join(mode.value for mode in AnonymizeMode)


def parse_mode(value: str) -> AnonymizeMode:
    try:
        return AnonymizeMode(value.strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"Unsupported anonymize mode {value!r}; use {_mode_names()}"
        ) from None


def parse_output_format(value: str) -> str:
    normalized = value.strip().lower()
    if normalized == "jpg":
        return "jpeg"
    return normalized


def parse_labels(value: str) -> Tuple[str, ...]:
    return tuple(label.strip() for label in value.split(",") if label.strip())


_CONVERTERS: Dict[str, Callable[[str], object]] = {
    "anonymize_mode": parse_mode,
    "pixel_block_size": int,
    "blur_radius": float,
    "face_fraction": float,
    "target_ppi": float,
    "source_ppi": float,
    "detection_threshold": float,
    "accepted_labels": parse_labels,
    "output_quality": float,
    "output_format": parse_output_format,
    "detector_model_id": str.strip,
    "max_workers": int,
}

ENV_VARS: Dict[str, str] = {
    "anonymize_mode": "REDACT_ANONYMIZE_MODE",
    "pixel_block_size": "REDACT_PIXEL_BLOCK_SIZE",
    "blur_radius": "REDACT_BLUR_RADIUS",
    "face_fraction": "REDACT_FACE_FRACTION",
    "target_ppi": "REDACT_TARGET_PPI",
    "source_ppi": "REDACT_SOURCE_PPI",
    "detection_threshold": "REDACT_DETECTION_THRESHOLD",
    "accepted_labels": "REDACT_ACCEPTED_LABELS",
    "output_quality": "REDACT_OUTPUT_QUALITY",
    "output_format": "REDACT_OUTPUT_FORMAT",
    "detector_model_id": "REDACT_DETECTOR_MODEL",
    "max_workers": "REDACT_MAX_WORKERS",
}

# Query parameters accepted by the HTTP endpoints.
QUERY_PARAMS: Dict[str, str] = {
    "anonymize_mode": "mode",
    "pixel_block_size": "block_size",
    "blur_radius": "blur_radius",
    "face_fraction": "face_fraction",
    "target_ppi": "target_ppi",
    "source_ppi": "source_ppi",
    "detection_threshold": "threshold",
    "accepted_labels": "labels",
    "output_quality": "quality",
    "output_format": "format",
}


def _apply_overrides(
    base: RedactionSettings,
    values: Mapping[str, Optional[str]],
    names: Mapping[str, str],
) -> RedactionSettings:
    overrides: Dict[str, object] = {}
    for attr, key in names.items():
        raw = values.get(key)
        if raw is None or not str(raw).strip():
            continue
        try:
            overrides[attr] = _CONVERTERS[attr](str(raw))
        except ConfigurationError:
            raise
        except ValueError:
            raise ConfigurationError(f"Invalid value {raw!r} for {key}") from None
    return replace(base, **overrides).validate()


def settings_from_env(
    environ: Optional[Mapping[str, str]] = None,
    base: Optional[RedactionSettings] = None,
) -> RedactionSettings:
    """Build settings from ``REDACT_*`` environment variables."""
    env = os.environ if environ is None else environ
    return _apply_overrides(base or RedactionSettings(), env, ENV_VARS)


def settings_from_params(
    params: Mapping[str, Optional[str]],
    base: Optional[RedactionSettings] = None,
) -> RedactionSettings:
    """Apply HTTP query-string overrides on top of ``base``."""
    return _apply_overrides(base or RedactionSettings(), params, QUERY_PARAMS)
