"""Test helpers: synthetic images, stub detectors and storage settings."""

import io
import json
import os
import threading
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import numpy as np
import pytest
from PIL import Image

from face_redactor.redaction_types import BoundingBox, PixelBuffer


ROOT = Path(__file__).resolve().parents[1]
LOCAL_SETTINGS = ROOT / "local.settings.json"

PERSON_BOX = BoundingBox(
    xmin=0.1, ymin=0.1, xmax=0.3, ymax=0.5, label="person", score=0.9
)


def gradient_pixels(width: int, height: int, channels: int = 4) -> np.ndarray:
    """Return a uint8 image whose pixels differ from their neighbours."""
    ys, xs = np.mgrid[0:height, 0:width]
    planes = [
        (xs * 3) % 256,
        (ys * 5) % 256,
        (xs * 7 + ys * 13) % 256,
        (xs + ys) % 256,
    ]
    return np.stack(planes[:channels], axis=-1).astype(np.uint8)


def gradient_buffer(width: int, height: int, channels: int = 4) -> PixelBuffer:
    return PixelBuffer(gradient_pixels(width, height, channels))


def image_bytes(
    width: int, height: int, *, fmt: str = "PNG", mode: str = "RGB"
) -> bytes:
    """Encode a gradient test image."""
    pixels = gradient_pixels(width, height, channels=len(mode))
    img = Image.fromarray(pixels if len(mode) > 1 else pixels[:, :, 0])
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


class RecordingDetector:
    """Detector stub that returns fixed boxes and counts calls."""

    def __init__(
        self,
        boxes: Sequence[BoundingBox] = (),
        on_detect: Optional[Callable[[PixelBuffer], None]] = None,
    ) -> None:
        self.boxes = list(boxes)
        self.on_detect = on_detect
        self.calls = 0
        self.thresholds: List[Optional[float]] = []
        self._lock = threading.Lock()

    def detect(
        self, buffer: PixelBuffer, *, threshold: Optional[float] = None
    ) -> List[BoundingBox]:
        with self._lock:
            self.calls += 1
            self.thresholds.append(threshold)
        if self.on_detect is not None:
            self.on_detect(buffer)
        return list(self.boxes)


class FailingDetector:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    def detect(
        self, buffer: PixelBuffer, *, threshold: Optional[float] = None
    ) -> List[BoundingBox]:
        raise self.exc


def get_devstore_connection_string() -> str:
    """Return the dev store connection string from env or skip."""
    connection = os.environ.get("AZURE_STORAGE_CONNECTION_STRING")
    if not connection or "devstoreaccount1" not in connection:
        pytest.skip("AZURE_STORAGE_CONNECTION_STRING for dev store not configured.")
    assert connection is not None
    return connection


def load_settings() -> dict:
    """Load values from local.settings.json."""
    if not LOCAL_SETTINGS.exists():
        return {}
    try:
        data = json.loads(LOCAL_SETTINGS.read_text(encoding="utf-8-sig"))
    except ValueError:
        return {}
    return data.get("Values", {})


def normalize_connection_string(connection: str) -> str:
    """Expand shorthand dev storage connection strings for Azurite."""
    if not connection:
        return connection
    if "usedevelopmentstorage=true" in connection.lower():
        return get_devstore_connection_string()
    return connection


def get_storage_connection(monkeypatch: Optional[pytest.MonkeyPatch] = None) -> str:
    """Resolve storage connection string from env first, then local.settings.json."""
    env_connection = os.environ.get("AZURE_STORAGE_CONNECTION_STRING")
    if env_connection:
        connection = normalize_connection_string(env_connection)
        if monkeypatch:
            monkeypatch.setenv("AZURE_STORAGE_CONNECTION_STRING", connection)
        return connection

    values = load_settings()
    connection = values.get("AZURE_STORAGE_CONNECTION_STRING") or ""
    if not connection:
        pytest.skip(
            "AZURE_STORAGE_CONNECTION_STRING not configured in env or local.settings.json"
        )

    normalized = normalize_connection_string(connection)
    if monkeypatch:
        monkeypatch.setenv("AZURE_STORAGE_CONNECTION_STRING", normalized)
    return normalized
