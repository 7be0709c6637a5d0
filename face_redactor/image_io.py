"""Image decoding and encoding helpers."""

from __future__ import annotations

from io import BytesIO
from typing import cast

import numpy as np
from PIL import Image, ImageOps

from .errors import DecodeError, EncodeError
from .redaction_types import PixelBuffer

_MIME_TYPES = {"jpeg": "image/jpeg", "png": "image/png"}


def mime_type_for(image_format: str) -> str:
    return _MIME_TYPES.get(image_format.lower(), "application/octet-stream")


def decode_image(image_bytes: bytes) -> PixelBuffer:
    """Decode image bytes into an upright RGBA pixel buffer.

    EXIF orientation is applied to the pixels, and no metadata survives
    the conversion.
    """
    if not image_bytes:
        raise DecodeError("Empty image bytes")
    try:
        img = cast(Image.Image, Image.open(BytesIO(image_bytes)))
        img.load()
        img = ImageOps.exif_transpose(img)
        if img.mode != "RGBA":
            img = img.convert("RGBA")
        pixels = np.array(img, dtype=np.uint8)
    except Exception as exc:
        raise DecodeError(f"Invalid image bytes: {exc}") from exc
    return PixelBuffer(pixels)


def encode_image(
    buffer: PixelBuffer, *, image_format: str = "jpeg", quality: float = 0.9
) -> bytes:
    """Encode ``buffer`` as JPEG or PNG.

    ``quality`` uses the 0-1 scale; JPEG output drops the alpha channel.
    """
    fmt = image_format.lower()
    if fmt not in _MIME_TYPES:
        raise EncodeError(f"Unsupported output format {image_format!r}")

    pixels = buffer.pixels
    if buffer.channels == 1:
        pixels = pixels[:, :, 0]
    try:
        img = Image.fromarray(np.ascontiguousarray(pixels))
        save_kwargs = {"format": fmt.upper()}
        if fmt == "jpeg":
            if img.mode != "RGB":
                img = img.convert("RGB")
            save_kwargs["quality"] = max(1, min(95, int(round(quality * 100))))
            save_kwargs["optimize"] = True
        buf = BytesIO()
        img.save(buf, **save_kwargs)
    except Exception as exc:
        raise EncodeError(f"Failed to encode {fmt}: {exc}") from exc
    return buf.getvalue()
