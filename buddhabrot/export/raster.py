from __future__ import annotations

import io
from typing import Union

import numpy as np
from PIL import Image

from buddhabrot.color import render_buffer
from buddhabrot.errors import ExportFailure, InvalidParameters
from buddhabrot.params import ColorScheme
from buddhabrot.util.logging_setup import get_logger

# Lossy containers that take a quality setting.
_LOSSY_FORMATS = ("JPEG", "WEBP")


def _check_quality(quality: float) -> float:
    if not 0.0 <= quality <= 1.0:
        raise InvalidParameters(f"quality must be within [0, 1], got {quality!r}")
    return float(quality)


def encode_pixels(pixels: np.ndarray, *, image_format: str = "PNG", quality: float = 0.95) -> bytes:
    quality = _check_quality(quality)
    fmt = image_format.upper()
    if fmt == "JPG":
        fmt = "JPEG"
    options = {}
    if fmt in _LOSSY_FORMATS:
        options["quality"] = max(1, min(100, int(round(quality * 100))))
    elif fmt == "PNG":
        options["optimize"] = True

    try:
        img = Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8))
        bio = io.BytesIO()
        img.save(bio, format=fmt, **options)
    except (KeyError, OSError, ValueError) as e:
        raise ExportFailure(f"Could not encode {pixels.shape[1]}x{pixels.shape[0]} image as {fmt}: {e}") from e
    return bio.getvalue()


def export_raster(buffer, scheme: Union[ColorScheme, str], *, image_format: str = "PNG",
                  quality: float = 0.95) -> bytes:
    """Colorize every pixel of `buffer` and encode it with Pillow."""
    if buffer is None or buffer.density.size == 0:
        raise ExportFailure("Nothing to export: no accumulated density.")
    pixels = render_buffer(buffer, scheme)
    data = encode_pixels(pixels, image_format=image_format, quality=quality)
    get_logger().info("Raster export %sx%s %s -> %s bytes", buffer.width, buffer.height, image_format.upper(), len(data))
    return data
