"""
Order validation.

A candidate order is a full 2000x2000 RGBA image. Every pixel, transparent
or not, must be an exact palette colour. Checks short-circuit on the first
failure and have no side effects.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

import numpy as np
from PIL import Image

from ..palette import RGBA_BUFFER_SIZE, pack_rgb, palette_keys, to_coords

logger = logging.getLogger(__name__)

WRONG_DIMENSIONS = "File has to be 2000x2000!"
UNREADABLE_FILE = "Error reading file!"

_PALETTE_KEYS = palette_keys()


class OrderDecodeError(Exception):
    """Uploaded payload is not a decodable image."""


@dataclass(frozen=True)
class OrderRejection:
    """Why a candidate order was refused."""

    reason: str
    x: int | None = None
    y: int | None = None


def decode_png(data: bytes) -> np.ndarray:
    """Decode image bytes into a flat RGBA uint8 buffer."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            rgba = img.convert("RGBA")
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise OrderDecodeError(UNREADABLE_FILE) from e
    return np.asarray(rgba, dtype=np.uint8).reshape(-1)


def validate_pixels(pixels: bytes | bytearray | np.ndarray) -> OrderRejection | None:
    """Check a flat RGBA buffer against size and palette constraints.

    Returns:
        None when accepted, otherwise the rejection with the first offending
        pixel in raster scan order
    """
    if isinstance(pixels, (bytes, bytearray, memoryview)):
        flat = np.frombuffer(pixels, dtype=np.uint8)
    else:
        flat = np.asarray(pixels, dtype=np.uint8).reshape(-1)

    if flat.size != RGBA_BUFFER_SIZE:
        return OrderRejection(WRONG_DIMENSIONS)

    valid = np.isin(pack_rgb(flat.reshape(-1, 4)), _PALETTE_KEYS)
    if not valid.all():
        # argmin on a bool array lands on the first False
        index = int(np.argmin(valid))
        x, y = to_coords(index)
        return OrderRejection(f"Pixel at {x}, {y} has invalid color.", x=x, y=y)

    return None


def validate_order(data: bytes) -> OrderRejection | None:
    """Decode and validate an uploaded order image."""
    try:
        pixels = decode_png(data)
    except OrderDecodeError as e:
        logger.warning(f"Order upload not decodable: {e.__cause__}")
        return OrderRejection(UNREADABLE_FILE)
    return validate_pixels(pixels)
