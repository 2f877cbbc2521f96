"""
Shared test fixtures for pytest
"""

import io

import numpy as np
import pytest
from PIL import Image

from placebot.palette import CANVAS_SIZE

WHITE = (255, 255, 255, 255)


def make_png(size=(CANVAS_SIZE, CANVAS_SIZE), color=WHITE, pixels=None) -> bytes:
    """PNG bytes of a solid image, with optional {(x, y): rgba} overrides."""
    img = Image.new("RGBA", size, color)
    for (x, y), rgba in (pixels or {}).items():
        img.putpixel((x, y), rgba)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def make_raster(color=WHITE, size=CANVAS_SIZE) -> np.ndarray:
    """Solid (size, size, 4) RGBA raster."""
    raster = np.empty((size, size, 4), dtype=np.uint8)
    raster[:, :] = color
    return raster


@pytest.fixture
def white_png() -> bytes:
    return make_png()


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir()
    return path
