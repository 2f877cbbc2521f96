"""Tests for order validation."""

import numpy as np
import pytest

from placebot.palette import RGBA_BUFFER_SIZE
from placebot.server.validator import (
    UNREADABLE_FILE,
    WRONG_DIMENSIONS,
    OrderDecodeError,
    decode_png,
    validate_order,
    validate_pixels,
)

from .conftest import make_png, make_raster


class TestValidatePixels:
    """Test size and palette checks over raw RGBA buffers."""

    def test_accepts_all_white(self):
        assert validate_pixels(make_raster()) is None

    def test_accepts_raw_bytes(self):
        assert validate_pixels(make_raster().tobytes()) is None

    @pytest.mark.parametrize("size", [0, RGBA_BUFFER_SIZE - 4, RGBA_BUFFER_SIZE + 4])
    def test_rejects_wrong_length(self, size):
        rejection = validate_pixels(np.zeros(size, dtype=np.uint8))
        assert rejection is not None
        assert rejection.reason == WRONG_DIMENSIONS

    def test_reports_first_offender_in_scan_order(self):
        raster = make_raster()
        raster[10, 5] = (1, 2, 3, 255)  # x=5, y=10
        raster[3, 1500] = (1, 2, 3, 255)  # x=1500, y=3, earlier in scan order
        rejection = validate_pixels(raster)
        assert rejection.reason == "Pixel at 1500, 3 has invalid color."
        assert (rejection.x, rejection.y) == (1500, 3)

    def test_transparent_pixels_are_still_checked(self):
        raster = make_raster()
        raster[0, 0] = (1, 2, 3, 0)
        rejection = validate_pixels(raster)
        assert (rejection.x, rejection.y) == (0, 0)

    def test_transparent_palette_colour_is_accepted(self):
        raster = make_raster(color=(0, 0, 0, 0))
        assert validate_pixels(raster) is None

    def test_last_pixel_is_checked(self):
        raster = make_raster()
        raster[1999, 1999] = (254, 255, 255, 255)
        rejection = validate_pixels(raster)
        assert (rejection.x, rejection.y) == (1999, 1999)


class TestValidateOrder:
    """Test decoding plus validation of uploaded images."""

    def test_white_png_accepted(self, white_png):
        assert validate_order(white_png) is None

    def test_wrong_dimensions_png(self):
        rejection = validate_order(make_png(size=(1999, 2000)))
        assert rejection.reason == WRONG_DIMENSIONS

    def test_off_palette_pixel_png(self):
        rejection = validate_order(make_png(pixels={(42, 7): (10, 20, 30, 255)}))
        assert rejection.reason == "Pixel at 42, 7 has invalid color."

    def test_garbage_bytes(self):
        rejection = validate_order(b"definitely not a png")
        assert rejection.reason == UNREADABLE_FILE

    def test_decode_png_raises_on_garbage(self):
        with pytest.raises(OrderDecodeError):
            decode_png(b"\x89PNG broken")

    def test_decode_png_is_flat_rgba(self, white_png):
        pixels = decode_png(white_png)
        assert pixels.shape == (RGBA_BUFFER_SIZE,)
        assert pixels[:4].tolist() == [255, 255, 255, 255]
