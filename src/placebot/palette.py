"""
Palette and canvas geometry.

The linear pixel index is the contract between order images, diff results
and placement coordinates: x = i % CANVAS_SIZE, y = i // CANVAS_SIZE.
"""

from __future__ import annotations

import numpy as np

CANVAS_SIZE = 2000
TILE_SIZE = 1000
PIXEL_COUNT = CANVAS_SIZE * CANVAS_SIZE
RGBA_BUFFER_SIZE = PIXEL_COUNT * 4

# Position in this list is the colorIndex understood by the painting service.
PALETTE: tuple[str, ...] = (
    "#6D001A",
    "#BE0039",
    "#FF4500",
    "#FFA800",
    "#FFD635",
    "#FFF8B8",
    "#00A368",
    "#00CC78",
    "#7EED56",
    "#00756F",
    "#009EAA",
    "#00CCC0",
    "#2450A4",
    "#3690EA",
    "#51E9F4",
    "#493AC1",
    "#6A5CFF",
    "#94B3FF",
    "#811E9F",
    "#B44AC0",
    "#E4ABFF",
    "#DE107F",
    "#FF3881",
    "#FF99AA",
    "#6D482F",
    "#9C6926",
    "#FFB470",
    "#000000",
    "#515252",
    "#898D90",
    "#D4D7D9",
    "#FFFFFF",
)

_COLOR_INDEX: dict[str, int] = {color: i for i, color in enumerate(PALETTE)}

TILE_OFFSETS: dict[int, tuple[int, int]] = {
    0: (0, 0),
    1: (TILE_SIZE, 0),
    2: (0, TILE_SIZE),
    3: (TILE_SIZE, TILE_SIZE),
}


def rgb_to_hex(r: int, g: int, b: int) -> str:
    """Canonical uppercase #RRGGBB string."""
    return f"#{int(r):02X}{int(g):02X}{int(b):02X}"


def is_palette_color(hex_color: str) -> bool:
    return hex_color in _COLOR_INDEX


def color_index(hex_color: str) -> int:
    """Palette index for a colour. Raises KeyError for non-members."""
    return _COLOR_INDEX[hex_color]


def palette_keys() -> np.ndarray:
    """Palette colours packed as 24-bit integers (0xRRGGBB)."""
    return np.array([int(color[1:], 16) for color in PALETTE], dtype=np.uint32)


def pack_rgb(rgba: np.ndarray) -> np.ndarray:
    """Pack an (N, 4) uint8 RGBA array into N 24-bit colour keys."""
    rgb = rgba[:, :3].astype(np.uint32)
    return (rgb[:, 0] << 16) | (rgb[:, 1] << 8) | rgb[:, 2]


def to_index(x: int, y: int) -> int:
    return y * CANVAS_SIZE + x


def to_coords(index: int) -> tuple[int, int]:
    return index % CANVAS_SIZE, index // CANVAS_SIZE


def tile_id(x: int, y: int) -> int:
    """Quadrant holding (x, y): (x > 999) + 2 * (y > 999)."""
    return int(x >= TILE_SIZE) + 2 * int(y >= TILE_SIZE)


def tile_offset(tile: int) -> tuple[int, int]:
    """Top-left canvas coordinate of a tile."""
    return TILE_OFFSETS[tile]


def hex_at(raster: np.ndarray, index: int) -> str:
    """Colour of a pixel in an RGBA raster of shape (H, W, 4) or (N*4,)."""
    flat = raster.reshape(-1, 4)
    r, g, b = flat[index, :3]
    return rgb_to_hex(r, g, b)
