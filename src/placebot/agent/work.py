"""
Pixel diffing between an order and the live canvas.

Rasters are RGBA uint8 arrays of shape (2000, 2000, 4) or any shape that
flattens to (4_000_000, 4). Results are int64 arrays of linear pixel
indices. Both functions are pure.
"""

import math

import numpy as np


def _pixels(raster: np.ndarray) -> np.ndarray:
    return np.asarray(raster, dtype=np.uint8).reshape(-1, 4)


def real_work(order_raster: np.ndarray) -> np.ndarray:
    """Indices the order actually asks for (alpha != 0)."""
    return np.flatnonzero(_pixels(order_raster)[:, 3] != 0)


def pending_work(
    candidates: np.ndarray,
    order_raster: np.ndarray,
    live_raster: np.ndarray,
) -> np.ndarray:
    """Candidates whose RGB colour differs between order and live canvas."""
    candidates = np.asarray(candidates, dtype=np.int64)
    if candidates.size == 0:
        return candidates

    target = _pixels(order_raster)[candidates, :3]
    live = _pixels(live_raster)[candidates, :3]
    return candidates[np.any(target != live, axis=1)]


def percent_complete(pending: int, total: int) -> int:
    """Progress as shown to operators: 100 - ceil(pending * 100 / total)."""
    if total == 0:
        return 100
    return 100 - math.ceil(pending * 100 / total)
