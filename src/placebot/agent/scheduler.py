"""
Placement scheduling under the painting service's cooldown.

One attempt at a time: assemble the live canvas, diff it against the
order, place one randomly chosen pending pixel, then sleep until the
service's next-allowed timestamp plus a safety margin.

Delays (ms):
- no order loaded yet:             2 000
- canvas assembly failed:         10 000
- nothing left to paint:          30 000
- unparseable placement response: 10 000
- otherwise:                      max(0, nextAvailable + 3 000 - now)
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import numpy as np

from ..models import now_ms
from ..palette import color_index, hex_at, is_palette_color, to_coords
from .canvas import CanvasAssembler, TileFetchError
from .order import CurrentOrder
from .placement import PlacementError
from .work import pending_work, percent_complete

logger = logging.getLogger(__name__)

SAFETY_MARGIN_MS = 3000
FALLBACK_DELAY_MS = 10_000
ASSEMBLY_RETRY_MS = 10_000
IDLE_DELAY_MS = 30_000
ORDER_WAIT_MS = 2_000


class CooldownParseError(Exception):
    """Placement response matched neither known shape."""


@dataclass(frozen=True)
class Cooldown:
    """When the painting service will accept this agent's next pixel."""

    next_allowed_at: float
    rate_limited: bool = False

    def delay_ms(self, now: float) -> int:
        return max(0, int(self.next_allowed_at - now))


def _timestamp(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise CooldownParseError(f"not a timestamp: {value!r}")
    try:
        ts = float(value)
    except (ValueError, OverflowError) as e:
        raise CooldownParseError(f"not a timestamp: {value!r}") from e
    if not math.isfinite(ts):
        raise CooldownParseError(f"not a timestamp: {value!r}")
    return ts


def parse_cooldown(payload: Any) -> Cooldown:
    """Extract the next-allowed instant (margin included) from a response.

    Rate-limited: errors[0].extensions.nextAvailablePixelTs
    Success:      data.act.data[0].data.nextAvailablePixelTimestamp
    """
    try:
        if payload.get("errors"):
            ts = payload["errors"][0]["extensions"]["nextAvailablePixelTs"]
            return Cooldown(_timestamp(ts) + SAFETY_MARGIN_MS, rate_limited=True)
        ts = payload["data"]["act"]["data"][0]["data"]["nextAvailablePixelTimestamp"]
        return Cooldown(_timestamp(ts) + SAFETY_MARGIN_MS)
    except (AttributeError, KeyError, IndexError, TypeError) as e:
        raise CooldownParseError(f"unrecognised placement response: {e!r}") from e


def cooldown_delay_ms(payload: Any, now: float) -> int:
    """Milliseconds to wait before the next attempt."""
    try:
        cooldown = parse_cooldown(payload)
    except CooldownParseError as e:
        logger.warning(f"Error parsing response, trying again in 10 seconds: {e}")
        return FALLBACK_DELAY_MS

    delay = cooldown.delay_ms(now)
    if cooldown.rate_limited:
        logger.info(f"Pixel placed too soon! Next attempt in {delay / 1000:.1f}s")
    else:
        logger.info(f"Pixel placed! Next pixel in {delay / 1000:.1f}s")
    return delay


class OrderSource(Protocol):
    @property
    def order(self) -> CurrentOrder | None: ...


class Placer(Protocol):
    async def place(self, x: int, y: int, color: int) -> Any: ...


class ActivityReporter(Protocol):
    async def send_place_pixel(self, x: int, y: int, color: int) -> None: ...


class PlacementScheduler:
    """The agent's placement loop."""

    def __init__(
        self,
        orders: OrderSource,
        assembler: CanvasAssembler,
        placer: Placer,
        reporter: ActivityReporter | None = None,
        clock: Callable[[], float] = now_ms,
        rng: random.Random | None = None,
    ):
        self._orders = orders
        self._assembler = assembler
        self._placer = placer
        self._reporter = reporter
        self._clock = clock
        self._rng = rng or random.Random()
        self._attempts = 0
        self._last_delay_ms: int | None = None

    async def run(self) -> None:
        """Attempt forever. Cancel the task to stop, including mid-sleep."""
        while True:
            try:
                delay = await self.attempt()
            except Exception:
                logger.exception("Placement attempt failed")
                delay = FALLBACK_DELAY_MS
            await asyncio.sleep(delay / 1000)

    async def attempt(self) -> int:
        """Make at most one placement. Returns the delay until the next attempt."""
        order = self._orders.order
        if order is None:
            return ORDER_WAIT_MS

        try:
            canvas = await self._assembler.assemble()
        except TileFetchError as e:
            logger.warning(f"Error loading canvas, trying again in 10 seconds: {e}")
            return ASSEMBLY_RETRY_MS

        work = pending_work(order.work, order.raster, canvas)
        if work.size == 0:
            logger.info("All pixels are where they should be! Trying again in 30 seconds.")
            return IDLE_DELAY_MS

        index = self.choose(work)
        x, y = to_coords(index)
        hex_color = hex_at(order.raster, index)
        if not is_palette_color(hex_color):
            logger.warning(f"Order colour {hex_color} at {x}, {y} is not in the palette")
            return FALLBACK_DELAY_MS
        color = color_index(hex_color)

        logger.info(
            f"Attempting to place pixel at {x}, {y}... "
            f"({percent_complete(work.size, order.work.size)}% complete, {work.size} left)"
        )

        self._attempts += 1
        if self._reporter is not None:
            await self._reporter.send_place_pixel(x, y, color)

        try:
            response = await self._placer.place(x, y, color)
        except PlacementError as e:
            logger.warning(f"{e}, trying again in 10 seconds")
            return FALLBACK_DELAY_MS

        self._last_delay_ms = cooldown_delay_ms(response, self._clock())
        return self._last_delay_ms

    def choose(self, work: np.ndarray) -> int:
        """Uniformly random pending index, to spread agents over the order."""
        return int(work[self._rng.randrange(work.size)])

    def get_stats(self) -> dict:
        return {"attempts": self._attempts, "last_delay_ms": self._last_delay_ms}
