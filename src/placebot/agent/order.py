"""
Current order as seen by an agent.

A `map` message names an image on the command server; the agent downloads
it, decodes it and precomputes the pixels it asks for. A newer `map`
supersedes a download still in progress.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import aiohttp
import numpy as np

from ..palette import CANVAS_SIZE
from .canvas import decode_rgba
from .work import real_work

logger = logging.getLogger(__name__)

LOAD_RETRY_SECONDS = 3.0


@dataclass(frozen=True)
class CurrentOrder:
    """A loaded order: target raster plus the indices it paints."""

    file: str
    reason: str | None
    raster: np.ndarray
    work: np.ndarray

    @classmethod
    def from_raster(cls, file: str, reason: str | None, raster: np.ndarray) -> CurrentOrder:
        return cls(file=file, reason=reason, raster=raster, work=real_work(raster))


class OrderTracker:
    """Downloads announced orders and exposes the latest one."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        maps_url: str,
        retry_seconds: float = LOAD_RETRY_SECONDS,
    ):
        self._session = session
        self._maps_url = maps_url.rstrip("/")
        self._retry_seconds = retry_seconds
        self._order: CurrentOrder | None = None
        self._load_task: asyncio.Task | None = None

    @property
    def order(self) -> CurrentOrder | None:
        return self._order

    def announce(self, file: str, reason: str | None) -> asyncio.Task:
        """Start loading a newly announced order, cancelling any older load."""
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._load_task = asyncio.create_task(self._load(file, reason))
        return self._load_task

    async def close(self) -> None:
        if self._load_task is not None:
            self._load_task.cancel()
            try:
                await self._load_task
            except asyncio.CancelledError:
                pass
            self._load_task = None

    async def _load(self, file: str, reason: str | None) -> CurrentOrder:
        logger.info(f"New map announced: {file} (reason: {reason or 'connected to server'})")
        url = f"{self._maps_url}/{file}"

        while True:
            try:
                raster = await self._download(url)
                break
            except (aiohttp.ClientError, OSError, ValueError) as e:
                logger.warning(f"Error retrieving map {file}: {e}. Retrying in {self._retry_seconds}s...")
                await asyncio.sleep(self._retry_seconds)

        order = await asyncio.to_thread(CurrentOrder.from_raster, file, reason, raster)
        self._order = order
        logger.info(f"New map loaded, {order.work.size} pixels in total")
        return order

    async def _download(self, url: str) -> np.ndarray:
        async with self._session.get(url) as resp:
            resp.raise_for_status()
            data = await resp.read()
        return await asyncio.to_thread(decode_rgba, data, (CANVAS_SIZE, CANVAS_SIZE))
