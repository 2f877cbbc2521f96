"""
Live canvas reconstruction.

The live canvas is published as four 1000x1000 tiles. For each tile the
agent subscribes to the canvas channel over graphql-ws, waits for the
"full frame" notification naming the current snapshot image, downloads
it and pastes it at the tile's offset. Assembly is all-or-nothing.
"""

from __future__ import annotations

import asyncio
import io
import json
import logging
import random
from typing import TYPE_CHECKING, Protocol

import aiohttp
import numpy as np
import websockets
import websockets.exceptions
from PIL import Image

from ..palette import CANVAS_SIZE, TILE_OFFSETS, TILE_SIZE, tile_offset

if TYPE_CHECKING:
    from .auth import TokenProvider

logger = logging.getLogger(__name__)

DEFAULT_REALTIME_URL = "wss://gql-realtime-2.reddit.com/query"

SUBSCRIBE_QUERY = (
    "subscription replace($input: SubscribeInput!) {\n"
    "  subscribe(input: $input) {\n"
    "    id\n"
    "    ... on BasicMessage {\n"
    "      data {\n"
    "        __typename\n"
    "        ... on FullFrameMessageData {\n"
    "          __typename\n"
    "          name\n"
    "          timestamp\n"
    "        }\n"
    "      }\n"
    "      __typename\n"
    "    }\n"
    "    __typename\n"
    "  }\n"
    "}"
)


class TileFetchError(Exception):
    """A tile could not be fetched or decoded."""


class TileSource(Protocol):
    async def fetch(self, tile: int) -> np.ndarray:
        """Return the tile as a (1000, 1000, 4) uint8 RGBA array."""
        ...


def decode_rgba(data: bytes, size: tuple[int, int]) -> np.ndarray:
    """Decode image bytes to an (H, W, 4) array, checking (width, height)."""
    with Image.open(io.BytesIO(data)) as img:
        if img.size != size:
            raise ValueError(f"expected {size[0]}x{size[1]} image, got {img.size[0]}x{img.size[1]}")
        rgba = img.convert("RGBA")
    return np.asarray(rgba, dtype=np.uint8)


def frame_name(message: str | bytes) -> str | None:
    """Image URL from a subscription frame, if this frame announces one."""
    try:
        parsed = json.loads(message)
        return parsed["payload"]["data"]["subscribe"]["data"]["name"]
    except (json.JSONDecodeError, KeyError, TypeError):
        return None


class RemoteTileSource:
    """Tiles of the live canvas, fetched from the realtime service."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        tokens: TokenProvider,
        realtime_url: str = DEFAULT_REALTIME_URL,
        frame_timeout: float = 30.0,
    ):
        self._session = session
        self._tokens = tokens
        self._realtime_url = realtime_url
        self._frame_timeout = frame_timeout

    async def fetch(self, tile: int) -> np.ndarray:
        try:
            url = await asyncio.wait_for(self._frame_url(tile), timeout=self._frame_timeout)
            async with self._session.get(url) as resp:
                resp.raise_for_status()
                data = await resp.read()
            return decode_rgba(data, (TILE_SIZE, TILE_SIZE))
        except TileFetchError:
            raise
        except (
            aiohttp.ClientError,
            websockets.exceptions.WebSocketException,
            OSError,
            TimeoutError,
            ValueError,
        ) as e:
            raise TileFetchError(f"tile {tile}: {e}") from e

    async def _frame_url(self, tile: int) -> str:
        """Subscribe to a tile and wait until a frame is announced."""
        async with websockets.connect(self._realtime_url, subprotocols=["graphql-ws"]) as ws:
            await ws.send(
                json.dumps(
                    {
                        "type": "connection_init",
                        "payload": {"Authorization": f"Bearer {self._tokens.token}"},
                    }
                )
            )
            await ws.send(json.dumps(self._subscribe_message(tile)))

            async for message in ws:
                name = frame_name(message)
                if name:
                    return f"{name}?noCache={random.random() * 1e13:.0f}"

        raise TileFetchError(f"tile {tile}: subscription closed before a frame was announced")

    @staticmethod
    def _subscribe_message(tile: int) -> dict:
        return {
            "id": "1",
            "type": "start",
            "payload": {
                "variables": {
                    "input": {
                        "channel": {
                            "teamOwner": "AFD2022",
                            "category": "CANVAS",
                            "tag": str(tile),
                        }
                    }
                },
                "extensions": {},
                "operationName": "replace",
                "query": SUBSCRIBE_QUERY,
            },
        }


class CanvasAssembler:
    """Stitches the four tiles into one 2000x2000 RGBA raster."""

    def __init__(self, source: TileSource):
        self._source = source

    async def assemble(self) -> np.ndarray:
        """Fetch every tile into a fresh buffer.

        Raises:
            TileFetchError: any tile failed; no partial canvas is returned
        """
        canvas = np.zeros((CANVAS_SIZE, CANVAS_SIZE, 4), dtype=np.uint8)

        for tile in sorted(TILE_OFFSETS):
            try:
                pixels = await self._source.fetch(tile)
            except TileFetchError:
                raise
            except Exception as e:
                raise TileFetchError(f"tile {tile}: {e}") from e

            if pixels.shape != (TILE_SIZE, TILE_SIZE, 4):
                raise TileFetchError(f"tile {tile}: unexpected shape {pixels.shape}")

            x, y = tile_offset(tile)
            canvas[y : y + TILE_SIZE, x : x + TILE_SIZE] = pixels

        return canvas
