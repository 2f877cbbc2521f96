"""
Placement submission to the painting service (GraphQL setPixel mutation).

Coordinates are sent tile-local, together with the tile's canvasIndex.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import aiohttp

from ..palette import TILE_SIZE, tile_id

if TYPE_CHECKING:
    from .auth import TokenProvider

logger = logging.getLogger(__name__)

DEFAULT_GQL_URL = "https://gql-realtime-2.reddit.com/query"

SET_PIXEL_QUERY = (
    "mutation setPixel($input: ActInput!) {\n"
    "  act(input: $input) {\n"
    "    data {\n"
    "      ... on BasicMessage {\n"
    "        id\n"
    "        data {\n"
    "          ... on GetUserCooldownResponseMessageData {\n"
    "            nextAvailablePixelTimestamp\n"
    "            __typename\n"
    "          }\n"
    "          ... on SetPixelResponseMessageData {\n"
    "            timestamp\n"
    "            __typename\n"
    "          }\n"
    "          __typename\n"
    "        }\n"
    "        __typename\n"
    "      }\n"
    "      __typename\n"
    "    }\n"
    "    __typename\n"
    "  }\n"
    "}\n"
)


class PlacementError(Exception):
    """The placement request did not produce a JSON response."""


def set_pixel_payload(x: int, y: int, color: int) -> dict[str, Any]:
    return {
        "operationName": "setPixel",
        "variables": {
            "input": {
                "actionName": "r/replace:set_pixel",
                "PixelMessageData": {
                    "coordinate": {"x": x % TILE_SIZE, "y": y % TILE_SIZE},
                    "colorIndex": color,
                    "canvasIndex": tile_id(x, y),
                },
            }
        },
        "query": SET_PIXEL_QUERY,
    }


class PlacementClient:
    """Submits single-pixel placements."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        tokens: TokenProvider,
        gql_url: str = DEFAULT_GQL_URL,
    ):
        self._session = session
        self._tokens = tokens
        self._gql_url = gql_url

    async def place(self, x: int, y: int, color: int) -> Any:
        """Submit a placement and return the decoded response body.

        Both success and rate-limited responses are returned as-is; the
        caller decides what they mean.
        """
        headers = {
            "origin": "https://hot-potato.reddit.com",
            "referer": "https://hot-potato.reddit.com/",
            "apollographql-client-name": "mona-lisa",
            "Authorization": f"Bearer {self._tokens.token}",
            "Content-Type": "application/json",
        }
        try:
            async with self._session.post(
                self._gql_url, json=set_pixel_payload(x, y, color), headers=headers
            ) as resp:
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, json.JSONDecodeError) as e:
            raise PlacementError(f"placement at {x}, {y} failed: {e}") from e
