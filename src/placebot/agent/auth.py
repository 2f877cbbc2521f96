"""
Access token for the painting service.

The token is embedded in the canvas page as "accessToken":"..." and is
refreshed on a fixed interval.
"""

from __future__ import annotations

import asyncio
import logging
import re

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_PAGE_URL = "https://www.reddit.com/r/place/"
TOKEN_REFRESH_SECONDS = 30 * 60

_TOKEN_PATTERN = re.compile(r'"accessToken":"([^"]+)"')


class TokenError(Exception):
    """No access token could be obtained."""


def extract_access_token(page: str) -> str:
    match = _TOKEN_PATTERN.search(page)
    if match is None:
        raise TokenError("accessToken not found in page")
    return match.group(1)


class TokenProvider:
    """Holds the current access token and keeps it fresh."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        page_url: str = DEFAULT_PAGE_URL,
        refresh_seconds: float = TOKEN_REFRESH_SECONDS,
    ):
        self._session = session
        self._page_url = page_url
        self._refresh_seconds = refresh_seconds
        self._token: str | None = None

    @property
    def token(self) -> str:
        if self._token is None:
            raise TokenError("access token not fetched yet")
        return self._token

    async def refresh(self) -> str:
        """Fetch the canvas page and extract a new token."""
        try:
            async with self._session.get(self._page_url) as resp:
                resp.raise_for_status()
                page = await resp.text()
        except aiohttp.ClientError as e:
            raise TokenError(f"failed to fetch {self._page_url}: {e}") from e

        self._token = extract_access_token(page)
        logger.info("Access token refreshed")
        return self._token

    async def run_refresh_loop(self) -> None:
        """Refresh forever; a failed refresh keeps the previous token."""
        while True:
            await asyncio.sleep(self._refresh_seconds)
            try:
                await self.refresh()
            except TokenError as e:
                logger.warning(f"Token refresh failed, keeping previous token: {e}")
