"""
WebSocket client for the command server.

On every (re)connect the agent asks for the current map and announces its
brand. The connection is re-established after a fixed delay, forever.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from enum import Enum

import websockets
import websockets.exceptions

from ..protocol import (
    ErrorMessage,
    MapMessage,
    PongMessage,
    ProtocolError,
    ToastMessage,
    parse_server_message,
)

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_URL = "ws://localhost:3987/api/ws"
DEFAULT_BRAND = "placebotV1"


class CommandState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class CommandStats:
    """Statistics for the command client."""

    def __init__(self) -> None:
        self.connections: int = 0
        self.disconnections: int = 0
        self.messages_received: int = 0
        self.protocol_errors: int = 0
        self.maps_received: int = 0


class CommandClient:
    """Agent side of the command protocol."""

    def __init__(
        self,
        url: str = DEFAULT_COMMAND_URL,
        brand: str = DEFAULT_BRAND,
        on_map: Callable[[str, str | None], object] | None = None,
        reconnect_delay: float = 1.0,
        ping_interval: float = 5.0,
    ) -> None:
        self._url = url
        self._brand = brand
        self._on_map = on_map
        self._reconnect_delay = reconnect_delay
        self._ping_interval = ping_interval
        self._state = CommandState.DISCONNECTED
        self._ws = None
        self._stats = CommandStats()

    @property
    def state(self) -> CommandState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == CommandState.CONNECTED

    async def connect(self) -> None:
        """Connect with fixed-delay reconnection. Runs until cancelled."""
        while True:
            try:
                self._state = CommandState.CONNECTING
                logger.info(f"Connecting to command server: {self._url}")

                async with websockets.connect(self._url) as ws:
                    self._ws = ws
                    self._state = CommandState.CONNECTED
                    self._stats.connections += 1
                    logger.info("Connected to command server!")

                    await self._handshake(ws)
                    ping_task = asyncio.create_task(self._ping_loop(ws))
                    try:
                        await self._receive_loop(ws)
                    finally:
                        ping_task.cancel()

            except websockets.exceptions.ConnectionClosed as e:
                logger.warning(f"Command server disconnected: {e}")
            except OSError as e:
                logger.warning(f"Command server connection error: {e}")
            except websockets.exceptions.WebSocketException as e:
                logger.error(f"Command server protocol error: {e}")
            finally:
                self._ws = None
                self._state = CommandState.RECONNECTING
                self._stats.disconnections += 1

            logger.info(f"Reconnecting in {self._reconnect_delay:.1f}s...")
            await asyncio.sleep(self._reconnect_delay)

    async def disconnect(self) -> None:
        if self._ws:
            await self._ws.close()
        self._state = CommandState.DISCONNECTED

    async def send_place_pixel(self, x: int, y: int, color: int) -> None:
        """Report a placement attempt. Dropped while disconnected."""
        await self._send({"type": "placepixel", "x": x, "y": y, "color": color})

    async def _handshake(self, ws) -> None:
        await ws.send(json.dumps({"type": "getmap"}))
        await ws.send(json.dumps({"type": "brand", "brand": self._brand}))

    async def _ping_loop(self, ws) -> None:
        try:
            while True:
                await asyncio.sleep(self._ping_interval)
                await ws.send(json.dumps({"type": "ping"}))
        except websockets.exceptions.ConnectionClosed:
            return

    async def _send(self, payload: dict) -> None:
        ws = self._ws
        if ws is None:
            logger.debug(f"Not connected, dropping {payload['type']}")
            return
        try:
            await ws.send(json.dumps(payload))
        except websockets.exceptions.ConnectionClosed:
            logger.debug(f"Connection closed while sending {payload['type']}")

    async def _receive_loop(self, ws) -> None:
        async for message in ws:
            self._stats.messages_received += 1
            self.handle_message(message)

    def handle_message(self, message: str | bytes) -> None:
        """Dispatch one server frame."""
        try:
            parsed = parse_server_message(message)
        except ProtocolError as e:
            self._stats.protocol_errors += 1
            logger.debug(f"Ignoring server frame: {e.reason}")
            return

        if isinstance(parsed, MapMessage):
            self._stats.maps_received += 1
            if self._on_map:
                self._on_map(parsed.data, parsed.reason)
        elif isinstance(parsed, ToastMessage):
            logger.info(f"Message From Server: {parsed.message}")
        elif isinstance(parsed, ErrorMessage):
            logger.warning(f"Command server error: {parsed.data}")
        elif isinstance(parsed, PongMessage):
            logger.debug("pong")

    def get_stats(self) -> dict:
        return {
            "state": self._state.value,
            "url": self._url,
            "brand": self._brand,
            "connections": self._stats.connections,
            "disconnections": self._stats.disconnections,
            "messages_received": self._stats.messages_received,
            "protocol_errors": self._stats.protocol_errors,
            "maps_received": self._stats.maps_received,
        }
