"""
Command dispatch for one agent frame.

Every message type is processable in every connection state; a valid
brand only changes how the connection is counted.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel

from ..protocol import (
    BrandCommand,
    ErrorMessage,
    GetMapCommand,
    MapMessage,
    PingCommand,
    PlacePixelCommand,
    PongMessage,
    ProtocolError,
    parse_command,
)
from .registry import ConnectionRegistry
from .storage import HistoryStore

logger = logging.getLogger(__name__)


class CommandHandler:
    """Applies agent commands to the registry and builds replies."""

    def __init__(self, registry: ConnectionRegistry, store: HistoryStore):
        self._registry = registry
        self._store = store

    def handle(self, conn_id: int, raw: str | bytes) -> BaseModel | None:
        """Process one frame. Returns the reply to send, if any."""
        try:
            command = parse_command(raw)
        except ProtocolError as e:
            return ErrorMessage(data=e.reason)

        if command is None:
            return None

        if isinstance(command, BrandCommand):
            self._registry.set_brand(conn_id, command.brand)
            logger.debug(f"Client {conn_id} identified as {command.brand}")
            return None
        if isinstance(command, GetMapCommand):
            return MapMessage(data=self._store.current().file, reason=None)
        if isinstance(command, PingCommand):
            return PongMessage()
        if isinstance(command, PlacePixelCommand):
            self._registry.touch(conn_id)
            return None

        raise TypeError(f"Unhandled command type: {type(command).__name__}")
