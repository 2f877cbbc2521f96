"""
Command protocol between agents and the command server.

JSON text frames carrying a `type` tag (matched case-insensitively).
Each direction is a tagged union; unknown tags are rejected here, at the
deserialization boundary, so handlers only ever see known message types.

Agent -> server: brand, getmap, ping, placepixel
Server -> agent: map, pong, toast, error
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .palette import CANVAS_SIZE, PALETTE

logger = logging.getLogger(__name__)

BRAND_PATTERN = r"^[A-Za-z0-9-]+$"
UNKNOWN_BRAND = "unknown"

PARSE_FAILED = "Failed to parse message!"
MISSING_TYPE = "Data missing type!"
UNKNOWN_COMMAND = "Unknown command!"


class ProtocolError(Exception):
    """A frame that cannot be turned into a known message."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


# ---------------------------------------------------------------------------
# Agent -> server
# ---------------------------------------------------------------------------


class BrandCommand(BaseModel):
    """Self-reported agent identity, used for usage telemetry only."""

    type: Literal["brand"] = "brand"
    brand: str = Field(min_length=1, max_length=32, pattern=BRAND_PATTERN)


class GetMapCommand(BaseModel):
    type: Literal["getmap"] = "getmap"


class PingCommand(BaseModel):
    type: Literal["ping"] = "ping"


class PlacePixelCommand(BaseModel):
    """Activity report sent by an agent each time it attempts a placement."""

    type: Literal["placepixel"] = "placepixel"
    x: int = Field(ge=0, le=CANVAS_SIZE - 1)
    y: int = Field(ge=0, le=CANVAS_SIZE - 1)
    color: int = Field(ge=0, le=len(PALETTE) - 1)


AgentCommand = Annotated[
    Union[BrandCommand, GetMapCommand, PingCommand, PlacePixelCommand],
    Field(discriminator="type"),
]

COMMAND_TYPES = frozenset({"brand", "getmap", "ping", "placepixel"})

_command_adapter: TypeAdapter = TypeAdapter(AgentCommand)


# ---------------------------------------------------------------------------
# Server -> agent
# ---------------------------------------------------------------------------


class MapMessage(BaseModel):
    """Current order. `reason` is None when answering getmap."""

    type: Literal["map"] = "map"
    data: str
    reason: str | None = None


class PongMessage(BaseModel):
    type: Literal["pong"] = "pong"


class ToastMessage(BaseModel):
    type: Literal["toast"] = "toast"
    message: str
    duration: int | None = None
    style: dict[str, Any] | None = None


class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    data: str


ServerMessage = Annotated[
    Union[MapMessage, PongMessage, ToastMessage, ErrorMessage],
    Field(discriminator="type"),
]

SERVER_MESSAGE_TYPES = frozenset({"map", "pong", "toast", "error"})

_server_adapter: TypeAdapter = TypeAdapter(ServerMessage)


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


def _decode_tagged(raw: str | bytes, known: frozenset[str]) -> dict[str, Any]:
    """Decode a frame and normalize its tag. Raises ProtocolError."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
        raise ProtocolError(PARSE_FAILED) from None

    if not isinstance(data, dict):
        raise ProtocolError(PARSE_FAILED)

    msg_type = data.get("type")
    if not msg_type:
        raise ProtocolError(MISSING_TYPE)
    if not isinstance(msg_type, str) or msg_type.lower() not in known:
        raise ProtocolError(UNKNOWN_COMMAND)

    return {**data, "type": msg_type.lower()}


def parse_command(raw: str | bytes) -> AgentCommand | None:
    """Parse an agent frame.

    Returns:
        The command, or None when a known command carries an invalid
        payload (such commands are ignored without a reply).

    Raises:
        ProtocolError: undecodable frame, missing or unknown type
    """
    data = _decode_tagged(raw, COMMAND_TYPES)
    try:
        return _command_adapter.validate_python(data)
    except ValidationError as e:
        logger.debug(f"Ignoring invalid {data['type']} payload: {e.error_count()} errors")
        return None


def parse_server_message(raw: str | bytes) -> ServerMessage:
    """Parse a server frame on the agent side. Raises ProtocolError."""
    data = _decode_tagged(raw, SERVER_MESSAGE_TYPES)
    try:
        return _server_adapter.validate_python(data)
    except ValidationError:
        raise ProtocolError(PARSE_FAILED) from None


def encode(message: BaseModel) -> str:
    """Serialize any protocol message to a text frame."""
    return message.model_dump_json()
