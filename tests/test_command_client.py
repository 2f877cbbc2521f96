"""Tests for the agent's command server client."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest

from placebot.agent.command import CommandClient, CommandState


class TestCommandClient:
    """Test CommandClient class."""

    def test_initialization(self):
        client = CommandClient(url="ws://example:3987/api/ws", brand="testV1")
        assert client.state == CommandState.DISCONNECTED
        assert not client.is_connected
        stats = client.get_stats()
        assert stats["brand"] == "testV1"
        assert stats["connections"] == 0

    def test_map_message_announces_order(self):
        on_map = MagicMock()
        client = CommandClient(on_map=on_map)

        client.handle_message('{"type": "map", "data": "1649000000000.png", "reason": "new art"}')

        on_map.assert_called_once_with("1649000000000.png", "new art")
        assert client.get_stats()["maps_received"] == 1

    def test_map_reply_without_reason(self):
        on_map = MagicMock()
        client = CommandClient(on_map=on_map)
        client.handle_message('{"type": "map", "data": "blank.png", "reason": null}')
        on_map.assert_called_once_with("blank.png", None)

    @pytest.mark.parametrize(
        "message",
        [
            '{"type": "toast", "message": "hello"}',
            '{"type": "error", "data": "Unknown command!"}',
            '{"type": "pong"}',
        ],
    )
    def test_other_messages_do_not_announce(self, message):
        on_map = MagicMock()
        client = CommandClient(on_map=on_map)
        client.handle_message(message)
        on_map.assert_not_called()
        assert client.get_stats()["protocol_errors"] == 0

    @pytest.mark.parametrize("message", ["garbage", '{"type": "launch"}', "{}"])
    def test_bad_frames_are_ignored(self, message):
        on_map = MagicMock()
        client = CommandClient(on_map=on_map)
        client.handle_message(message)
        on_map.assert_not_called()
        assert client.get_stats()["protocol_errors"] == 1

    @pytest.mark.asyncio
    async def test_handshake_requests_map_then_brand(self):
        client = CommandClient(brand="testV1")
        ws = AsyncMock()
        await client._handshake(ws)

        sent = [json.loads(call.args[0]) for call in ws.send.await_args_list]
        assert sent == [{"type": "getmap"}, {"type": "brand", "brand": "testV1"}]

    @pytest.mark.asyncio
    async def test_place_pixel_dropped_while_disconnected(self):
        client = CommandClient()
        await client.send_place_pixel(1, 2, 3)  # no socket, no error

    @pytest.mark.asyncio
    async def test_place_pixel_report(self):
        client = CommandClient()
        ws = AsyncMock()
        client._ws = ws
        await client.send_place_pixel(1, 2, 3)
        ws.send.assert_awaited_once()
        assert json.loads(ws.send.await_args.args[0]) == {
            "type": "placepixel",
            "x": 1,
            "y": 2,
            "color": 3,
        }


class TestReconnect:
    """Test the fixed-delay reconnect loop."""

    @pytest.mark.asyncio
    async def test_reconnects_after_fixed_delay(self):
        client = CommandClient(url="ws://unreachable/api/ws", reconnect_delay=1.0)
        sleep = AsyncMock(side_effect=[None, asyncio.CancelledError()])

        with (
            patch("placebot.agent.command.websockets.connect", side_effect=OSError("refused")) as connect,
            patch("placebot.agent.command.asyncio.sleep", sleep),
        ):
            with pytest.raises(asyncio.CancelledError):
                await client.connect()

        assert connect.call_count == 2
        assert sleep.await_args_list == [call(1.0), call(1.0)]
        assert client.state == CommandState.RECONNECTING
        assert client.get_stats()["disconnections"] == 2
        assert client.get_stats()["connections"] == 0
