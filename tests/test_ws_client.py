"""Tests for WsxWsClient WebSocket wrapper and connect_websocket."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest
from websockets.exceptions import ConnectionClosed, InvalidURI
from websockets.frames import Close

from wsx_client.errors import (
    WsxClientError,
    WsxConnectionError,
    WsxHandshakeError,
    WsxTimeout,
)
from wsx_client.transport.ws import check_address, connect_websocket
from wsx_client.ws_client import (
    WsxWsClient,
    WsxWsMessage,
    WsxWsMessageType,
)


class AsyncIteratorMock:
    """Helper class to create a proper async iterator mock."""

    def __init__(self, items: list, *, raise_on_iter: Exception | None = None):
        self._items = items
        self._index = 0
        self._raise_on_iter = raise_on_iter
        self.close = AsyncMock()
        self.send = AsyncMock()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._index >= len(self._items):
            if self._raise_on_iter is not None:
                raise self._raise_on_iter
            raise StopAsyncIteration
        item = self._items[self._index]
        self._index += 1
        return item


async def _connected(mock_ws) -> WsxWsClient:
    with patch("wsx_client.ws_client.connect_websocket", return_value=mock_ws):
        client = WsxWsClient()
        await client.connect("ws://host/api")
    return client


class TestWsxWsMessage:
    """Tests for WsxWsMessage dataclass."""

    def test_create_text_message(self):
        msg = WsxWsMessage(type=WsxWsMessageType.TEXT, data="hello")
        assert msg.type == WsxWsMessageType.TEXT
        assert msg.data == "hello"
        assert msg.close_code is None

    def test_message_is_frozen(self):
        msg = WsxWsMessage(type=WsxWsMessageType.TEXT, data="test")
        with pytest.raises(AttributeError):
            msg.data = "modified"  # type: ignore[misc]


class TestWsxWsClientConnect:
    """Tests for WsxWsClient.connect()."""

    async def test_connect_success(self):
        mock_ws = AsyncMock()

        with patch(
            "wsx_client.ws_client.connect_websocket",
            return_value=mock_ws,
        ) as mock_connect:
            client = WsxWsClient()
            await client.connect("ws://host/api")

            mock_connect.assert_called_once_with(
                "ws://host/api",
                ping_interval=20,
                timeout=15.0,
            )
            assert client._ws is mock_ws
            assert client.is_open

    async def test_connect_propagates_errors(self):
        with patch(
            "wsx_client.ws_client.connect_websocket",
            side_effect=WsxConnectionError("Connection failed"),
        ):
            client = WsxWsClient()
            with pytest.raises(WsxConnectionError, match="Connection failed"):
                await client.connect("ws://host/api")


class TestWsxWsClientSendAndClose:
    async def test_send_json_success(self):
        mock_ws = AsyncMock()
        client = await _connected(mock_ws)

        await client.send_json({"meta": {"id": "c.1"}})

        mock_ws.send.assert_called_once_with('{"meta": {"id": "c.1"}}')

    async def test_send_json_not_connected(self):
        client = WsxWsClient()
        with pytest.raises(WsxConnectionError, match="not connected"):
            await client.send_json({"meta": {}})

    async def test_send_json_on_closed_connection(self):
        mock_ws = AsyncMock()
        mock_ws.send.side_effect = ConnectionClosed(None, None)
        client = await _connected(mock_ws)

        with pytest.raises(WsxConnectionError, match="closed"):
            await client.send_json({"meta": {}})

    async def test_close_with_code_and_reason(self):
        mock_ws = AsyncMock()
        client = await _connected(mock_ws)

        await client.close(1000, "bye")

        mock_ws.close.assert_called_once_with(1000, "bye")

    async def test_close_not_connected(self):
        client = WsxWsClient()
        await client.close()


class TestWsxWsClientIteration:
    """Tests for WsxWsClient async iteration."""

    async def test_iter_not_connected(self):
        client = WsxWsClient()
        with pytest.raises(WsxConnectionError, match="not connected"):
            client.__aiter__()

    async def test_iter_skips_binary_and_ends_closed(self):
        client = await _connected(AsyncIteratorMock(["text1", b"\x00\x01", "text2"]))

        messages = [msg async for msg in client]

        assert [m.data for m in messages[:2]] == ["text1", "text2"]
        assert messages[-1].type == WsxWsMessageType.CLOSED
        assert len(messages) == 3

    async def test_server_close_reports_received_code(self):
        closed = ConnectionClosed(Close(1011, "restarting"), None)
        client = await _connected(AsyncIteratorMock(["hello"], raise_on_iter=closed))

        messages = [msg async for msg in client]

        assert messages[-1].type == WsxWsMessageType.CLOSED
        assert messages[-1].close_code == 1011
        assert messages[-1].close_reason == "restarting"

    async def test_local_close_reports_own_code(self):
        mock_ws = AsyncIteratorMock([])
        client = await _connected(mock_ws)
        await client.close(1000, "Client disconnecting id:'a' name:'b'")

        messages = [msg async for msg in client]

        assert messages == [
            WsxWsMessage(
                type=WsxWsMessageType.CLOSED,
                close_code=1000,
                close_reason="Client disconnecting id:'a' name:'b'",
            )
        ]

    async def test_iter_unexpected_error(self):
        client = await _connected(
            AsyncIteratorMock([], raise_on_iter=RuntimeError("Unexpected"))
        )

        messages = [msg async for msg in client]

        assert len(messages) == 1
        assert messages[0].type == WsxWsMessageType.ERROR


class TestWsxWsClientDecodeJson:
    """Tests for WsxWsClient.decode_json()."""

    def test_decode_valid_json(self):
        msg = WsxWsMessage(
            type=WsxWsMessageType.TEXT,
            data=json.dumps({"meta": {"id": "s.1", "in_reply_to": "c.1"}}),
        )
        assert WsxWsClient.decode_json(msg)["meta"]["in_reply_to"] == "c.1"

    def test_decode_non_text_raises(self):
        msg = WsxWsMessage(type=WsxWsMessageType.CLOSED)
        with pytest.raises(WsxClientError, match="Only TEXT messages"):
            WsxWsClient.decode_json(msg)

    def test_decode_non_object_raises(self):
        msg = WsxWsMessage(type=WsxWsMessageType.TEXT, data="[1, 2]")
        with pytest.raises(WsxClientError, match="not a JSON object"):
            WsxWsClient.decode_json(msg)

    def test_decode_invalid_json_raises(self):
        msg = WsxWsMessage(type=WsxWsMessageType.TEXT, data="not valid json {")
        with pytest.raises(json.JSONDecodeError):
            WsxWsClient.decode_json(msg)


class TestConnectWebsocket:
    """Tests for connect_websocket error translation."""

    async def test_connect_returns_connection(self):
        connection = AsyncMock()
        with patch(
            "wsx_client.transport.ws.websockets.connect",
            AsyncMock(return_value=connection),
        ) as mock_connect:
            result = await connect_websocket("ws://host/api", ping_interval=None)

        assert result is connection
        assert mock_connect.call_args.args == ("ws://host/api",)
        assert mock_connect.call_args.kwargs["ping_interval"] is None

    async def test_timeout(self):
        with patch(
            "wsx_client.transport.ws.websockets.connect",
            AsyncMock(side_effect=TimeoutError()),
        ):
            with pytest.raises(WsxTimeout):
                await connect_websocket("ws://host/api")

    async def test_invalid_uri(self):
        with patch(
            "wsx_client.transport.ws.websockets.connect",
            AsyncMock(side_effect=InvalidURI("ws://host:x", "bad port")),
        ):
            with pytest.raises(WsxHandshakeError, match="Handshake with"):
                await connect_websocket("ws://host/api")

    @pytest.mark.parametrize("address", ["nope", "http://host/api", "ws:///api"])
    async def test_rejects_non_websocket_address(self, address):
        with patch("wsx_client.transport.ws.websockets.connect") as mock_connect:
            with pytest.raises(WsxHandshakeError, match="Not a WebSocket address"):
                await connect_websocket(address)

        mock_connect.assert_not_called()

    def test_check_address_accepts_secure_url(self):
        assert check_address("wss://host:443/api") == "wss://host:443/api"

    async def test_refused(self):
        with patch(
            "wsx_client.transport.ws.websockets.connect",
            AsyncMock(side_effect=ConnectionRefusedError()),
        ):
            with pytest.raises(WsxConnectionError):
                await connect_websocket("ws://host/api")
