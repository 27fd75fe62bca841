"""Pytest configuration and fixtures for wsx_client tests."""

from __future__ import annotations

import asyncio
import itertools
import json
from collections.abc import AsyncIterator, Callable, Iterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from wsx_client import ClientConfig, WsxConnectionError
from wsx_client.ws_client import WsxWsClient, WsxWsMessage, WsxWsMessageType

ServiceHandler = Callable[[Any], "dict[str, Any] | None"]


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    json_data: dict[str, Any] | None = None,
    text_data: str | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        text_data: Data to return from text() call

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status

    if json_data is not None:
        response.json.return_value = json_data
    if text_data is not None:
        response.text.return_value = text_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


def make_config(**overrides: Any) -> ClientConfig:
    """Client config with short timeouts suited to tests."""
    values: dict[str, Any] = {
        "address": "ws://host/api",
        "client_name": "test-client",
        "username": "user1",
        "secret": "secret1",
        "client_id": "cid-1",
        "poll_interval": 0.01,
        "max_poll_attempts": 20,
        "reconnect_base_delay": 0.01,
        "reconnect_max_delay": 0.05,
    }
    values.update(overrides)
    return ClientConfig(**values)


async def wait_for_condition(
    predicate: Callable[[], bool], timeout: float = 1.0
) -> None:
    """Poll ``predicate`` until it holds or fail the test."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            pytest.fail("Condition not met in time")
        await asyncio.sleep(0.005)


class FakeWsClient:
    """In-memory stand-in for WsxWsClient driven by a FakeServer."""

    decode_json = staticmethod(WsxWsClient.decode_json)
    server: FakeServer

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed: tuple[int, str] | None = None
        self._queue: asyncio.Queue[WsxWsMessage] = asyncio.Queue()

    async def connect(
        self, address: str, *, ping_interval: int | None = 20, timeout: float = 15.0
    ) -> None:
        self.address = address
        self.server.connect_attempts += 1
        if self.server.refuse:
            raise WsxConnectionError("Connection refused")
        self.server.connections.append(self)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed is None:
            self.closed = (code, reason)
            self._queue.put_nowait(
                WsxWsMessage(
                    type=WsxWsMessageType.CLOSED, close_code=code, close_reason=reason
                )
            )

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self.closed is not None:
            raise WsxConnectionError("WebSocket is closed")
        self.sent.append(payload)
        self.server.handle(self, payload)

    def push(self, envelope: dict[str, Any]) -> None:
        """Deliver an envelope from the server to the client."""
        self._queue.put_nowait(
            WsxWsMessage(type=WsxWsMessageType.TEXT, data=json.dumps(envelope))
        )

    def push_raw(self, data: str) -> None:
        self._queue.put_nowait(WsxWsMessage(type=WsxWsMessageType.TEXT, data=data))

    def server_close(self, code: int = 1011, reason: str = "Server restarting") -> None:
        """Close the connection from the server side."""
        self.closed = (code, reason)
        self._queue.put_nowait(
            WsxWsMessage(type=WsxWsMessageType.CLOSED, close_code=code, close_reason=reason)
        )

    def __aiter__(self) -> AsyncIterator[WsxWsMessage]:
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[WsxWsMessage]:
        while True:
            msg = await self._queue.get()
            yield msg
            if msg.type is WsxWsMessageType.CLOSED:
                return


class FakeServer:
    """Answers create-session and invoke-service requests like a WSX server.

    Services map to handlers returning the response ``data``; a handler
    returning None leaves the request unanswered.
    """

    def __init__(self) -> None:
        self.connections: list[FakeWsClient] = []
        self.connect_attempts = 0
        self.refuse = False
        self.session_data: dict[str, Any] | None = None
        self.services: dict[str, ServiceHandler] = {}
        self._tokens = (f"T{i}" for i in itertools.count(1))
        self._ids = itertools.count(1)

        self.client_class = type("BoundWsClient", (FakeWsClient,), {"server": self})

    @property
    def ws(self) -> FakeWsClient:
        return self.connections[-1]

    def reply_to(self, request: dict[str, Any], data: dict[str, Any]) -> dict[str, Any]:
        return {
            "meta": {
                "id": f"server.{next(self._ids)}",
                "timestamp": "2026-01-01T00:00:00+00:00",
                "in_reply_to": request["meta"]["id"],
            },
            "data": data,
        }

    def handle(self, ws: FakeWsClient, payload: dict[str, Any]) -> None:
        action = payload["meta"].get("action")
        if action == "create-session":
            data = self.session_data if self.session_data is not None else {
                "token": next(self._tokens)
            }
            ws.push(self.reply_to(payload, data))
        elif action == "invoke-service":
            handler = self.services.get(payload["data"]["service"])
            response = handler(payload["data"]["request"]) if handler else {}
            if response is not None:
                ws.push(self.reply_to(payload, response))

    def requests(
        self, *, action: str | None = None, service: str | None = None
    ) -> list[dict[str, Any]]:
        found = []
        for ws in self.connections:
            for payload in ws.sent:
                if action and payload["meta"].get("action") != action:
                    continue
                if service and payload.get("data", {}).get("service") != service:
                    continue
                found.append(payload)
        return found


@pytest.fixture
def fake_server() -> Iterator[FakeServer]:
    """Patch the client's WebSocket wrapper with an in-memory server."""
    server = FakeServer()
    with patch("wsx_client.session.WsxWsClient", server.client_class):
        yield server
