"""WebSocket client wrapper for WSX connections."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from .errors import WsxClientError, WsxConnectionError
from .transport.ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class WsxWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class WsxWsMessage:
    """Normalized WebSocket message payload.

    CLOSED messages carry the close code and reason of the close handshake,
    taken from this side when the client closed first.
    """

    type: WsxWsMessageType
    data: str | None = None
    close_code: int | None = None
    close_reason: str | None = None


class WsxWsClient:
    """Wrapper around the websockets library for WSX connections."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None
        self._local_close: tuple[int, str] | None = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    async def connect(
        self,
        address: str,
        *,
        ping_interval: int | None = 20,
        timeout: float = 15.0,
    ) -> None:
        """Connect to the server websocket."""
        self._local_close = None
        self._ws = await connect_websocket(
            address,
            ping_interval=ping_interval,
            timeout=timeout,
        )

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the websocket connection with the given code and reason."""
        if self._ws is not None:
            self._local_close = (code, reason)
            await self._ws.close(code, reason)

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a JSON payload to the websocket."""
        if self._ws is None:
            raise WsxConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as err:
            raise WsxConnectionError("WebSocket is closed") from err

    def __aiter__(self) -> AsyncIterator[WsxWsMessage]:
        if self._ws is None:
            raise WsxConnectionError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[WsxWsMessage]:
        if self._ws is None:
            raise WsxConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                normalized = self._normalize_message(msg)
                if normalized is None:
                    continue
                yield normalized
        except ConnectionClosed as err:
            code, reason = self._close_info(err)
            yield WsxWsMessage(
                type=WsxWsMessageType.CLOSED, close_code=code, close_reason=reason
            )
        except Exception:
            yield WsxWsMessage(type=WsxWsMessageType.ERROR)
        else:
            # Normal iteration completion means the close handshake finished.
            code, reason = self._close_info(None)
            yield WsxWsMessage(
                type=WsxWsMessageType.CLOSED, close_code=code, close_reason=reason
            )

    def _close_info(self, err: ConnectionClosed | None) -> tuple[int | None, str | None]:
        """Return (code, reason) of the close, preferring our own close frame."""
        if self._local_close is not None:
            return self._local_close
        if err is not None and err.rcvd is not None:
            return err.rcvd.code, err.rcvd.reason
        if self._ws is not None:
            return (
                getattr(self._ws, "close_code", None),
                getattr(self._ws, "close_reason", None),
            )
        return None, None

    @staticmethod
    def _normalize_message(msg: Any) -> WsxWsMessage | None:
        """Normalize frames into WsxWsMessage; binary frames are skipped."""
        if isinstance(msg, bytes):
            return None
        if isinstance(msg, str):
            return WsxWsMessage(WsxWsMessageType.TEXT, msg)
        return WsxWsMessage(WsxWsMessageType.TEXT, str(msg))

    @staticmethod
    def decode_json(message: WsxWsMessage) -> dict[str, Any]:
        """Decode a TEXT message payload into JSON."""
        if message.type is not WsxWsMessageType.TEXT:
            raise WsxClientError("Only TEXT messages can be decoded")
        if not isinstance(message.data, str):
            raise WsxClientError("Message data is not a string")
        result = json.loads(message.data)
        if not isinstance(result, dict):
            raise WsxClientError("Message is not a JSON object")
        return result
