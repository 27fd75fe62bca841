"""Client error types for WSX and REST service invocations."""

from __future__ import annotations

from typing import Any


class WsxClientError(Exception):
    """Base error for WSX client failures."""


class WsxTimeout(WsxClientError):
    """Timeout while communicating with the server."""


class WsxConnectionError(WsxClientError):
    """Network connection to the server failed."""


class WsxHandshakeError(WsxClientError):
    """WebSocket handshake failed."""


class WsxResponseError(WsxClientError):
    """HTTP response error from the server."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class WsxInvocationError(WsxClientError):
    """The server answered but the service did not return an OK result."""

    def __init__(self, result: str | None, message: str, body: Any = None) -> None:
        super().__init__(message)
        self.result = result
        self.body = body


class ConfigError(WsxClientError):
    """Client configuration is missing or invalid."""
