"""WebSocket helpers for the WSX transport."""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlsplit

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from ..errors import (
    WsxConnectionError,
    WsxHandshakeError,
    WsxTimeout,
)

_LOGGER = logging.getLogger(__name__)

WS_SCHEMES = ("ws", "wss")


def check_address(address: str) -> str:
    """Return ``address`` if it is a ws:// or wss:// URL with a host.

    Raises:
        WsxHandshakeError: If the address cannot name a WSX endpoint
    """
    parts = urlsplit(address)
    if parts.scheme not in WS_SCHEMES or not parts.hostname:
        raise WsxHandshakeError(f"Not a WebSocket address: {address!r}")
    return address


async def connect_websocket(
    address: str,
    *,
    ping_interval: int | None = 20,
    timeout: float = 15.0,
    close_timeout: float = 5.0,
) -> ClientConnection:
    """Open a WebSocket to the WSX endpoint at ``address``.

    Frames are unbounded in size since service responses may carry
    arbitrarily large payloads.

    Raises:
        WsxTimeout: If the connection is not open within ``timeout``
        WsxHandshakeError: If the address is invalid or the upgrade is rejected
        WsxConnectionError: If the network connection fails
    """
    check_address(address)
    _LOGGER.debug("Opening WebSocket to %s (timeout %.1fs)", address, timeout)
    try:
        connection = await asyncio.wait_for(
            websockets.connect(
                address,
                ping_interval=ping_interval,
                close_timeout=close_timeout,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise WsxTimeout(f"Timed out connecting to {address}") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise WsxHandshakeError(f"Handshake with {address} failed: {err}") from err
    except (OSError, WebSocketException) as err:
        raise WsxConnectionError(f"Could not connect to {address}: {err}") from err
    _LOGGER.debug("WebSocket to %s open", address)
    return connection
