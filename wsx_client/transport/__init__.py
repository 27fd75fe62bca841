"""Transport layer for the WSX client.

Components:
- ws: opening WebSocket connections
"""

from .ws import check_address, connect_websocket

__all__ = ["check_address", "connect_websocket"]
