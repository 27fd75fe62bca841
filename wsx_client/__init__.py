"""Client for invoking services over WSX (WebSocket) and REST."""

__version__ = "0.1.0"

from .config import ClientConfig, LogLevel, load_config
from .correlation import ResponseCorrelator
from .errors import (
    ConfigError,
    WsxClientError,
    WsxConnectionError,
    WsxHandshakeError,
    WsxInvocationError,
    WsxResponseError,
    WsxTimeout,
)
from .http import WsxRestClient
from .protocol import (
    INVALID_TOKEN,
    PublishOptions,
    build_create_session,
    build_invoke_service,
)
from .result import FailureKind, InvocationResult
from .session import SessionState, WsxClient
from .subscriptions import SubscriptionManager, SubscriptionMap
from .transport import connect_websocket
from .ws_client import WsxWsClient, WsxWsMessage, WsxWsMessageType

__all__ = [
    "INVALID_TOKEN",
    "ClientConfig",
    "ConfigError",
    "FailureKind",
    "InvocationResult",
    "LogLevel",
    "PublishOptions",
    "ResponseCorrelator",
    "SessionState",
    "SubscriptionManager",
    "SubscriptionMap",
    "WsxClient",
    "WsxClientError",
    "WsxConnectionError",
    "WsxHandshakeError",
    "WsxInvocationError",
    "WsxResponseError",
    "WsxRestClient",
    "WsxTimeout",
    "WsxWsClient",
    "WsxWsMessage",
    "WsxWsMessageType",
    "__version__",
    "build_create_session",
    "build_invoke_service",
    "connect_websocket",
    "load_config",
]
