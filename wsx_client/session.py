"""Long-running WSX client session.

This module provides the client applications use to talk to a server over a
persistent WebSocket connection. It handles:
- Connection management and transparent reconnects
- The create-session handshake that obtains a session token
- Correlating responses to the requests that caused them
- Service invocation and pub/sub publish
- Subscription state that survives reconnects

Usage:
    client = WsxClient(config, when_ready=on_ready, on_message_received=on_msg)
    await client.connect()
    await client.wait_until_ready()
    result = await client.invoke("my.service", {"key": "value"})
    await client.subscribe_or_resume("/my/topic")
    await client.disconnect()
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import Any

from .config import ClientConfig
from .correlation import ResponseCorrelator
from .errors import (
    WsxClientError,
    WsxConnectionError,
    WsxHandshakeError,
    WsxTimeout,
)
from .protocol import (
    CLIENT_CLOSE_CODE,
    INVALID_TOKEN,
    PublishOptions,
    build_create_session,
    build_invoke_service,
    build_publish_request,
    disconnect_reason,
    is_client_close,
    publish_service,
)
from .result import FailureKind, InvocationResult
from .subscriptions import SubscriptionManager, SubscriptionMap
from .ws_client import WsxWsClient, WsxWsMessage, WsxWsMessageType

_LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[
    ["WsxClient", dict[str, Any], "str | None"], Awaitable[None] | None
]
ReadyCallback = Callable[["WsxClient"], Awaitable[None] | None]


class SessionState(Enum):
    """Lifecycle of a client session."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"


class WsxClient:
    """WebSocket client that invokes services and takes part in pub/sub.

    A server-initiated close resets the session token and reconnects,
    running the create-session handshake again. Known subscriptions are
    kept so they can be resumed with ``subscribe_or_resume``.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        when_ready: ReadyCallback | None = None,
        on_message_received: MessageHandler | None = None,
    ) -> None:
        """Initialize client.

        Args:
            config: Identity, credentials and protocol settings
            when_ready: Called with the client after each successful login
            on_message_received: Called with (client, envelope, msg_id) for
                unsolicited messages (msg_id None) and, by default, for
                responses to invocations
        """
        self.config = config
        self.token = INVALID_TOKEN

        # Connection state
        self._ws: WsxWsClient | None = None
        self._state = SessionState.DISCONNECTED
        self._listen_task: asyncio.Task[None] | None = None
        self._session_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._handler_tasks: set[asyncio.Task[None]] = set()
        self._retry_attempts = 0
        self._shutdown_requested = False
        self._authenticated = asyncio.Event()

        # Correlation and pub/sub state
        self.correlator = ResponseCorrelator(config.client_name, verbose=config.verbose)
        self._subscriptions = SubscriptionManager(
            self.invoke,
            namespace=config.service_namespace,
            client_name=config.client_name,
            mapping=SubscriptionMap(),
        )

        # Callbacks
        self._when_ready = when_ready
        self._on_message_received = on_message_received
        self._state_callback: Callable[[SessionState], None] | None = None

    # -------------------------------------------------------------------------
    # Public API: Identity and state
    # -------------------------------------------------------------------------

    @property
    def client_id(self) -> str:
        return self.config.client_id

    @property
    def client_name(self) -> str:
        return self.config.client_name

    @property
    def address(self) -> str:
        return self.config.address

    @property
    def username(self) -> str:
        return self.config.username

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        """True while a connection is open, whether or not logged in yet."""
        return self._state is not SessionState.DISCONNECTED

    @property
    def has_token(self) -> bool:
        return self.token != INVALID_TOKEN

    @property
    def is_authenticated(self) -> bool:
        return self._state is SessionState.AUTHENTICATED and self.has_token

    @property
    def topic_to_sub_key(self) -> Mapping[str, str]:
        return self._subscriptions.mapping.topic_to_sub_key

    @property
    def sub_key_to_topic(self) -> Mapping[str, str]:
        return self._subscriptions.mapping.sub_key_to_topic

    # -------------------------------------------------------------------------
    # Public API: Callbacks
    # -------------------------------------------------------------------------

    def on_ready(self, callback: ReadyCallback) -> None:
        """Register callback invoked with the client after each login."""
        self._when_ready = callback

    def on_message(self, callback: MessageHandler) -> None:
        """Register callback for unsolicited messages and default responses."""
        self._on_message_received = callback

    def on_state_changed(self, callback: Callable[[SessionState], None]) -> None:
        """Register callback for session state changes."""
        self._state_callback = callback

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    async def connect(self) -> bool:
        """Open the connection and start the create-session handshake.

        Returns:
            True if the connection opened, False otherwise (a reconnect is
            scheduled according to the reconnect policy)
        """
        self._shutdown_requested = False
        return await self._connect()

    async def disconnect(self) -> None:
        """Close the connection; a client-initiated close never reconnects."""
        _LOGGER.info("[%s] Disconnecting from %s", self.client_name, self.address)
        self._shutdown_requested = True

        await self._cancel_task(self._reconnect_task)
        await self._cancel_task(self._session_task)
        self._reconnect_task = None
        self._session_task = None
        for task in list(self._handler_tasks):
            await self._cancel_task(task)
        self._handler_tasks.clear()

        if self._ws is not None:
            try:
                await asyncio.wait_for(
                    self._ws.close(
                        CLIENT_CLOSE_CODE,
                        disconnect_reason(self.client_id, self.client_name),
                    ),
                    timeout=2.0,
                )
            except TimeoutError:
                _LOGGER.warning("[%s] WebSocket close timed out", self.client_name)

        await self._cancel_task(self._listen_task)
        self._listen_task = None

        self._ws = None
        self._reset_session()
        _LOGGER.info("[%s] Disconnected from %s", self.client_name, self.address)

    async def wait_until_ready(self, timeout: float | None = None) -> bool:
        """Wait until the session is authenticated.

        Args:
            timeout: Seconds to wait, defaults to the response timeout

        Returns:
            True if a valid session token is available
        """
        if self.has_token:
            return True
        if timeout is None:
            timeout = self.config.response_timeout
        try:
            await asyncio.wait_for(self._authenticated.wait(), timeout)
        except TimeoutError:
            return False
        return self.has_token

    # -------------------------------------------------------------------------
    # Public API: Service Invocation
    # -------------------------------------------------------------------------

    async def send(self, msg_id: str, envelope: dict[str, Any]) -> None:
        """Register ``msg_id`` as awaiting a response and transmit ``envelope``.

        Raises:
            WsxConnectionError: If there is no open connection
        """
        if self._ws is None:
            raise WsxConnectionError("WebSocket is not connected")
        self.correlator.register(msg_id)
        try:
            await self._ws.send_json(envelope)
        except WsxClientError:
            self.correlator.discard(msg_id)
            raise

    async def invoke(
        self,
        service: str,
        request: Any,
        msg_id: str | None = None,
        *,
        on_response: MessageHandler | None = None,
        timeout: float | None = None,
    ) -> InvocationResult:
        """Invoke a service and wait for its response.

        Args:
            service: Name of the service to invoke
            request: JSON-serializable request for the service
            msg_id: Message id to use, generated when omitted
            on_response: Called with (client, envelope, msg_id) on success;
                defaults to the client's message handler
            timeout: Seconds to wait for the session and for the response,
                defaults to poll_interval * max_poll_attempts

        Returns:
            The invocation outcome; failures are reported, not raised
        """
        msg_id = msg_id or self.correlator.new_message_id()
        if timeout is None:
            timeout = self.config.response_timeout

        if not await self.wait_until_ready(timeout):
            _LOGGER.warning(
                "[%s] Cannot invoke '%s': no session token", self.client_name, service
            )
            return InvocationResult.failed(
                msg_id, FailureKind.NOT_AUTHENTICATED, "No valid session token"
            )

        envelope = build_invoke_service(
            msg_id=msg_id,
            client_id=self.client_id,
            client_name=self.client_name,
            token=self.token,
            service=service,
            request=request,
        )
        self._log_verbose("[%s] Invoking service with %s", self.client_name, envelope)

        try:
            await self.send(msg_id, envelope)
        except WsxClientError as err:
            _LOGGER.warning(
                "[%s] Failed to send request to '%s': %s", self.client_name, service, err
            )
            return InvocationResult.failed(msg_id, FailureKind.CONNECTION_LOST, str(err))

        result = await self.correlator.wait(msg_id, timeout)
        if result.ok and result.envelope is not None:
            await self._run_handler(
                on_response or self._handle_response, result.envelope, msg_id
            )
        return result

    async def publish(
        self,
        topic: str,
        data: Any = "",
        options: PublishOptions | None = None,
    ) -> InvocationResult:
        """Publish ``data`` to ``topic``."""
        options = options or PublishOptions()
        msg_id = options.msg_id or self.correlator.new_message_id()
        request = build_publish_request(topic, data, msg_id, options)
        return await self.invoke(
            publish_service(self.config.service_namespace), request, msg_id
        )

    # -------------------------------------------------------------------------
    # Public API: Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe_or_resume(self, topic: str) -> InvocationResult:
        """Subscribe to ``topic``, or resume the subscription if one is known."""
        return await self._subscriptions.subscribe_or_resume(topic)

    async def subscribe(self, topic: str) -> InvocationResult:
        return await self._subscriptions.subscribe(topic)

    async def resume_subscription(self, sub_key: str, topic: str) -> InvocationResult:
        return await self._subscriptions.resume_subscription(sub_key, topic)

    async def unsubscribe(self, sub_key: str, topic: str) -> InvocationResult:
        return await self._subscriptions.unsubscribe(sub_key, topic)

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    async def _connect(self) -> bool:
        if self._shutdown_requested:
            _LOGGER.debug("[%s] Connection aborted: shutdown requested", self.client_name)
            return False

        _LOGGER.info(
            "[%s] Connecting to %s (attempt #%d)",
            self.client_name,
            self.address,
            self._retry_attempts + 1,
        )

        # Clean up existing connection and the tasks bound to it
        await self._cancel_task(self._session_task)
        await self._cancel_task(self._listen_task)
        self._session_task = None
        self._listen_task = None
        if self._ws is not None:
            old_ws, self._ws = self._ws, None
            try:
                await asyncio.wait_for(old_ws.close(), timeout=2.0)
            except TimeoutError:
                _LOGGER.warning(
                    "[%s] Previous WebSocket close timed out", self.client_name
                )
            self._reset_session()

        ws_client = WsxWsClient()
        try:
            await ws_client.connect(
                self.address,
                ping_interval=self.config.ping_interval,
                timeout=self.config.connect_timeout,
            )
        except WsxTimeout:
            _LOGGER.warning("[%s] Connection timeout - server unreachable", self.client_name)
            self._handle_connection_failure()
            return False
        except WsxHandshakeError as err:
            _LOGGER.error("[%s] WebSocket handshake failed: %s", self.client_name, err)
            self._handle_connection_failure()
            return False
        except WsxConnectionError as err:
            _LOGGER.warning("[%s] Connection failed: %s", self.client_name, err)
            self._handle_connection_failure()
            return False

        if self._shutdown_requested:
            await ws_client.close(
                CLIENT_CLOSE_CODE, disconnect_reason(self.client_id, self.client_name)
            )
            return False

        self._ws = ws_client
        self._set_state(SessionState.CONNECTED)
        _LOGGER.info("[%s] Connected to '%s'", self.client_name, self.address)

        self._listen_task = asyncio.create_task(self._listen(ws_client))
        self._session_task = asyncio.create_task(self._create_session())
        return True

    def _set_state(self, state: SessionState) -> None:
        """Update session state and notify callback."""
        if self._state is not state:
            _LOGGER.debug(
                "[%s] State: %s → %s", self.client_name, self._state.value, state.value
            )
            self._state = state
            if self._state_callback:
                self._state_callback(state)

    def _reset_session(self) -> None:
        """Forget the token and fail outstanding requests; keep subscriptions."""
        self.token = INVALID_TOKEN
        self._authenticated.clear()
        self._set_state(SessionState.DISCONNECTED)
        self.correlator.fail_all(FailureKind.CONNECTION_LOST, "Connection closed")

    def _handle_close(
        self, ws: WsxWsClient, code: int | None, reason: str | None
    ) -> None:
        if ws is not self._ws:
            return

        server_closing = not is_client_close(
            code, reason, client_id=self.client_id, client_name=self.client_name
        )
        if server_closing and self.is_connected:
            _LOGGER.warning(
                "[%s] Server at %s closed connection; code:%s, reason:'%s'",
                self.client_name,
                self.address,
                code,
                reason,
            )

        self._ws = None
        if self._session_task is not None and not self._session_task.done():
            self._session_task.cancel()
        self._reset_session()

        if server_closing and not self._shutdown_requested:
            self._handle_connection_failure()

    def _handle_connection_failure(self) -> None:
        """Schedule reconnection attempt with exponential backoff."""
        if self._shutdown_requested or self._reconnect_task:
            return

        limit = self.config.max_reconnect_attempts
        if limit is not None and self._retry_attempts >= limit:
            _LOGGER.error(
                "[%s] Giving up on %s after %d reconnect attempts",
                self.client_name,
                self.address,
                self._retry_attempts,
            )
            return

        delay = min(
            self.config.reconnect_base_delay * (2**self._retry_attempts),
            self.config.reconnect_max_delay,
        )
        self._retry_attempts += 1

        _LOGGER.info(
            "[%s] Reconnecting to %s in %.2fs (attempt %d)",
            self.client_name,
            self.address,
            delay,
            self._retry_attempts,
        )

        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay(delay))

    async def _reconnect_after_delay(self, delay: float) -> None:
        """Reconnect after delay."""
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Reconnect cancelled", self.client_name)
            self._reconnect_task = None
            raise
        self._reconnect_task = None
        await self._connect()

    # -------------------------------------------------------------------------
    # Internal: Message Listener
    # -------------------------------------------------------------------------

    async def _listen(self, ws: WsxWsClient) -> None:
        """Route frames from the server until the connection closes."""
        message_count = 0
        close_code: int | None = None
        close_reason: str | None = None

        try:
            async for msg in ws:
                message_count += 1

                if msg.type is WsxWsMessageType.TEXT:
                    await self._handle_frame(msg)

                elif msg.type is WsxWsMessageType.CLOSED:
                    close_code, close_reason = msg.close_code, msg.close_reason
                    break

                elif msg.type is WsxWsMessageType.ERROR:
                    _LOGGER.error("[%s] WebSocket error", self.client_name)
                    break

        except asyncio.CancelledError:
            _LOGGER.debug(
                "[%s] Listener cancelled (%d messages)", self.client_name, message_count
            )
            raise
        except WsxClientError as err:
            _LOGGER.warning("[%s] Client error: %s", self.client_name, err)
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected error: %s", self.client_name, err)

        self._handle_close(ws, close_code, close_reason)

    async def _handle_frame(self, msg: WsxWsMessage) -> None:
        self._log_verbose("[%s] Message received %s", self.client_name, msg.data)

        try:
            envelope = WsxWsClient.decode_json(msg)
        except (ValueError, WsxClientError) as err:
            _LOGGER.warning("[%s] Invalid message: %s", self.client_name, err)
            return

        if not isinstance(envelope.get("meta"), dict):
            _LOGGER.warning("[%s] Message without meta: %s", self.client_name, envelope)
            return

        if self.correlator.route(envelope):
            return

        if self._on_message_received is None:
            _LOGGER.info("[%s] Unhandled message %s", self.client_name, envelope)
            return
        # Handlers may invoke services, whose replies arrive on this listener
        task = asyncio.create_task(
            self._run_handler(self._on_message_received, envelope, None)
        )
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task[None]) -> None:
        self._handler_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            _LOGGER.error(
                "[%s] Message handler task failed: %s", self.client_name, task.exception()
            )

    # -------------------------------------------------------------------------
    # Internal: Session Handshake
    # -------------------------------------------------------------------------

    async def _create_session(self) -> None:
        """Obtain a session token for the current connection."""
        msg_id = self.correlator.new_message_id()
        envelope = build_create_session(
            msg_id=msg_id,
            client_id=self.client_id,
            client_name=self.client_name,
            username=self.username,
            secret=self.config.secret,
        )

        try:
            await self.send(msg_id, envelope)
        except WsxClientError as err:
            _LOGGER.error("[%s] Failed to request session: %s", self.client_name, err)
            return

        result = await self.correlator.wait(msg_id, self.config.response_timeout)
        if not result.ok:
            _LOGGER.error(
                "[%s] Could not obtain session token from %s: %s",
                self.client_name,
                self.address,
                result.detail or result.failure,
            )
            return

        token = result.data.get("token")
        if not token:
            _LOGGER.error(
                "[%s] Session response has no token: %s", self.client_name, result.envelope
            )
            return

        self.token = token
        self._retry_attempts = 0
        self._set_state(SessionState.AUTHENTICATED)
        self._authenticated.set()
        _LOGGER.info(
            "[%s] Session created for client '%s' (%s)",
            self.client_name,
            self.client_name,
            self.client_id,
        )

        if self._when_ready is not None:
            try:
                outcome = self._when_ready(self)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as err:
                _LOGGER.exception("[%s] when_ready callback error: %s", self.client_name, err)

    # -------------------------------------------------------------------------
    # Internal: Callbacks
    # -------------------------------------------------------------------------

    async def _handle_response(
        self, client: WsxClient, envelope: dict[str, Any], msg_id: str | None
    ) -> None:
        """Default completion handler for invocations."""
        if self._on_message_received is not None:
            await self._run_handler(self._on_message_received, envelope, msg_id)
            return
        self._log_verbose("[%s] Response to '%s' is %s", self.client_name, msg_id, envelope)

    async def _run_handler(
        self, handler: MessageHandler, envelope: dict[str, Any], msg_id: str | None
    ) -> None:
        try:
            outcome = handler(self, envelope, msg_id)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as err:
            _LOGGER.exception("[%s] Message handler error: %s", self.client_name, err)

    @staticmethod
    async def _cancel_task(task: asyncio.Task[None] | None) -> None:
        """Cancel ``task`` and wait for it, unless it is the caller."""
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _log_verbose(self, msg: str, *args: Any) -> None:
        if self.config.verbose:
            _LOGGER.info(msg, *args)
        else:
            _LOGGER.debug(msg, *args)
