"""Request/response correlation for the WSX connection.

Each outgoing request is registered under its message id before it is sent.
Inbound envelopes whose ``meta.in_reply_to`` names a registered id resolve
that entry; the waiting caller then receives the response. Envelopes without
``in_reply_to`` are unsolicited and left to the caller of ``route``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from .protocol import get_in_reply_to, new_message_id
from .result import FailureKind, InvocationResult

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class _PendingRequest:
    """A request awaiting its response."""

    resolved: asyncio.Event = field(default_factory=asyncio.Event)
    envelope: dict[str, Any] | None = None
    failure: FailureKind | None = None
    detail: str = ""


class ResponseCorrelator:
    """Track pending requests and match responses to them by message id."""

    def __init__(self, client_name: str, *, verbose: bool = False) -> None:
        self.client_name = client_name
        self._verbose = verbose
        self._pending: dict[str, _PendingRequest] = {}

    def new_message_id(self) -> str:
        return new_message_id(self.client_name)

    def register(self, msg_id: str) -> None:
        """Mark ``msg_id`` as awaiting a response."""
        self._pending[msg_id] = _PendingRequest()

    def discard(self, msg_id: str) -> None:
        """Forget ``msg_id`` without resolving it."""
        self._pending.pop(msg_id, None)

    def is_pending(self, msg_id: str) -> bool:
        return msg_id in self._pending

    def has_response(self, msg_id: str) -> bool:
        pending = self._pending.get(msg_id)
        return pending is not None and pending.envelope is not None

    def pending_ids(self) -> list[str]:
        return list(self._pending)

    def route(self, envelope: dict[str, Any]) -> bool:
        """Store a response under the id of the request it replies to.

        A second response to the same id overwrites the first one as long as
        the waiter has not consumed it yet.

        Returns:
            True if the envelope is a response, False if it is unsolicited.
        """
        in_reply_to = get_in_reply_to(envelope)
        if not in_reply_to:
            return False

        pending = self._pending.get(in_reply_to)
        if pending is None:
            _LOGGER.debug(
                "[%s] Dropping response to unknown request %s",
                self.client_name,
                in_reply_to,
            )
            return True

        pending.envelope = envelope
        pending.resolved.set()
        if self._verbose:
            _LOGGER.info(
                "[%s] Response to %s is %s", self.client_name, in_reply_to, envelope
            )
        return True

    async def wait(self, msg_id: str, timeout: float) -> InvocationResult:
        """Wait for the response to ``msg_id`` for at most ``timeout`` seconds.

        Never raises on timeout; the outcome is reported in the result. The
        pending entry is discarded once the wait ends.

        Raises:
            KeyError: If ``msg_id`` was never registered.
        """
        pending = self._pending.get(msg_id)
        if pending is None:
            raise KeyError(f"No pending request with id {msg_id!r}")

        try:
            await asyncio.wait_for(pending.resolved.wait(), timeout)
        except TimeoutError:
            _LOGGER.warning(
                "[%s] No response to %s within %.2fs",
                self.client_name,
                msg_id,
                timeout,
            )
            return InvocationResult.failed(
                msg_id, FailureKind.TIMEOUT, f"No response within {timeout}s"
            )
        finally:
            self._pending.pop(msg_id, None)

        if pending.failure is not None:
            return InvocationResult.failed(msg_id, pending.failure, pending.detail)
        if pending.envelope is None:
            return InvocationResult.failed(
                msg_id, FailureKind.CONNECTION_LOST, "Resolved without a response"
            )
        return InvocationResult.success(msg_id, pending.envelope)

    def fail_all(self, kind: FailureKind, detail: str = "") -> int:
        """Resolve every outstanding wait with a failure of ``kind``.

        Returns:
            Number of requests failed.
        """
        failed = 0
        for pending in self._pending.values():
            if pending.resolved.is_set():
                continue
            pending.failure = kind
            pending.detail = detail
            pending.resolved.set()
            failed += 1
        if failed:
            _LOGGER.debug(
                "[%s] Failed %d pending requests: %s",
                self.client_name,
                failed,
                kind.value,
            )
        return failed
