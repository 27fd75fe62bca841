"""Invocation outcomes delivered to callers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .protocol import get_data


class FailureKind(Enum):
    """Why an invocation produced no usable response."""

    TIMEOUT = "timeout"
    MISSING_FIELD = "missing_field"
    NOT_AUTHENTICATED = "not_authenticated"
    CONNECTION_LOST = "connection_lost"


@dataclass(frozen=True)
class InvocationResult:
    """Outcome of a request sent over the WSX connection.

    Attributes:
        msg_id: Id of the request this result belongs to.
        envelope: Response envelope, when one was received.
        failure: Failure kind, or None on success.
        detail: Human-readable failure description.
    """

    msg_id: str
    envelope: dict[str, Any] | None = None
    failure: FailureKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def data(self) -> dict[str, Any]:
        return get_data(self.envelope)

    @classmethod
    def success(cls, msg_id: str, envelope: dict[str, Any]) -> InvocationResult:
        return cls(msg_id=msg_id, envelope=envelope)

    @classmethod
    def failed(
        cls,
        msg_id: str,
        failure: FailureKind,
        detail: str = "",
        envelope: dict[str, Any] | None = None,
    ) -> InvocationResult:
        return cls(msg_id=msg_id, envelope=envelope, failure=failure, detail=detail)
