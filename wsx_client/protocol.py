"""Protocol helpers for WSX envelopes.

Every frame exchanged over the connection is a JSON envelope:

    {"meta": {"id", "timestamp", "action", "client_id", "client_name", ...},
     "data": {...}}

Responses carry ``meta.in_reply_to`` equal to the request's ``meta.id``.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

ACTION_CREATE_SESSION = "create-session"
ACTION_INVOKE_SERVICE = "invoke-service"

INVALID_TOKEN = "<invalid>"

CLIENT_CLOSE_CODE = 1000


def subscribe_service(namespace: str) -> str:
    return f"{namespace}.pubsub.pubapi.subscribe-wsx"


def resume_subscription_service(namespace: str) -> str:
    return f"{namespace}.pubsub.resume-wsx-subscription"


def unsubscribe_service(namespace: str) -> str:
    return f"{namespace}.pubsub.pubapi.unsubscribe"


def publish_service(namespace: str) -> str:
    return f"{namespace}.pubsub.pubapi.publish-message"


def new_message_id(client_name: str) -> str:
    """Return a message id unique among concurrently pending requests."""
    return f"{client_name}.{secrets.token_hex(8)}"


def disconnect_reason(client_id: str, client_name: str) -> str:
    """Reason string sent with a client-initiated close."""
    return f"Client disconnecting id:'{client_id}' name:'{client_name}'"


def is_client_close(
    code: int | None, reason: str | None, *, client_id: str, client_name: str
) -> bool:
    """Return True when a close event was initiated by this client."""
    return code == CLIENT_CLOSE_CODE and reason == disconnect_reason(
        client_id, client_name
    )


def _timestamp(now: datetime | None = None) -> str:
    return (now or datetime.now(tz=UTC)).isoformat()


def build_base_envelope(
    msg_id: str, *, now: datetime | None = None
) -> dict[str, Any]:
    """Build the envelope skeleton shared by every outgoing message."""
    return {"meta": {"id": msg_id, "timestamp": _timestamp(now)}}


def build_create_session(
    *,
    msg_id: str,
    client_id: str,
    client_name: str,
    username: str,
    secret: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Build the login request that obtains a session token."""
    envelope = build_base_envelope(msg_id, now=now)
    envelope["meta"].update(
        {
            "action": ACTION_CREATE_SESSION,
            "client_id": client_id,
            "client_name": client_name,
            "username": username,
            "secret": secret,
        }
    )
    return envelope


def build_invoke_service(
    *,
    msg_id: str,
    client_id: str,
    client_name: str,
    token: str,
    service: str,
    request: Any,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Build a service invocation request."""
    envelope = build_base_envelope(msg_id, now=now)
    envelope["meta"].update(
        {
            "action": ACTION_INVOKE_SERVICE,
            "client_id": client_id,
            "client_name": client_name,
            "token": token,
        }
    )
    envelope["data"] = {"service": service, "request": request}
    return envelope


def get_in_reply_to(envelope: dict[str, Any]) -> str | None:
    """Return the correlation id of a response envelope, if any."""
    meta = envelope.get("meta")
    if not isinstance(meta, dict):
        return None
    return meta.get("in_reply_to") or None


def get_data(envelope: dict[str, Any] | None) -> dict[str, Any]:
    """Return the ``data`` part of an envelope, or an empty dict."""
    if not envelope:
        return {}
    data = envelope.get("data")
    return data if isinstance(data, dict) else {}


@dataclass(frozen=True)
class PublishOptions:
    """Optional fields of a publish-message request.

    Attributes:
        msg_id: Message id, generated when omitted.
        has_gd: Whether the message has guaranteed delivery.
        priority: Message priority (1-9).
        expiration: Expiration in milliseconds.
        mime_type: MIME type of the data.
        correl_id: Application-level correlation id.
        in_reply_to: Id of the message this one replies to.
        ext_client_id: External client identifier.
        ext_pub_time: External publication time.
    """

    msg_id: str | None = None
    has_gd: bool = False
    priority: int = 5
    expiration: int | None = None
    mime_type: str = "text/plain"
    correl_id: str | None = None
    in_reply_to: str | None = None
    ext_client_id: str | None = None
    ext_pub_time: str | None = None


def build_publish_request(
    topic: str, data: Any, msg_id: str, options: PublishOptions
) -> dict[str, Any]:
    """Build the request body of a publish-message invocation."""
    return {
        "topic_name": topic,
        "data": data,
        "msg_id": msg_id,
        "has_gd": options.has_gd,
        "priority": options.priority,
        "expiration": options.expiration,
        "mime_type": options.mime_type,
        "correl_id": options.correl_id,
        "in_reply_to": options.in_reply_to,
        "ext_client_id": options.ext_client_id,
        "ext_pub_time": options.ext_pub_time,
    }
