"""Pub/sub subscription state for a WSX client.

The server identifies each subscription by a ``sub_key``. The client keeps a
bijection between topics and their keys so a subscription can be resumed
after a reconnect instead of being created again.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from types import MappingProxyType
from typing import Any

from .protocol import (
    resume_subscription_service,
    subscribe_service,
    unsubscribe_service,
)
from .result import FailureKind, InvocationResult

_LOGGER = logging.getLogger(__name__)

InvokeFunc = Callable[[str, dict[str, Any]], Awaitable[InvocationResult]]


class SubscriptionMap:
    """Bidirectional topic <-> sub_key mapping.

    A topic has at most one live key. Both directions are always updated in
    the same call.
    """

    def __init__(self) -> None:
        self._topic_to_sub_key: dict[str, str] = {}
        self._sub_key_to_topic: dict[str, str] = {}

    @property
    def topic_to_sub_key(self) -> MappingProxyType[str, str]:
        return MappingProxyType(self._topic_to_sub_key)

    @property
    def sub_key_to_topic(self) -> MappingProxyType[str, str]:
        return MappingProxyType(self._sub_key_to_topic)

    def sub_key_for(self, topic: str) -> str | None:
        return self._topic_to_sub_key.get(topic)

    def topic_for(self, sub_key: str) -> str | None:
        return self._sub_key_to_topic.get(sub_key)

    def add(self, topic: str, sub_key: str) -> None:
        """Map ``topic`` to ``sub_key``, replacing any older pairing of either."""
        old_key = self._topic_to_sub_key.pop(topic, None)
        if old_key is not None:
            self._sub_key_to_topic.pop(old_key, None)
        old_topic = self._sub_key_to_topic.pop(sub_key, None)
        if old_topic is not None:
            self._topic_to_sub_key.pop(old_topic, None)

        self._topic_to_sub_key[topic] = sub_key
        self._sub_key_to_topic[sub_key] = topic

    def remove(self, sub_key: str, topic: str) -> None:
        """Drop ``topic`` and ``sub_key`` from both directions."""
        paired_key = self._topic_to_sub_key.pop(topic, None)
        paired_topic = self._sub_key_to_topic.pop(sub_key, None)
        if paired_key is not None and paired_key != sub_key:
            self._sub_key_to_topic.pop(paired_key, None)
        if paired_topic is not None and paired_topic != topic:
            self._topic_to_sub_key.pop(paired_topic, None)

    def __len__(self) -> int:
        return len(self._topic_to_sub_key)

    def __contains__(self, topic: object) -> bool:
        return topic in self._topic_to_sub_key

    def __repr__(self) -> str:
        return f"SubscriptionMap(tsk={self._topic_to_sub_key!r}, skt={self._sub_key_to_topic!r})"


class SubscriptionManager:
    """Subscribe, resume and unsubscribe through a service invoker.

    Mappings change only after the matching round-trip succeeds.
    """

    def __init__(
        self,
        invoke: InvokeFunc,
        *,
        namespace: str,
        client_name: str,
        mapping: SubscriptionMap | None = None,
    ) -> None:
        self._invoke = invoke
        self._namespace = namespace
        self._client_name = client_name
        self.mapping = mapping if mapping is not None else SubscriptionMap()

    async def subscribe_or_resume(self, topic: str) -> InvocationResult:
        """Resume the subscription to ``topic`` if one is known, else subscribe."""
        sub_key = self.mapping.sub_key_for(topic)
        if sub_key:
            return await self.resume_subscription(sub_key, topic)
        return await self.subscribe(topic)

    async def subscribe(self, topic: str) -> InvocationResult:
        """Create a new subscription to ``topic`` and record its sub_key."""
        _LOGGER.info("[%s] Subscribing to '%s'", self._client_name, topic)
        result = await self._invoke(
            subscribe_service(self._namespace), {"topic_name": topic}
        )
        if not result.ok:
            return result

        sub_key = result.data.get("sub_key")
        if not sub_key:
            _LOGGER.warning(
                "[%s] Did not receive a sub_key to '%s' in response %s",
                self._client_name,
                topic,
                result.envelope,
            )
            return InvocationResult.failed(
                result.msg_id,
                FailureKind.MISSING_FIELD,
                "Response has no sub_key",
                envelope=result.envelope,
            )

        self.mapping.add(topic, sub_key)
        _LOGGER.info(
            "[%s] Received sub_key '%s' for topic '%s'",
            self._client_name,
            sub_key,
            topic,
        )
        _LOGGER.debug("[%s] Mappings updated (sub): %r", self._client_name, self.mapping)
        return result

    async def resume_subscription(self, sub_key: str, topic: str) -> InvocationResult:
        """Resume an existing subscription after a reconnect."""
        _LOGGER.info(
            "[%s] Resuming sub_key '%s' to '%s'", self._client_name, sub_key, topic
        )
        return await self._invoke(
            resume_subscription_service(self._namespace), {"sub_key": sub_key}
        )

    async def unsubscribe(self, sub_key: str, topic: str) -> InvocationResult:
        """Cancel a subscription and forget its mapping once the server replies."""
        _LOGGER.info(
            "[%s] Unsubscribing sub_key '%s' from '%s'",
            self._client_name,
            sub_key,
            topic,
        )
        result = await self._invoke(
            unsubscribe_service(self._namespace), {"sub_key": sub_key}
        )
        if result.ok:
            self.mapping.remove(sub_key, topic)
            _LOGGER.debug(
                "[%s] Mappings updated (unsub): %r", self._client_name, self.mapping
            )
        return result
