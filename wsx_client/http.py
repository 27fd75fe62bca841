"""REST client for invoking services over HTTP."""

from __future__ import annotations

import base64
import json
import logging
from typing import Any

import aiohttp

from .errors import (
    WsxConnectionError,
    WsxInvocationError,
    WsxResponseError,
    WsxTimeout,
)

_LOGGER = logging.getLogger(__name__)

RESULT_OK = "ZATO_OK"


def encode_payload(data: Any) -> str:
    """Encode a request as base64 JSON."""
    return base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii")


def decode_payload(payload: str) -> Any:
    """Decode a base64 service response, parsing it as JSON when possible."""
    text = base64.b64decode(payload).decode("utf-8")
    try:
        return json.loads(text)
    except ValueError:
        return text


def _service_response(body: dict[str, Any]) -> str | None:
    """Return the base64 response from a ``<service>_response`` section."""
    section = body.get("zato_service_invoke_response")
    if not isinstance(section, dict):
        section = next(
            (
                value
                for key, value in body.items()
                if key.endswith("_response") and isinstance(value, dict)
            ),
            {},
        )
    return section.get("response")


class WsxRestClient:
    """HTTP client wrapper for the service invocation endpoint.

    Each call POSTs ``{"name", "data_format", "payload"}`` to a single path
    and unwraps the base64 response of the invoked service.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        address: str,
        path: str,
        username: str,
        password: str,
        *,
        timeout: float = 10.0,
    ) -> None:
        self._session = session
        self.address = address.rstrip("/")
        self.path = path
        self.username = username
        self._password = password
        self._timeout = timeout

    @classmethod
    def from_config(
        cls, session: aiohttp.ClientSession, config: dict[str, Any]
    ) -> WsxRestClient:
        """Build a client from ``{"baseURL", "url", "auth": {...}}``."""
        auth = config.get("auth", {})
        return cls(
            session,
            config["baseURL"],
            config["url"],
            auth.get("username", ""),
            auth.get("password", ""),
        )

    def _url(self) -> str:
        return f"{self.address}{self.path}"

    async def invoke(self, service: str, data: Any = None) -> Any:
        """Invoke ``service`` with ``data`` and return its decoded response.

        Raises:
            WsxResponseError: If the HTTP status is not 200
            WsxInvocationError: If the server did not report an OK result
            WsxTimeout: If the request times out
            WsxConnectionError: If the network request fails
        """
        request = {
            "name": service,
            "data_format": "json",
            "payload": encode_payload(data),
        }
        try:
            async with self._session.post(
                self._url(),
                json=request,
                auth=aiohttp.BasicAuth(self.username, self._password),
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if resp.status != 200:
                    raise WsxResponseError(
                        resp.status, f"HTTP response status {resp.status} != 200"
                    )
                body = await resp.json()
        except TimeoutError as err:
            raise WsxTimeout(f"Invocation of {service} timed out") from err
        except aiohttp.ClientError as err:
            raise WsxConnectionError(f"Invocation of {service} failed") from err

        result = body.get("zato_env", {}).get("result")
        if result != RESULT_OK:
            raise WsxInvocationError(result, f"Result {result} != {RESULT_OK}", body)

        response = _service_response(body)
        if not response:
            return None
        decoded = decode_payload(response)
        _LOGGER.debug("Response received from %s: %s", service, decoded)
        return decoded
