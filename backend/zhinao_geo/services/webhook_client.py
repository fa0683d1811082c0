from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from zhinao_geo.services.webhook_gateway import WebhookGateway

logger = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f]")


@dataclass(frozen=True)
class WebhookResult:
    success: bool
    error: str | None = None


def escape_for_json(value: str) -> str:
    """Escape a value the workflow engine splices into a JSON template verbatim."""
    out = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return _CONTROL_CHARS.sub(lambda m: "\\u%04x" % ord(m.group(0)), out)


def sanitize_payload(payload: Mapping[str, Any]) -> dict[str, Any]:
    sanitized: dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, str) and not key.endswith("_id"):
            sanitized[key] = escape_for_json(value.strip())
        else:
            sanitized[key] = value
    return sanitized


class ProxyClient(ABC):
    """Caller side of the webhook proxy: ``call(endpoint, payload)`` never raises."""

    @abstractmethod
    async def _invoke(self, endpoint: str, payload: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        """Send the sanitized payload; returns the HTTP status and the decoded body."""

    async def call(self, endpoint: str, payload: Mapping[str, Any]) -> WebhookResult:
        clean = sanitize_payload(payload)
        try:
            status, data = await self._invoke(endpoint, clean)
        except Exception as exc:
            logger.error("webhook_client.call.exception endpoint=%s error=%s", endpoint, type(exc).__name__)
            return WebhookResult(success=False, error="request_failed")

        if not data.get("success"):
            error = str(data.get("error") or f"status_{status}")
            logger.warning("webhook_client.call.failed endpoint=%s status=%s error=%s", endpoint, status, error)
            return WebhookResult(success=False, error=error)
        return WebhookResult(success=True)


class GatewayProxyClient(ProxyClient):
    """Calls an in-process gateway on behalf of an already verified user."""

    def __init__(self, gateway: WebhookGateway, user_id: str) -> None:
        self._gateway = gateway
        self._user_id = user_id

    async def _invoke(self, endpoint: str, payload: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        result = await self._gateway.forward(user_id=self._user_id, endpoint=endpoint, payload=payload)
        return result.status_code, result.as_body()


class HttpProxyClient(ProxyClient):
    """Invokes the deployed ``webhook-proxy`` function with the user's bearer token."""

    def __init__(
        self,
        *,
        function_url: str,
        access_token: str,
        api_key: str | None = None,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._function_url = function_url
        self._access_token = access_token
        self._api_key = api_key
        self._timeout_s = timeout_s
        self._transport = transport

    async def _invoke(self, endpoint: str, payload: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        headers = {"Authorization": f"Bearer {self._access_token}"}
        if self._api_key:
            headers["apikey"] = self._api_key
        async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout_s), transport=self._transport) as client:
            resp = await client.post(self._function_url, json={"endpoint": endpoint, "payload": payload}, headers=headers)
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        return int(resp.status_code), data
