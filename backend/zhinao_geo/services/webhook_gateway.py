"""Authenticated proxy from the dashboard to the n8n workflow engine.

The gateway is the only holder of the engine secret. Callers hand it a
verified user id, an endpoint name and a handful of identifiers; it builds a
minimal body, attaches either the shared-secret header or an HMAC signature
and POSTs to ``{base}/{endpoint}``. It keeps no state and never touches the
database, so it can be shared by every request.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol

import httpx
from pydantic import BaseModel, ValidationError

from zhinao_geo.schemas.webhook import ALLOWED_ENDPOINTS, PAYLOAD_MODELS

logger = logging.getLogger(__name__)

SHARED_SECRET_HEADER = "zhinao-geo-scan"
SIGNATURE_HEADER = "X-Signature"
TIMESTAMP_HEADER = "X-Timestamp"
INSUFFICIENT_CREDITS = "insufficient_credits"


class WebhookValidationError(ValueError):
    pass


@dataclass(frozen=True)
class GatewayResult:
    success: bool
    status_code: int
    error: str | None = None
    upstream_status: int | None = None

    def as_body(self) -> dict[str, Any]:
        if self.success:
            return {"success": True}
        body: dict[str, Any] = {"success": False, "error": self.error}
        if self.upstream_status is not None:
            body["status"] = self.upstream_status
        return body


def serialize_body(body: Mapping[str, Any]) -> str:
    return json.dumps(body, ensure_ascii=False, separators=(",", ":"))


def sign_payload(body: str | bytes, secret: str) -> str:
    raw = body.encode("utf-8") if isinstance(body, str) else body
    return hmac.new(key=secret.encode("utf-8"), msg=raw, digestmod=hashlib.sha256).hexdigest()


class WebhookAuth(Protocol):
    @property
    def configured(self) -> bool: ...

    def headers(self, body: bytes, timestamp_ms: int) -> dict[str, str]: ...


class SharedSecretAuth:
    def __init__(self, secret: str | None) -> None:
        self._secret = secret or ""

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    def headers(self, body: bytes, timestamp_ms: int) -> dict[str, str]:
        return {SHARED_SECRET_HEADER: self._secret}


class HmacSignatureAuth:
    def __init__(self, secret: str | None) -> None:
        self._secret = secret or ""

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    def headers(self, body: bytes, timestamp_ms: int) -> dict[str, str]:
        return {
            SIGNATURE_HEADER: sign_payload(body, self._secret),
            TIMESTAMP_HEADER: str(timestamp_ms),
        }


def validate_request(endpoint: str | None, payload: Mapping[str, Any] | None) -> BaseModel:
    name = (endpoint or "").strip()
    if name not in ALLOWED_ENDPOINTS:
        raise WebhookValidationError("Invalid endpoint")
    model = PAYLOAD_MODELS[name]
    data = {k: v for k, v in (payload or {}).items() if v is not None}
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        missing = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        raise WebhookValidationError(f"Missing or invalid fields: {', '.join(missing)}") from None


def build_outbound_body(user_id: str, payload: BaseModel, timestamp_ms: int) -> dict[str, Any]:
    body: dict[str, Any] = {"timestamp": timestamp_ms, "user_id": user_id}
    body.update(payload.model_dump(exclude_none=True))
    return body


class WebhookGateway:
    def __init__(
        self,
        *,
        base_url: str,
        auth: WebhookAuth,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._auth = auth
        self._timeout_s = float(timeout_s)
        self._transport = transport
        self._clock = clock

    def endpoint_url(self, endpoint: str) -> str:
        return f"{self._base_url}/{endpoint}"

    async def forward(self, *, user_id: str, endpoint: str | None, payload: Mapping[str, Any] | None) -> GatewayResult:
        try:
            validated = validate_request(endpoint, payload)
        except WebhookValidationError as exc:
            logger.warning("webhook_gateway.validate.rejected endpoint=%s user_id=%s reason=%s", endpoint, user_id, exc)
            return GatewayResult(success=False, status_code=400, error=str(exc))

        if not self._auth.configured:
            logger.error("webhook_gateway.config.missing_secret endpoint=%s", endpoint)
            return GatewayResult(success=False, status_code=500, error="webhook_not_configured")

        timestamp_ms = int(self._clock() * 1000)
        body = build_outbound_body(user_id, validated, timestamp_ms)
        raw = serialize_body(body).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        headers.update(self._auth.headers(raw, timestamp_ms))
        url = self.endpoint_url(str(endpoint))

        logger.info("webhook_gateway.forward.start endpoint=%s user_id=%s", endpoint, user_id)
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout_s), transport=self._transport) as client:
                resp = await client.post(url, content=raw, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("webhook_gateway.forward.unreachable endpoint=%s error=%s", endpoint, type(exc).__name__)
            return GatewayResult(success=False, status_code=502, error="webhook_unreachable")

        status = int(resp.status_code)
        if 200 <= status < 300:
            logger.info("webhook_gateway.forward.ok endpoint=%s status=%s", endpoint, status)
            return GatewayResult(success=True, status_code=200)
        if status == 402:
            logger.info("webhook_gateway.forward.insufficient_credits endpoint=%s user_id=%s", endpoint, user_id)
            return GatewayResult(success=False, status_code=402, error=INSUFFICIENT_CREDITS, upstream_status=status)
        logger.warning("webhook_gateway.forward.failed endpoint=%s status=%s", endpoint, status)
        return GatewayResult(success=False, status_code=502, error="webhook_failed", upstream_status=status)
