from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from zhinao_geo.api.deps import get_settings
from zhinao_geo.core.security import CurrentUser, get_current_user
from zhinao_geo.core.settings import Settings
from zhinao_geo.schemas.inquiry import InquiryRequest
from zhinao_geo.schemas.webhook import LegacyWebhookProxyRequest, WebhookProxyRequest
from zhinao_geo.services.inquiry_mail import MailDispatchError, send_inquiry_notification
from zhinao_geo.services.webhook_gateway import GatewayResult, WebhookGateway

logger = logging.getLogger(__name__)

router = APIRouter()


async def _json_body(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _respond(result: GatewayResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.as_body())


def _bad_request(error: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "error": error})


@router.post("/webhook-proxy")
async def webhook_proxy(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
) -> JSONResponse:
    body = await _json_body(request)
    if body is None:
        return _bad_request("Invalid JSON body")
    try:
        parsed = WebhookProxyRequest.model_validate(body)
    except ValidationError:
        return _bad_request("Invalid request body")

    gateway: WebhookGateway = request.app.state.webhook_gateway
    result = await gateway.forward(user_id=current_user.id, endpoint=parsed.endpoint, payload=parsed.payload)
    return _respond(result)


@router.post("/n8n-webhook-proxy")
async def signed_webhook_proxy(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
) -> JSONResponse:
    body = await _json_body(request)
    if body is None:
        return _bad_request("Invalid JSON body")
    try:
        parsed = LegacyWebhookProxyRequest.model_validate(body)
    except ValidationError:
        return _bad_request("Invalid request body")

    gateway: WebhookGateway = request.app.state.signed_webhook_gateway
    result = await gateway.forward(
        user_id=current_user.id,
        endpoint=parsed.webhook_type,
        payload=parsed.as_payload(),
    )
    return _respond(result)


@router.post("/send-inquiry-notification")
def send_inquiry(
    body: dict[str, Any],
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    try:
        inquiry = InquiryRequest.model_validate(body)
    except ValidationError:
        return _bad_request("Invalid inquiry")

    logger.info("functions.inquiry.received company=%s", inquiry.company)
    try:
        data = send_inquiry_notification(
            settings,
            name=inquiry.name,
            company=inquiry.company,
            phone=inquiry.phone,
            website=inquiry.website,
            message=inquiry.message,
        )
    except MailDispatchError as exc:
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})
    return JSONResponse(status_code=200, content={"success": True, "data": data})
