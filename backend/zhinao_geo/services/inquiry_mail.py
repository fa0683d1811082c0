from __future__ import annotations

import html
import logging
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

import requests

from zhinao_geo.core.settings import Settings

logger = logging.getLogger(__name__)

_CELL = 'style="padding: 12px; border: 1px solid #ddd;"'
_LABEL = 'style="padding: 12px; border: 1px solid #ddd; background: #f9f9f9; font-weight: bold; width: 120px;"'


class MailDispatchError(RuntimeError):
    pass


def _row(label: str, value_html: str) -> str:
    return f"<tr><td {_LABEL}>{label}</td><td {_CELL}>{value_html}</td></tr>"


def format_submitted_at(now: datetime | None, tz_name: str) -> str:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name)).strftime("%Y/%m/%d %H:%M:%S")


def inquiry_subject(company: str, name: str) -> str:
    return f"[新咨询] {company} - {name}"


def render_inquiry_email(
    *,
    name: str,
    company: str,
    phone: str,
    website: str | None = None,
    message: str | None = None,
    now: datetime | None = None,
    tz_name: str = "Asia/Shanghai",
) -> str:
    rows = [
        _row("姓名", html.escape(name)),
        _row("公司", html.escape(company)),
    ]
    if website:
        site = html.escape(website, quote=True)
        rows.append(_row("企业官网", f'<a href="{site}" target="_blank" style="color: #007bff;">{site}</a>'))
    rows.append(_row("联系电话", html.escape(phone)))
    if message:
        rows.append(_row("咨询内容", f'<div style="white-space: pre-wrap;">{html.escape(message)}</div>'))

    submitted = format_submitted_at(now, tz_name)
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">'
        '<h2 style="color: #333; border-bottom: 2px solid #007bff; padding-bottom: 10px;">新的咨询请求</h2>'
        '<table style="width: 100%; border-collapse: collapse; margin-top: 20px;">'
        + "".join(rows)
        + "</table>"
        '<div style="margin-top: 20px; padding: 15px; background: #f0f7ff; border-radius: 8px;">'
        f'<p style="margin: 0; color: #666; font-size: 14px;">提交时间：{submitted}</p>'
        "</div>"
        '<p style="margin-top: 20px; color: #999; font-size: 12px; text-align: center;">此邮件由智脑时代 GEO 系统自动发送</p>'
        "</div>"
    )


def send_inquiry_notification(
    settings: Settings,
    *,
    name: str,
    company: str,
    phone: str,
    website: str | None = None,
    message: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    if not settings.resend_api_key:
        raise MailDispatchError("RESEND_API_KEY is not configured")
    if not settings.inquiry_to:
        raise MailDispatchError("INQUIRY_TO is not configured")

    body = {
        "from": settings.inquiry_from,
        "to": list(settings.inquiry_to),
        "subject": inquiry_subject(company, name),
        "html": render_inquiry_email(
            name=name,
            company=company,
            phone=phone,
            website=website,
            message=message,
            now=now,
            tz_name=settings.inquiry_timezone,
        ),
    }
    logger.info("inquiry_mail.send.start company=%s", company)
    try:
        resp = requests.post(
            settings.resend_endpoint,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {settings.resend_api_key}",
            },
            json=body,
            timeout=30,
        )
    except requests.RequestException as exc:
        logger.error("inquiry_mail.send.unreachable error=%s", type(exc).__name__)
        raise MailDispatchError("Mail provider unreachable") from exc

    if resp.status_code >= 400:
        logger.error("inquiry_mail.send.failed status=%s", resp.status_code)
        raise MailDispatchError(f"Resend API error ({resp.status_code})")

    try:
        data = resp.json()
    except ValueError:
        data = {}
    logger.info("inquiry_mail.send.ok id=%s", (data or {}).get("id") if isinstance(data, dict) else None)
    return data if isinstance(data, dict) else {}
