from fastapi import Depends, Request

from zhinao_geo.core.security import CurrentUser, get_bearer_token, get_current_user
from zhinao_geo.core.settings import Settings
from zhinao_geo.services.cache import TTLCache
from zhinao_geo.services.realtime import ChangeFeed
from zhinao_geo.services.tracker import NotificationDeduper
from zhinao_geo.services.webhook_client import GatewayProxyClient, HttpProxyClient, ProxyClient


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> TTLCache:
    return request.app.state.cache


def get_feed(request: Request) -> ChangeFeed:
    return request.app.state.feed


def get_deduper(request: Request) -> NotificationDeduper:
    return request.app.state.deduper


def get_proxy_client(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
) -> ProxyClient:
    settings: Settings = request.app.state.settings
    if settings.webhook_proxy_url:
        return HttpProxyClient(
            function_url=settings.webhook_proxy_url,
            access_token=get_bearer_token(request),
            api_key=settings.supabase_anon_key,
            timeout_s=settings.webhook_timeout_s,
            transport=request.app.state.webhook_transport,
        )
    return GatewayProxyClient(request.app.state.webhook_gateway, current_user.id)
