from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse

from zhinao_geo.api.deps import get_cache, get_deduper, get_feed, get_settings
from zhinao_geo.core.security import CurrentUser, get_current_user
from zhinao_geo.core.settings import Settings
from zhinao_geo.services.cache import TTLCache
from zhinao_geo.services.job_queries import make_row_fetcher
from zhinao_geo.services.realtime import ChangeFeed
from zhinao_geo.services.tracker import (
    SCAN_JOBS,
    TRACKED_KINDS,
    JobTracker,
    Notification,
    NotificationDeduper,
    StatusChangeNotifier,
)

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
KEEPALIVE_S = 15.0


def sse_event(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(jsonable_encoder(data), ensure_ascii=False)}\n\n"


@router.get("/track/{kind}/{record_id}")
async def track(
    kind: str,
    record_id: str,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    feed: ChangeFeed = Depends(get_feed),
    deduper: NotificationDeduper = Depends(get_deduper),
    cache: TTLCache = Depends(get_cache),
):
    table = TRACKED_KINDS.get(kind)
    if table is None:
        raise HTTPException(status_code=404, detail="Unknown kind")

    tracker = JobTracker(
        table,
        record_id,
        fetch_row=make_row_fetcher(request.app.state.session_factory, kind, current_user.id),
        deduper=deduper,
        feed=feed,
        cache=cache,
        poll_interval_s=settings.tracker_poll_interval_s,
        timeout_s=settings.tracker_timeout_s,
    )

    async def event_generator() -> AsyncIterator[str]:
        try:
            async for snapshot in tracker.run():
                yield sse_event("state", snapshot.as_dict())
        finally:
            tracker.close()

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/notifications")
async def notifications(
    current_user: CurrentUser = Depends(get_current_user),
    feed: ChangeFeed = Depends(get_feed),
    deduper: NotificationDeduper = Depends(get_deduper),
    cache: TTLCache = Depends(get_cache),
):
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[Notification] = asyncio.Queue()

    def push(note: Notification) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, note)

    notifier = StatusChangeNotifier(
        SCAN_JOBS,
        deduper=deduper,
        notify=push,
        cache=cache,
        owner_column="user_id",
        owner_id=current_user.id,
    )

    async def event_generator() -> AsyncIterator[str]:
        subscription = notifier.attach(feed)
        logger.info("tracking.notifications.open user_id=%s", current_user.id)
        try:
            yield sse_event("ready", {"user_id": current_user.id})
            while True:
                try:
                    note = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_S)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield sse_event("notification", note.as_dict())
        finally:
            subscription.unsubscribe()
            logger.info("tracking.notifications.closed user_id=%s", current_user.id)

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)
