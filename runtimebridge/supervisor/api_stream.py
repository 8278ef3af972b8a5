"""Server-sent event stream of supervisor notifications."""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict

from fastapi import APIRouter, Depends, Request
from starlette.responses import StreamingResponse

from runtimebridge.contracts import NOTIFICATION_ERROR, NOTIFICATION_STATUS
from runtimebridge.failures import error_message
from runtimebridge.supervisor.api_auth import BRIDGE_API_PREFIX, get_bridge_context, require_pairing_token
from runtimebridge.supervisor.context import BridgeContext
from runtimebridge.supervisor.models import Notification
from runtimebridge.supervisor.status import read_bridge_status

logger = logging.getLogger("runtimebridge.supervisor.api_stream")

KEEPALIVE_FRAME = ": ping\n\n"
SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

router = APIRouter(prefix=BRIDGE_API_PREFIX)


def format_sse(notification: Notification) -> str:
    return f"event: {notification.kind}\ndata: {json.dumps(notification.to_dict())}\n\n"


async def _status_frame(context: BridgeContext) -> str:
    payload: Dict[str, Any] = await read_bridge_status(context)
    return format_sse(Notification(kind=NOTIFICATION_STATUS, payload=payload))


async def stream_notifications(
    request: Request,
    context: BridgeContext,
    *,
    keepalive_seconds: float,
    status_interval_seconds: float,
) -> AsyncIterator[str]:
    """Yield SSE frames until the client leaves or the bridge shuts down."""
    subscription, unsubscribe = context.broadcaster.subscribe()
    logger.info("Stream subscriber connected (active=%d)", context.broadcaster.subscriber_count)
    try:
        yield await _status_frame(context)
        loop = asyncio.get_running_loop()
        next_keepalive = loop.time() + keepalive_seconds
        next_status = loop.time() + status_interval_seconds

        while True:
            if await request.is_disconnected():
                break
            wait_for = max(0.0, min(next_keepalive, next_status) - loop.time())
            try:
                notification = await asyncio.wait_for(subscription.get(), timeout=wait_for)
            except asyncio.TimeoutError:
                now = loop.time()
                if now >= next_status:
                    next_status = now + status_interval_seconds
                    yield await _status_frame(context)
                if now >= next_keepalive:
                    next_keepalive = now + keepalive_seconds
                    yield KEEPALIVE_FRAME
                continue
            if notification is None:
                break
            yield format_sse(notification)
    finally:
        unsubscribe()
        logger.info("Stream subscriber disconnected (active=%d)", context.broadcaster.subscriber_count)


async def _startup_failure_stream(message: str) -> AsyncIterator[str]:
    yield format_sse(Notification(kind=NOTIFICATION_ERROR, payload={"message": message}))


@router.get("/events", dependencies=[Depends(require_pairing_token)])
async def stream_events(request: Request, context: BridgeContext = Depends(get_bridge_context)):
    """Push every supervisor notification plus periodic status snapshots."""
    try:
        await context.runtime.ensure_started()
    except Exception as exc:
        message = error_message(exc, "Failed to start runtime process")
        logger.warning("Event stream opened while runtime is unavailable: %s", message)
        return StreamingResponse(
            _startup_failure_stream(message),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    settings = context.settings
    return StreamingResponse(
        stream_notifications(
            request,
            context,
            keepalive_seconds=settings.keepalive_seconds,
            status_interval_seconds=settings.status_interval_seconds,
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
