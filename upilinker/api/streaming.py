"""Server-Sent Events bridge for store subscriptions."""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Callable, Dict

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse

from ..core.logging import get_logger
from ..store.base import Snapshot, Subscription

logger = get_logger(__name__)

Subscribe = Callable[[Callable[[Snapshot[Any]], None]], Subscription]
Encode = Callable[[Snapshot[Any]], Dict[str, Any]]


def format_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(jsonable_encoder(payload), ensure_ascii=False)}\n\n"


async def snapshot_events(
    request: Request,
    subscribe: Subscribe,
    encode: Encode,
    keepalive_seconds: float,
) -> AsyncIterator[str]:
    """Yield one SSE frame per snapshot until the client goes away.

    Store callbacks may arrive on another thread; they are handed to the event
    loop through a queue. The subscription is always cancelled on exit.
    """
    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[Snapshot[Any]]" = asyncio.Queue()

    def push(snapshot: Snapshot[Any]) -> None:
        if not loop.is_closed():
            loop.call_soon_threadsafe(queue.put_nowait, snapshot)

    subscription = subscribe(push)
    logger.info("stream_opened", path=request.url.path)
    try:
        while True:
            if await request.is_disconnected():
                break
            try:
                snapshot = await asyncio.wait_for(queue.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield format_event(encode(snapshot))
    finally:
        subscription.cancel()
        logger.info("stream_closed", path=request.url.path)


def event_stream_response(events: AsyncIterator[str]) -> StreamingResponse:
    return StreamingResponse(
        events,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
