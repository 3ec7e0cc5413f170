import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog
from fastapi import Request

logger = structlog.get_logger()

T = TypeVar("T")

DISCONNECT_CHECK_INTERVAL = 0.5


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("client_disconnected", path=request.url.path)
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_CHECK_INTERVAL)


async def run_until_disconnect(request: Request, work: Callable[[asyncio.Event], Awaitable[T]]) -> T:
    """
    Runs `work` with a cancellation event that is set once the client goes away,
    so long poll loops stop instead of outliving the request.
    """
    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        return await work(cancel_event)
    finally:
        watcher.cancel()
        try:
            await watcher
        except asyncio.CancelledError:
            pass
