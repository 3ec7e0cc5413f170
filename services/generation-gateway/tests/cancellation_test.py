import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from core import cancellation
from core.cancellation import run_until_disconnect


def _request(*disconnected: bool) -> MagicMock:
    request = MagicMock()
    request.url.path = "/api/videos/generate"
    request.is_disconnected = AsyncMock(side_effect=list(disconnected) + [True] * 10)
    return request


@pytest.fixture(autouse=True)
def fast_checks(monkeypatch):
    monkeypatch.setattr(cancellation, "DISCONNECT_CHECK_INTERVAL", 0.01)


@pytest.mark.asyncio
async def test_disconnect_sets_the_cancel_event():
    request = _request(False, False, True)

    async def work(cancel_event: asyncio.Event) -> str:
        await asyncio.wait_for(cancel_event.wait(), timeout=2)
        return "stopped"

    assert await run_until_disconnect(request, work) == "stopped"
    assert request.is_disconnected.await_count == 3


@pytest.mark.asyncio
async def test_finished_work_leaves_the_event_unset():
    request = _request()
    request.is_disconnected = AsyncMock(return_value=False)
    seen = {}

    async def work(cancel_event: asyncio.Event) -> int:
        seen["event"] = cancel_event
        return 42

    assert await run_until_disconnect(request, work) == 42
    assert not seen["event"].is_set()
