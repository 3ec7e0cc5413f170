import asyncio
import time
from typing import Optional

import structlog
from core.exceptions import GenerationFailedError, GenerationTimeoutError, PollCancelledError, ProviderError
from domain.models import JobHandle, JobState, RawProviderResponse
from services.registry import ProviderRegistry

logger = structlog.get_logger()

PENDING_STATES = {JobState.QUEUED, JobState.PROCESSING}


def _failure_reason(payload: dict) -> Optional[str]:
    scope = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    for key in ("error", "reason", "message", "task_status_msg", "failure_reason"):
        value = scope.get(key)
        if isinstance(value, dict):
            value = value.get("message")
        if value:
            return str(value)
    return None


class AsyncJobPoller:
    """
    Drives an asynchronous provider task to a terminal state.
    Never blocks the event loop; bounded by attempts and by a monotonic deadline
    that also caps each status request.
    """

    def __init__(self, registry: ProviderRegistry, max_consecutive_errors: int = 3):
        self.registry = registry
        self.max_consecutive_errors = max_consecutive_errors

    async def _sleep(self, handle: JobHandle, seconds: float, cancel_event: Optional[asyncio.Event]) -> None:
        if seconds <= 0:
            return
        if cancel_event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise PollCancelledError(handle.provider, handle.task_id)

    async def wait(
        self,
        handle: JobHandle,
        poll_interval: float,
        max_attempts: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RawProviderResponse:
        log = logger.bind(provider=handle.provider, task_id=handle.task_id)
        deadline = time.monotonic() + poll_interval * max_attempts
        consecutive_errors = 0
        attempt = 0

        while attempt < max_attempts:
            if cancel_event is not None and cancel_event.is_set():
                raise PollCancelledError(handle.provider, handle.task_id)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await self._sleep(handle, min(poll_interval, remaining), cancel_event)
            attempt += 1

            try:
                status = await asyncio.wait_for(
                    self.registry.fetch_status(handle), timeout=max(deadline - time.monotonic(), 0)
                )
            except asyncio.TimeoutError:
                log.warning("poll_status_stalled", attempts=attempt)
                raise GenerationTimeoutError(handle.provider, handle.task_id, attempt) from None
            except ProviderError as e:
                consecutive_errors += 1
                log.warning("poll_status_failed", attempt=attempt, consecutive_errors=consecutive_errors, error=e.message)
                if consecutive_errors >= self.max_consecutive_errors:
                    raise
                continue
            consecutive_errors = 0

            log.debug("poll_status", attempt=attempt, state=status.state.value, upstream_status=status.upstream_status)

            # A status-less response is treated as still running
            if status.state in PENDING_STATES or (status.state == JobState.UNKNOWN and not status.upstream_status):
                continue
            if status.state == JobState.SUCCEEDED:
                log.info("job_completed", attempts=attempt)
                return RawProviderResponse(
                    provider=handle.provider,
                    payload=status.payload,
                    model=handle.model,
                    params=dict(handle.params),
                    provider_ref=handle.task_id,
                )

            log.warning("job_failed", upstream_status=status.upstream_status, attempts=attempt)
            raise GenerationFailedError(handle.provider, status.upstream_status, _failure_reason(status.payload))

        log.warning("job_timed_out", attempts=attempt)
        raise GenerationTimeoutError(handle.provider, handle.task_id, attempt)
