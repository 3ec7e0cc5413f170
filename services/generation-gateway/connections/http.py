from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import httpx
import structlog
from connections.media_source import MediaSourceReader
from core.exceptions import ConfigurationError, MediaSourceError, ProviderError
from core.telemetry import provider_span
from domain.interfaces import MediaProviderAdapter
from domain.models import JobHandle, JobState, MediaTarget, PollPolicy, PollStatus

logger = structlog.get_logger()


def only_set(values: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


class ProviderHTTPClient:
    """
    Shared request plumbing for every provider: bearer auth from configuration,
    one injected httpx.AsyncClient, and transport/HTTP failures surfaced as ProviderError.
    No retries happen here.
    """

    provider_id: str = "unknown"

    def __init__(self, client: httpx.AsyncClient, api_key: str, base_url: str, timeout: float = 120.0):
        self.client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        if not self.api_key:
            raise ConfigurationError(f"{self.provider_id} API key is not configured")

        url = path if path.startswith("http") else f"{self.base_url}{path}"
        request_headers = {**self.auth_headers(), **(headers or {})}

        logger.info("provider_request", provider=self.provider_id, method=method, path=path)
        with provider_span(self.provider_id, method, path) as span:
            try:
                resp = await self.client.request(
                    method,
                    url,
                    json=json,
                    params=params,
                    files=files,
                    data=data,
                    headers=request_headers,
                    timeout=self.timeout,
                )
            except httpx.TimeoutException as e:
                raise ProviderError(self.provider_id, f"request timed out after {self.timeout}s", original_error=e)
            except httpx.HTTPError as e:
                raise ProviderError(self.provider_id, str(e) or e.__class__.__name__, original_error=e)
            span.set_attribute("http.status_code", resp.status_code)

        if resp.status_code >= 400:
            logger.warning(
                "provider_request_rejected", provider=self.provider_id, path=path, status_code=resp.status_code
            )
            raise ProviderError(
                self.provider_id, f"HTTP {resp.status_code}: {resp.text[:500]}", status_code=resp.status_code
            )
        return resp

    async def request_json(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        resp = await self.request(method, path, **kwargs)
        try:
            body = resp.json()
        except ValueError as e:
            raise ProviderError(self.provider_id, "response was not valid JSON", original_error=e)
        if not isinstance(body, dict):
            raise ProviderError(self.provider_id, f"unexpected response shape: {type(body).__name__}")
        return body


class HTTPProviderAdapter(ProviderHTTPClient, MediaProviderAdapter):
    """Base for media adapters talking JSON over HTTP."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        base_url: str,
        timeout: float = 120.0,
        media: Optional[MediaSourceReader] = None,
        poll_policy: Optional[PollPolicy] = None,
    ):
        super().__init__(client, api_key, base_url, timeout)
        self.media = media or MediaSourceReader(client, Path("."))
        if poll_policy is not None:
            self.poll_policy = poll_policy

    def task_id_from(self, body: Dict[str, Any], *keys: str) -> str:
        """Finds the upstream task id in a submission response, looking inside `data` too."""
        for scope in (body, body.get("data") if isinstance(body.get("data"), dict) else {}):
            for key in keys:
                if scope.get(key):
                    return str(scope[key])
        raise ProviderError(self.provider_id, "submission response carried no task id")

    def job(self, task_id: str, model: str, params: Dict[str, Any]) -> JobHandle:
        logger.info("job_submitted", provider=self.provider_id, task_id=task_id, model=model)
        return JobHandle(
            task_id=task_id, provider=self.provider_id, media_kind=self.media_kind, model=model, params=params
        )

    def poll_status(self, body: Dict[str, Any], status_key: str = "status") -> PollStatus:
        scope = body["data"] if isinstance(body.get("data"), dict) else body
        upstream = str(scope.get(status_key) or "")
        return PollStatus(state=JobState.from_upstream(upstream), upstream_status=upstream, payload=body)

    def source_of(self, target: MediaTarget) -> str:
        if not target.source_url:
            raise MediaSourceError(f"{self.provider_id}: the target generation has no stored media")
        return target.source_url

    async def source_bytes(self, target: MediaTarget) -> bytes:
        return await self.media.read(self.source_of(target))

    async def target_base64(self, target: MediaTarget) -> str:
        return await self.media.read_base64(self.source_of(target))

    async def source_base64(self, source: Optional[str]) -> Optional[str]:
        if not source:
            return None
        return await self.media.read_base64(source)
