import json
from typing import Callable, Dict, List

import httpx
import pytest


class RecordingTransport:
    """
    Routes requests to canned handlers by (method, host, path) and remembers every call.
    Unmatched requests get a 404 so a test fails loudly instead of hanging.
    """

    def __init__(self):
        self.routes: Dict[tuple, Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: List[httpx.Request] = []

    def on(self, method: str, url: str, *responses):
        """Registers a response; several responses are served in order, the last one repeating."""
        parsed = httpx.URL(url)
        queue = list(responses)

        def handler(request: httpx.Request) -> httpx.Response:
            canned = queue.pop(0) if len(queue) > 1 else queue[0]
            if isinstance(canned, httpx.Response):
                return canned
            status, body = canned
            return httpx.Response(status, json=body)

        self.routes[(method, parsed.host, parsed.path)] = handler
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        handler = self.routes.get((request.method, request.url.host, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": f"no route for {request.method} {request.url}"})
        return handler(request)

    def hosts(self) -> List[str]:
        return [call.url.host for call in self.calls]

    def json_body(self, index: int = 0) -> dict:
        return json.loads(self.calls[index].content)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def client(transport):
    return httpx.AsyncClient(transport=httpx.MockTransport(transport))
