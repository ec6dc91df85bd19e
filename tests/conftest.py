"""Shared fixtures: offline address checks and an in-memory website."""

from typing import Callable, Dict, List, Tuple, Union
from unittest.mock import patch

import httpx
import pytest

# A route is an HTML string, raw bytes, a (status, body[, headers]) tuple,
# an httpx exception class to raise, or a callable building the response.
Route = Union[str, bytes, tuple, type, Callable[[httpx.Request], httpx.Response]]


class MockSite:
    """Serves canned responses for exact URLs; everything else is a 404."""

    def __init__(self, routes: Dict[str, Route]):
        self.routes = dict(routes)
        self.calls: List[Tuple[str, str]] = []

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self._handle))

    def requested(self, method: str = "GET") -> List[str]:
        return [url for verb, url in self.calls if verb == method]

    def _handle(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append((request.method, url))
        route = self.routes.get(url, self.routes.get(url.rstrip("/")))
        if route is None:
            return httpx.Response(404, content=b"not found", headers={"content-type": "text/html"})
        if isinstance(route, type) and issubclass(route, Exception):
            raise route("simulated failure", request=request)
        if callable(route):
            return route(request)

        status, body, headers = 200, route, {}
        if isinstance(route, tuple):
            status, body = route[0], route[1]
            headers = route[2] if len(route) > 2 else {}
        content = body if isinstance(body, bytes) else body.encode("utf-8")
        return httpx.Response(status, content=content, headers={"content-type": "text/html; charset=utf-8", **headers})


@pytest.fixture(autouse=True)
def allow_test_hosts():
    """Test hostnames do not resolve; skip the private-address DNS lookup."""
    with patch("app.services.fetcher._is_private_address", return_value=False):
        yield


@pytest.fixture
def mock_site() -> Callable[[Dict[str, Route]], MockSite]:
    return MockSite
