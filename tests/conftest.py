from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

# Settings are read at import time; keep unit tests independent of any .env
# on the developer machine. Only applied when not already set by the caller/CI.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("EPIC_CLIENT_ID", "test-client")
os.environ.setdefault("MOCK_DELAY_MS", "0")

import pytest  # noqa: E402


class FakeResponse:
    """Minimal stand-in for aiohttp.ClientResponse used as an async context manager."""

    def __init__(self, status: int = 200, text: str = "", json_data: Any = None):
        self.status = status
        self._text = text
        self._json = json_data

    async def text(self) -> str:
        if self._json is not None and not self._text:
            return json.dumps(self._json)
        return self._text

    async def json(self, content_type: Optional[str] = "application/json") -> Any:
        if self._json is not None:
            return self._json
        return json.loads(self._text)

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        return False


@dataclass
class RecordedCall:
    method: str
    url: str
    params: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None
    data: Optional[Dict[str, Any]] = None


Handler = Union[FakeResponse, BaseException, Callable[[RecordedCall], Union[FakeResponse, BaseException]]]


class FakeSession:
    """
    Records every request and answers from registered routes.

    Routes match on HTTP method and URL suffix, first registered wins.
    A handler may be a FakeResponse, an exception to raise, or a callable
    receiving the RecordedCall.
    """

    def __init__(self):
        self.closed = False
        self.calls: List[RecordedCall] = []
        self._routes: List[tuple] = []

    def route(self, method: str, url_suffix: str, handler: Handler) -> "FakeSession":
        self._routes.append((method.upper(), url_suffix, handler))
        return self

    def _dispatch(self, method: str, url: str, **kwargs) -> FakeResponse:
        call = RecordedCall(
            method=method,
            url=url,
            params=kwargs.get("params"),
            headers=kwargs.get("headers"),
            data=kwargs.get("data"),
        )
        self.calls.append(call)

        for route_method, suffix, handler in self._routes:
            if route_method == method and url.endswith(suffix):
                if callable(handler) and not isinstance(handler, (FakeResponse, BaseException)):
                    handler = handler(call)
                if isinstance(handler, BaseException):
                    raise handler
                return handler

        return FakeResponse(status=404, text="no route")

    def get(self, url: str, **kwargs) -> FakeResponse:
        return self._dispatch("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> FakeResponse:
        return self._dispatch("POST", url, **kwargs)

    def calls_to(self, url_suffix: str) -> List[RecordedCall]:
        return [c for c in self.calls if c.url.endswith(url_suffix)]

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now_ms: int = 1_700_000_000_000):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, seconds: float) -> None:
        self.now_ms += int(seconds * 1000)


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
