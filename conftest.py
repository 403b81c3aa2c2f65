"""Shared test fixtures.

HTTP is faked with an in-memory session that mimics the part of
``aiohttp.ClientSession.request`` the executor uses. No network access.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlsplit

import pytest


class FakeResponse:
    """Async-context-manager response with ``status``, ``headers`` and ``text()``."""

    def __init__(self, status: int = 200, body: Any = "", headers: Optional[Dict[str, str]] = None):
        self.status = status
        self.headers = headers or {}
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        self._body = body

    async def text(self) -> str:
        return self._body

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None


@dataclass
class FakeCall:
    method: str
    url: str
    endpoint: str
    params: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    json: Any = None
    data: Optional[Dict[str, str]] = None


Reply = Union[FakeResponse, BaseException, Callable[[FakeCall], FakeResponse]]


class FakeSession:
    """Routes requests by method and endpoint to queued responses.

    The endpoint is the URL path, or the ``e`` query parameter for platforms
    that pass the endpoint that way. A route's responses are consumed in
    order; the last one repeats. Unrouted requests get a 404.

    Usage:
        session = FakeSession()
        session.add("GET", "/api/v2/tickets.json", FakeResponse(200, {"tickets": []}))
    """

    def __init__(self):
        self.routes: List[tuple] = []
        self.calls: List[FakeCall] = []
        self.closed = False

    def add(self, method: str, endpoint: str, *replies: Reply, prefix: bool = False) -> "FakeSession":
        self.routes.append((method.upper(), endpoint, list(replies), prefix))
        return self

    def _match(self, call: FakeCall) -> Optional[Reply]:
        for method, endpoint, replies, prefix in self.routes:
            if method != call.method:
                continue
            if call.endpoint == endpoint or (prefix and call.endpoint.startswith(endpoint)):
                return replies.pop(0) if len(replies) > 1 else replies[0]
        return None

    def request(self, method, url, params=None, headers=None, json=None, data=None):
        params = dict(params or {})
        endpoint = params.get("e") or urlsplit(url).path
        call = FakeCall(
            method=method,
            url=url,
            endpoint=endpoint,
            params=params,
            headers=dict(headers or {}),
            json=json,
            data=dict(data) if data is not None else None,
        )
        self.calls.append(call)

        reply = self._match(call)
        if reply is None:
            return FakeResponse(404, "")
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            return reply(call)
        return reply

    def calls_to(self, endpoint: str, method: Optional[str] = None) -> List[FakeCall]:
        return [
            c for c in self.calls
            if c.endpoint.startswith(endpoint) and (method is None or c.method == method)
        ]

    async def close(self) -> None:
        self.closed = True


class RecordingSleep:
    """Stands in for ``asyncio.sleep``; records delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()
