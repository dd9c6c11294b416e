"""
Common testing utilities for the accounts service tests.

Provides a scripted stand-in for the aiohttp client session used to reach external
services, and shortcuts for registering and logging in through the HTTP API.
"""

from datetime import datetime, timezone, timedelta
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import aiohttp

TEST_TOKEN_SECRET = "test-token-secret-0123456789abcdefghijklmnop"


def generate_test_datetime(offset_minutes: int = 0) -> datetime:
    """Generate a timezone-aware datetime for testing."""
    return datetime.now(timezone.utc) + timedelta(minutes=offset_minutes)


class FakeResponse:
    """Minimal aiohttp response usable as `async with session.get(...) as resp`."""

    def __init__(self, status: int = 200, body: Any = None) -> None:
        self.status = status
        self.body = body

    async def json(self, content_type: Optional[str] = "application/json") -> Any:
        return self.body

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise aiohttp.ClientResponseError(
                request_info=MagicMock(), history=(), status=self.status
            )

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class FakeHttpSession:
    """
    Scripted replacement for aiohttp.ClientSession.

    Responses are registered per (method, url). Every request is recorded in `calls`.
    """

    def __init__(self) -> None:
        self.responses: Dict[Tuple[str, str], FakeResponse] = {}
        self.calls: List[Dict[str, Any]] = []

    def respond(self, method: str, url: str, status: int = 200, body: Any = None):
        self.responses[(method.upper(), url)] = FakeResponse(status, body)

    def _request(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.get((method, url), None)
        if response is None:
            raise aiohttp.ClientConnectionError(f"no response scripted for {method} {url}")
        return response

    def get(self, url: str, **kwargs) -> FakeResponse:
        return self._request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> FakeResponse:
        return self._request("POST", url, **kwargs)

    async def close(self) -> None:
        pass


async def register(client, handle: str, secret: str):
    return await client.post("/register", json={"handle": handle, "secret": secret})


async def register_and_login(client, handle: str, secret: str) -> str:
    """Register an account and return a session token for it."""
    resp = await register(client, handle, secret)
    assert resp.status == 201

    resp = await client.post("/login", json={"handle": handle, "secret": secret})
    assert resp.status == 200
    body = await resp.json()
    return body["token"]


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
