"""
Shared fixtures: settings factory, fake clock, fake DNS resolver and a
mock HTTP transport that counts outbound requests.
"""

import socket
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List

import httpx
import pytest

from config import Settings

PUBLIC_IP = "93.184.216.34"

SIMPLE_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <title>Example Domain</title>
    <meta name="description" content="An example page for tests">
    <meta property="og:title" content="Example OG Title">
    <link rel="canonical" href="/">
</head>
<body>
    <h1>Example Domain</h1>
    <p>This domain is for use in illustrative examples in documents.</p>
    <script>var tracking = "should be removed";</script>
</body>
</html>
"""


def make_settings(**overrides) -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None, **overrides)


class FakeClock:
    """Controllable time source."""

    def __init__(self, start: datetime = datetime(2026, 1, 15, 10, 30, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def make_resolver(mapping: Dict[str, List[str]]):
    """Async resolver answering from a static host -> addresses map."""
    calls: List[str] = []

    async def resolver(host: str, port: int) -> List[str]:
        calls.append(host)
        if host not in mapping:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        return list(mapping[host])

    resolver.calls = calls
    return resolver


class CountingTransport(httpx.MockTransport):
    """MockTransport that records every request it serves."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(recording_handler)


def html_response(body: str = SIMPLE_PAGE, status_code: int = 200, **headers) -> httpx.Response:
    response_headers = {"Content-Type": "text/html; charset=utf-8"}
    response_headers.update(headers)
    return httpx.Response(status_code, headers=response_headers, content=body.encode("utf-8"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def public_resolver():
    return make_resolver({
        "example.com": [PUBLIC_IP],
        "www.example.com": [PUBLIC_IP],
        "example.org": ["93.184.216.35"],
    })
