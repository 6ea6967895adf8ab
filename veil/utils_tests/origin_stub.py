"""Shared stand-ins for the origin server and inbound requests."""

from typing import Callable, List, Optional
from unittest.mock import AsyncMock, Mock

import httpx
from fastapi import Request

ORIGIN_URL = "https://origin.example"
ORIGIN_HOST = "origin.example"
PAYLOAD = "<script>guard()</script>"
DESKTOP_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
MOBILE_UA = "Mozilla/5.0 (Linux; Android 14; Pixel 8) Mobile Safari/537.36"


def origin_response(status_code: int = 200, headers=None, body: bytes = b"") -> httpx.Response:
    """
    Origin response whose body stays a raw, unread stream, the way a real
    connection delivers it (httpx would decode `content=` bodies up front).
    """
    headers = dict(headers or {})
    if body and "transfer-encoding" not in {k.lower() for k in headers}:
        headers.setdefault("content-length", str(len(body)))
    return httpx.Response(status_code, headers=headers, stream=httpx.ByteStream(body))


class OriginStub:
    """Stand-in origin for httpx.MockTransport that records every request it gets."""

    def __init__(self, handler: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.calls: List[httpx.Request] = []
        self.handler = handler or (
            lambda request: origin_response(
                200, {"content-type": "text/plain"}, b"ok"
            )
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        return self.handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def build_mock_request(path: str = "/3co", method: str = "GET") -> Mock:
    """Create a mock FastAPI Request object for a desktop browser."""
    request = Mock(spec=Request)
    request.method = method
    request.url.path = path
    request.url.query = ""
    request.url.scheme = "https"
    request.headers = {
        "host": "proxy.example.net",
        "user-agent": DESKTOP_UA,
        "accept-encoding": "gzip, deflate, br",
    }
    request.client.host = "192.168.1.100"
    request.body = AsyncMock(return_value=b"")
    request.is_disconnected = AsyncMock(return_value=False)
    return request
