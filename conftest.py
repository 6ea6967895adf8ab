# Ensure tests import the `veil` package from this checkout first.
import os
import sys

import pytest

SERVICE_ROOT = os.path.dirname(__file__)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from veil.proxy.config import ProxyConfig  # noqa: E402
from veil.utils_tests.origin_stub import (  # noqa: E402
    ORIGIN_URL,
    PAYLOAD,
    OriginStub,
    build_mock_request,
)


@pytest.fixture
def proxy_config() -> ProxyConfig:
    return ProxyConfig(
        target_url=ORIGIN_URL,
        allowed_paths=("/3co", "/3co/tarjetavirtual"),
        static_prefixes=("/assets", "/css", "/js", "/favicon.ico"),
        api_prefixes=("/api",),
        inject_enabled=True,
        inject_payload=PAYLOAD,
    )


@pytest.fixture
def origin_stub():
    def _create(handler=None) -> OriginStub:
        return OriginStub(handler)

    return _create


@pytest.fixture
def make_request():
    return build_mock_request


@pytest.fixture
def mock_request():
    return build_mock_request()
