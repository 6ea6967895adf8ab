"""
Header handling on both sides of the proxy.

Response headers go through a fixed sequence of steps. Each step takes an
``httpx.Headers`` value and returns a new one, so the order is explicit and
every step can be tested on its own. Request headers for the origin are built
by ``prepare_upstream_headers``.
"""

import logging
import re
import secrets
from typing import Callable, List, Optional
from urllib.parse import urljoin, urlsplit

import httpx
from fastapi import Request

from veil.proxy.codec import negotiate_accept_encoding
from veil.proxy.config import ProxyConfig
from veil.proxy.host import derive_origin_host, relativize_origin_urls

logger = logging.getLogger("uvicorn.error")

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Forwarding headers that would reveal the proxy to the origin
FORWARDED_HEADERS = {
    "x-forwarded-for",
    "x-forwarded-host",
    "x-forwarded-proto",
    "x-forwarded-prefix",
    "x-real-ip",
    "forwarded",
}

FINGERPRINT_HEADERS = (
    "server",
    "x-powered-by",
    "x-aspnet-version",
    "x-aspnetmvc-version",
    "x-generator",
    "x-runtime",
    "via",
)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
}

# Browser hardening baseline, added only where the origin sent nothing
DEFAULT_SECURITY_HEADERS = {
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
}

# Proxy-generated error pages carry both sets
ERROR_PAGE_HEADERS = {**DEFAULT_SECURITY_HEADERS, **SECURITY_HEADERS}

_DOMAIN_ATTR_RE = re.compile(r"^\s*domain\s*(=|$)", re.IGNORECASE)
_SAMESITE_NONE_RE = re.compile(r"^(\s*)samesite\s*=\s*none\s*$", re.IGNORECASE)


def _replace_all(headers: httpx.Headers, name: str, values: List[str]) -> httpx.Headers:
    """Copy of ``headers`` where every ``name`` entry is replaced by ``values``, in place order."""
    items = []
    inserted = False
    for key, value in headers.multi_items():
        if key.lower() == name.lower():
            if not inserted:
                items.extend((key, v) for v in values)
                inserted = True
            continue
        items.append((key, value))
    if not inserted:
        items.extend((name, v) for v in values)
    return httpx.Headers(items)


def strip_fingerprint_headers(
    headers: httpx.Headers, config: ProxyConfig
) -> httpx.Headers:
    result = headers.copy()
    names = list(FINGERPRINT_HEADERS)
    if config.strip_frame_options:
        names.append("x-frame-options")
    for name in names:
        if name in result:
            del result[name]
    return result


def rewrite_location_header(location: str, config: ProxyConfig) -> str:
    """
    Turn a redirect to the origin host into a host-relative path.
    Redirects elsewhere, and values that cannot be parsed, are returned as is.
    """
    if not location or not config.origin_host:
        return location
    try:
        if not urlsplit(location.strip()).netloc:
            # Already host-relative
            return location
        parsed = urlsplit(urljoin(config.target_url + "/", location.strip()))
        host = derive_origin_host(f"{parsed.scheme}://{parsed.netloc}")
    except ValueError as e:
        logger.warning(f"[Headers] Leaving unparseable Location header as is: {e}")
        return location

    if host != config.origin_host:
        return location

    path = parsed.path or "/"
    if not path.startswith("/"):
        path = "/" + path
    query = f"?{parsed.query}" if parsed.query else ""
    fragment = f"#{parsed.fragment}" if parsed.fragment else ""
    return f"{path}{query}{fragment}"


def rewrite_location(headers: httpx.Headers, config: ProxyConfig) -> httpx.Headers:
    location = headers.get("location")
    if location is None:
        return headers
    rewritten = rewrite_location_header(location, config)
    if rewritten == location:
        return headers
    return _replace_all(headers, "location", [rewritten])


def rewrite_link(headers: httpx.Headers, config: ProxyConfig) -> httpx.Headers:
    values = headers.get_list("link")
    if not values or not config.origin_host:
        return headers
    rewritten = [relativize_origin_urls(v, config.origin_host) for v in values]
    if rewritten == values:
        return headers
    return _replace_all(headers, "link", rewritten)


def strip_cors_headers(headers: httpx.Headers, config: ProxyConfig) -> httpx.Headers:
    return httpx.Headers(
        [
            (key, value)
            for key, value in headers.multi_items()
            if not key.lower().startswith("access-control-")
        ]
    )


def scrub_cookie(set_cookie: str) -> str:
    """
    Drop the Domain attribute so the cookie binds to the proxy host, and
    downgrade SameSite=None to Lax. Other attributes keep their order.
    """
    parts = set_cookie.split(";")
    kept = [parts[0]]
    for attr in parts[1:]:
        if _DOMAIN_ATTR_RE.match(attr):
            continue
        match = _SAMESITE_NONE_RE.match(attr)
        if match:
            attr = f"{match.group(1)}SameSite=Lax"
        kept.append(attr)
    return ";".join(kept)


def scrub_set_cookies(headers: httpx.Headers, config: ProxyConfig) -> httpx.Headers:
    cookies = headers.get_list("set-cookie")
    if not cookies:
        return headers
    return _replace_all(headers, "set-cookie", [scrub_cookie(c) for c in cookies])


def apply_security_headers(
    headers: httpx.Headers, config: ProxyConfig
) -> httpx.Headers:
    result = headers.copy()
    for name, value in SECURITY_HEADERS.items():
        result[name] = value
    return result


def apply_default_security_headers(
    headers: httpx.Headers, config: ProxyConfig
) -> httpx.Headers:
    """
    Fill in the hardening baseline without overriding origin values. When
    frame options are stripped the page stays frameable, so no default is added.
    """
    result = headers.copy()
    for name, value in DEFAULT_SECURITY_HEADERS.items():
        if name == "X-Frame-Options" and config.strip_frame_options:
            continue
        if name not in result:
            result[name] = value
    return result


SANITIZE_STEPS: List[Callable[[httpx.Headers, ProxyConfig], httpx.Headers]] = [
    strip_fingerprint_headers,
    rewrite_location,
    rewrite_link,
    strip_cors_headers,
    scrub_set_cookies,
    apply_security_headers,
    apply_default_security_headers,
]


def sanitize_response_headers(
    headers: httpx.Headers, config: ProxyConfig
) -> httpx.Headers:
    """Run every response header step in order and return the final header set."""
    for step in SANITIZE_STEPS:
        headers = step(headers, config)
    return headers


def caller_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for", "")
    first = forwarded_for.split(",")[0].strip()
    if first:
        return first
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def new_session_id() -> str:
    return secrets.token_hex(16)


def prepare_upstream_headers(
    request: Request, config: ProxyConfig, session_id: Optional[str] = None
) -> httpx.Headers:
    """
    Prepare headers for forwarding to the origin.
    Removes hop-by-hop and forwarding headers, adds the caller headers
    and pins User-Agent, Accept-Language and Accept-Encoding.
    """
    dropped = HOP_BY_HOP_HEADERS | FORWARDED_HEADERS | {"host", "content-length"}
    headers = httpx.Headers(
        [
            (name, value)
            for name, value in request.headers.items()
            if name.lower() not in dropped
        ]
    )

    headers[config.caller_domain_header] = request.headers.get("host", "unknown")
    headers[config.caller_ip_header] = caller_ip(request)
    headers["User-Agent"] = (
        request.headers.get("user-agent") or config.default_user_agent
    )
    headers["Accept-Language"] = config.accept_language
    headers["Accept-Encoding"] = negotiate_accept_encoding(
        request.headers.get("accept-encoding")
    )
    headers[config.session_id_header] = session_id or new_session_id()
    return headers
