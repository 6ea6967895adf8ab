"""
Origin host helpers shared by the header sanitizer and the content rewriter.
"""

import re
from functools import lru_cache
from typing import Iterable, Optional
from urllib.parse import urlsplit

_DEFAULT_PORTS = {"http": 80, "https": 443}

# Scheme separator may be JSON-escaped (https:\/\/host)
_SCHEME = r"https?:(?:\\?/){2}"
# An explicit default port still names the origin (host:443)
_DEFAULT_PORT_SUFFIX = r"(?::(?:80|443))?"
# A URL token ends at whitespace, a quote, a closing paren or an angle bracket
_URL_TAIL = r"[^\s\"')<>]*"
# The host must not continue into a longer hostname or a port we did not ask for
_HOST_BOUNDARY = r"(?![\w.:-])"

_ABSOLUTE_URL_RE = re.compile(
    rf"{_SCHEME}([^\s\"'<>)/?#\\]+){_URL_TAIL}", re.IGNORECASE
)


def derive_origin_host(target_url: str) -> str:
    """
    Return ``host[:port]`` of the target URL, lowercased, with the default
    port for the scheme dropped. Returns an empty string for unusable URLs.
    """
    if not target_url:
        return ""
    try:
        parsed = urlsplit(target_url)
        hostname = parsed.hostname
        port = parsed.port
    except ValueError:
        return ""
    if not hostname:
        return ""
    if ":" in hostname:
        hostname = f"[{hostname}]"
    if port is None or _DEFAULT_PORTS.get(parsed.scheme.lower()) == port:
        return hostname
    return f"{hostname}:{port}"


def escape_host(host: str) -> str:
    return re.escape(host)


def _has_port(host: str) -> bool:
    return ":" in host.rsplit("]", 1)[-1]


@lru_cache(maxsize=32)
def origin_url_pattern(origin_host: str) -> re.Pattern:
    """Compiled pattern matching absolute URLs on the origin host; group 1 is the tail."""
    port = "" if _has_port(origin_host) else _DEFAULT_PORT_SUFFIX
    return re.compile(
        rf"{_SCHEME}{escape_host(origin_host)}{port}{_HOST_BOUNDARY}({_URL_TAIL})",
        re.IGNORECASE,
    )


def _relative_tail(match: re.Match) -> str:
    tail = match.group(1)
    if tail.startswith(("/", "\\/")):
        return tail
    return "/" + tail


def relativize_origin_urls(text: str, origin_host: str) -> str:
    """
    Replace every absolute URL pointing at ``origin_host`` by its host-relative
    form, keeping path, query and fragment. Already relative text is unchanged.
    """
    if not origin_host or not text:
        return text
    return origin_url_pattern(origin_host).sub(_relative_tail, text)


def url_host(authority: str) -> Optional[str]:
    """Extract the bare lowercase hostname from a URL authority (``user@host:port``)."""
    try:
        hostname = urlsplit(f"//{authority}").hostname
    except ValueError:
        return None
    return hostname.lower() if hostname else None


def host_is_allowlisted(host: Optional[str], allowlist: Iterable[str]) -> bool:
    """Exact host match, or a subdomain of an allowlisted entry on a dot boundary."""
    if not host:
        return False
    host = host.lower().rstrip(".")
    for domain in allowlist:
        domain = domain.lower().strip().rstrip(".")
        if not domain:
            continue
        if host == domain or host.endswith("." + domain):
            return True
    return False


def strip_foreign_urls(text: str, allowlist: Iterable[str]) -> str:
    """Blank out absolute URLs whose host is not allowlisted."""
    allowed = tuple(allowlist)

    def _replace(match: re.Match) -> str:
        if host_is_allowlisted(url_host(match.group(1)), allowed):
            return match.group(0)
        return ""

    return _ABSOLUTE_URL_RE.sub(_replace, text)
