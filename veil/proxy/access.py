from typing import Iterable

from veil.proxy.config import ProxyConfig
from veil.proxy.models import PathCategory


def matches_prefix(path: str, prefix: str) -> bool:
    """Exact match or a sub-path on a slash boundary, so ``/3co`` never matches ``/3corp``."""
    if not prefix:
        return False
    prefix = prefix.rstrip("/") or "/"
    if prefix == "/":
        return path.startswith("/")
    return path == prefix or path.startswith(prefix + "/")


def _any_prefix(path: str, prefixes: Iterable[str]) -> bool:
    return any(matches_prefix(path, prefix) for prefix in prefixes)


def classify_path(path: str, config: ProxyConfig) -> PathCategory:
    if _any_prefix(path, config.allowed_paths):
        return PathCategory.APPLICATION
    if _any_prefix(path, config.static_prefixes):
        return PathCategory.STATIC
    if _any_prefix(path, config.api_prefixes):
        return PathCategory.API
    return PathCategory.REJECTED
