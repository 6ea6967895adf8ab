from dataclasses import dataclass
from enum import Enum

import httpx


class PathCategory(str, Enum):
    APPLICATION = "application"
    STATIC = "static"
    API = "api"
    REJECTED = "rejected"


class PipelineState(str, Enum):
    FORWARDING = "forwarding"
    AWAITING_UPSTREAM = "awaiting_upstream"
    BUFFERING = "buffering"
    TRANSFORMING = "transforming"
    EMITTING = "emitting"
    DONE = "done"
    ERROR_ABORTED = "error_aborted"


@dataclass
class UpstreamResponse:
    """
    Origin response as buffered by the pipeline. ``body`` holds the bytes
    exactly as received, still content-encoded.
    """

    status_code: int
    headers: httpx.Headers
    body: bytes

    @property
    def content_encoding(self) -> str:
        return self.headers.get("content-encoding", "").strip().lower()

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")


@dataclass(frozen=True)
class RewriteContext:
    """Per-request values the content rewriter needs."""

    origin_host: str
    is_mobile: bool
    inject: bool
