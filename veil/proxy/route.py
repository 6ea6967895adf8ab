import asyncio
import logging
from typing import Optional, Tuple

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response
from opentelemetry import trace

from veil.proxy.access import classify_path
from veil.proxy.codec import decode, encode
from veil.proxy.config import ProxyConfig
from veil.proxy.headers import (
    ERROR_PAGE_HEADERS,
    HOP_BY_HOP_HEADERS,
    new_session_id,
    prepare_upstream_headers,
    sanitize_response_headers,
)
from veil.proxy.models import (
    PathCategory,
    PipelineState,
    RewriteContext,
    UpstreamResponse,
)
from veil.proxy.pages import BAD_GATEWAY_HTML, INTERNAL_ERROR_TEXT, NOT_FOUND_HTML
from veil.proxy.rewriter import is_html, is_rewritable, rewrite_body
from veil.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from veil.utils.traced_requests import traced_request

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

# Statuses that must not carry a Content-Length for a body
_NO_BODY_STATUSES = {204, 304}

# Reported when the client went away before we could answer
CLIENT_CLOSED_REQUEST = 499


def get_target_url(request: Request, config: ProxyConfig) -> str:
    """Construct the origin URL from the request path and query."""
    path = request.url.path
    if not path.startswith("/"):
        path = "/" + path
    query_string = str(request.url.query)
    if query_string:
        path = f"{path}?{query_string}"
    return f"{config.target_url}{path}"


def not_found_response() -> Response:
    return HTMLResponse(NOT_FOUND_HTML, status_code=404, headers=ERROR_PAGE_HEADERS)


def bad_gateway_response() -> Response:
    return HTMLResponse(BAD_GATEWAY_HTML, status_code=502, headers=ERROR_PAGE_HEADERS)


def internal_error_response() -> Response:
    return PlainTextResponse(
        INTERNAL_ERROR_TEXT, status_code=500, headers=ERROR_PAGE_HEADERS
    )


def build_rewrite_context(
    request: Request, config: ProxyConfig, content_type: str
) -> RewriteContext:
    is_mobile = config.is_mobile(request.headers.get("user-agent"))
    inject = (
        config.inject_enabled
        and is_html(content_type)
        and not (config.mobile_exclusion_enabled and is_mobile)
    )
    return RewriteContext(
        origin_host=config.origin_host, is_mobile=is_mobile, inject=inject
    )


def finalize_headers(
    headers: httpx.Headers, config: ProxyConfig, status_code: int, body: bytes
) -> httpx.Headers:
    """Sanitize, drop transfer framing and pin Content-Length to the emitted body."""
    headers = sanitize_response_headers(headers, config)
    for name in HOP_BY_HOP_HEADERS | {"content-length"}:
        if name in headers:
            del headers[name]
    if status_code >= 200 and status_code not in _NO_BODY_STATUSES:
        headers["Content-Length"] = str(len(body))
    return headers


class ProxyPipeline:
    """
    One proxied request, from the access gate to the emitted response.

    The pipeline owns the buffered upstream body for its whole lifetime and
    shares nothing with other requests except the frozen ``ProxyConfig``.
    """

    def __init__(
        self,
        request: Request,
        config: ProxyConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.request = request
        self.config = config
        self.transport = transport
        self.state = PipelineState.FORWARDING
        self.span = None

    def _transition(self, state: PipelineState) -> None:
        logger.debug(f"[Proxy] {self.request.url.path}: {self.state.value} -> {state.value}")
        self.state = state
        if self.span is not None:
            self.span.set_attribute("proxy.state", state.value)

    async def run(self) -> Response:
        path = self.request.url.path
        category = classify_path(path, self.config)
        if category is PathCategory.REJECTED:
            logger.info(f"[Proxy] Rejected {self.request.method} {path}")
            return not_found_response()

        if not self.config.is_configured:
            logger.error("[Proxy] TARGET_URL is not configured, proxy is unavailable")
            self.state = PipelineState.ERROR_ABORTED
            return bad_gateway_response()

        session_id = new_session_id()
        with traced_request(
            tracer,
            "proxy_request",
            session_id,
            category.value,
            f"[Proxy] {self.request.method} {path} ({category.value}) session={session_id}",
            {"proxy.path": path, "proxy.method": self.request.method},
        ) as span:
            self.span = span
            self._transition(PipelineState.FORWARDING)
            try:
                return await self._proxy(session_id)
            except Exception as e:
                self._transition(PipelineState.ERROR_ABORTED)
                span.set_attribute("proxy.error", format_exception_message(e))
                log_exception_with_details(logger, f"[Proxy] {path}", e)
                return internal_error_response()

    async def _proxy(self, session_id: str) -> Response:
        headers = prepare_upstream_headers(self.request, self.config, session_id)
        body = await self.request.body()
        target_url = get_target_url(self.request, self.config)

        upstream = await self._fetch(target_url, headers, body)
        if upstream is None:
            return bad_gateway_response()

        self.span.set_attribute("proxy.status_code", upstream.status_code)
        body, response_headers = await self._transform(upstream)

        if await self.request.is_disconnected():
            logger.info(f"[Proxy] Client left before response for {self.request.url.path}")
            self._transition(PipelineState.DONE)
            return Response(status_code=CLIENT_CLOSED_REQUEST)

        return self._emit(upstream.status_code, response_headers, body)

    async def _fetch(
        self, target_url: str, headers: httpx.Headers, body: bytes
    ) -> Optional[UpstreamResponse]:
        self._transition(PipelineState.AWAITING_UPSTREAM)
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.upstream_timeout),
                follow_redirects=False,  # Redirects go through the Location rewrite
                transport=self.transport,
            ) as client:
                upstream_request = client.build_request(
                    self.request.method,
                    target_url,
                    headers=headers,
                    content=body or None,
                )
                response = await client.send(upstream_request, stream=True)
                try:
                    self._transition(PipelineState.BUFFERING)
                    # Raw bytes: the body stays exactly as the origin encoded it
                    chunks = [chunk async for chunk in response.aiter_raw()]
                finally:
                    await response.aclose()
        except httpx.TimeoutException as e:
            self._abort("timeout", e)
            return None
        except httpx.TransportError as e:
            self._abort("upstream_unreachable", e)
            return None

        return UpstreamResponse(
            status_code=response.status_code,
            headers=response.headers.copy(),
            body=b"".join(chunks),
        )

    def _abort(self, reason: str, exc: Exception) -> None:
        self._transition(PipelineState.ERROR_ABORTED)
        self.span.set_attribute("proxy.error", reason)
        log_exception_with_details(
            logger, f"[Proxy] Upstream {reason} for {self.request.url.path}", exc
        )

    async def _transform(self, upstream: UpstreamResponse) -> Tuple[bytes, httpx.Headers]:
        content_type = upstream.content_type
        if not upstream.body or not is_rewritable(content_type):
            return upstream.body, upstream.headers

        self._transition(PipelineState.TRANSFORMING)
        encoding = upstream.content_encoding
        self.span.set_attribute("proxy.content_encoding", encoding or "identity")

        decoded = await asyncio.to_thread(decode, upstream.body, encoding)
        if not decoded.ok:
            logger.debug(
                f"[Proxy] Cannot decode '{encoding}' body for {self.request.url.path}, passing through"
            )
            self.span.set_attribute("proxy.rewritten", False)
            return upstream.body, upstream.headers

        context = build_rewrite_context(self.request, self.config, content_type)
        result = rewrite_body(decoded.body, content_type, context, self.config)
        self.span.set_attribute("proxy.rewritten", result.changed)
        if not result.changed:
            return upstream.body, upstream.headers

        encoded = await asyncio.to_thread(encode, result.body, decoded.coding)
        return encoded, upstream.headers

    def _emit(self, status_code: int, headers: httpx.Headers, body: bytes) -> Response:
        self._transition(PipelineState.EMITTING)
        headers = finalize_headers(headers, self.config, status_code, body)
        response = Response(content=body, status_code=status_code)
        response.raw_headers = [(key.lower(), value) for key, value in headers.raw]
        self._transition(PipelineState.DONE)
        return response


async def forward_to_target(
    request: Request,
    config: ProxyConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Response:
    """
    Forward an inbound request to the origin and return the rewritten response.

    Paths outside the allowlists get a generic 404 without any upstream call,
    upstream failures a generic 502 and any other fault a plain 500.
    """
    return await ProxyPipeline(request, config, transport).run()


@router.api_route("/{path:path}", methods=PROXY_METHODS)
async def proxy_all(request: Request, path: str):
    """Catch-all route that proxies allowlisted requests to the origin."""
    return await forward_to_target(
        request,
        request.app.state.proxy_config,
        getattr(request.app.state, "upstream_transport", None),
    )
