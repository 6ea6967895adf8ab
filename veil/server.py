import logging
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import httpx
from fastapi import FastAPI, Request
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import CollectorRegistry, Info
from prometheus_fastapi_instrumentator import Instrumentator

from veil.proxy.config import ProxyConfig
from veil.proxy.route import internal_error_response, router
from veil.utils.exception_logging import log_exception_with_details
from veil.vars import EXPOSE_METRICS, OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that drops the per-message ASGI body spans.
    Every proxied response is a single buffered write, so they add nothing.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type")
                in ("http.response.body", "http.response.start")
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=((OTLP_HEADERS).split(",") if OTLP_HEADERS else None),
    )
    trace.get_tracer_provider().add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )


def _log_startup(config: ProxyConfig) -> None:
    if not config.is_configured:
        logger.warning("TARGET_URL is not configured, every proxied path will answer 502")
    logger.info(f"Allowed paths: {', '.join(config.allowed_paths) or '-'}")
    logger.info(f"Static prefixes: {', '.join(config.static_prefixes) or '-'}")
    logger.info(f"API prefixes: {', '.join(config.api_prefixes) or '-'}")
    logger.info(f"Domain allowlist: {', '.join(config.domain_allowlist) or '-'}")
    logger.info(
        f"Payload injection enabled: {config.inject_enabled}"
        f" (payload {'set' if config.inject_payload else 'empty'},"
        f" mobile exclusion {config.mobile_exclusion_enabled})"
    )


def create_app(
    config: Optional[ProxyConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    expose_metrics: bool = EXPOSE_METRICS,
) -> FastAPI:
    """
    Build the proxy application around a single immutable ``ProxyConfig``.
    ``transport`` replaces the network transport used to reach the origin.
    """
    config = config or ProxyConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _log_startup(app.state.proxy_config)
        yield

    app = FastAPI(
        lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None
    )
    app.state.proxy_config = config
    app.state.upstream_transport = transport

    # One registry per app so several apps can live in one process
    registry = CollectorRegistry()
    instrumentator = Instrumentator(registry=registry)
    instrumentator.instrument(app)
    if expose_metrics:
        instrumentator.expose(app, include_in_schema=False)
    app_info = Info("fastapi_app_info", "Application Info", registry=registry)
    app_info.info({"app_name": SERVICE_NAME})

    FastAPIInstrumentor.instrument_app(app, excluded_urls="")

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):
        log_exception_with_details(logger, f"[Server] {request.url.path}", exc)
        return internal_error_response()

    app.include_router(router)
    return app


app = create_app()
