import logging
import time
from contextlib import contextmanager
from typing import Dict, Optional

from opentelemetry.trace import Status, StatusCode, Tracer

from veil.utils import mask_token

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_request(
    tracer: Tracer,
    operation: str,
    session_value: Optional[str],
    category: Optional[str],
    start_message: str,
    extra_attrs: Optional[Dict] = None,
):
    """
    Open a span for one proxied request and log its start.

    The session id only ever reaches the span and the log in masked form.
    On exit the span gets ``proxy.duration_ms``. An escaping exception marks
    it as an error before propagating.
    """
    started = time.perf_counter()
    with tracer.start_as_current_span(operation) as span:
        if session_value:
            span.set_attribute("proxy.session_id", mask_token(session_value, session_value))
        if category:
            span.set_attribute("proxy.category", category)
        for key, value in (extra_attrs or {}).items():
            span.set_attribute(key, value)
        logger.info(mask_token(start_message, session_value))
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, type(e).__name__))
            raise
        finally:
            span.set_attribute(
                "proxy.duration_ms", round((time.perf_counter() - started) * 1000, 2)
            )
