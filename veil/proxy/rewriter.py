import codecs
import json
import logging
from dataclasses import dataclass
from email.message import Message
from typing import Optional

from veil.proxy.config import ProxyConfig
from veil.proxy.host import relativize_origin_urls, strip_foreign_urls
from veil.proxy.models import RewriteContext

logger = logging.getLogger("uvicorn.error")

BODY_CLOSE_TAG = "</body>"
BYTE_PRESERVING_ERRORS = "surrogateescape"


@dataclass(frozen=True)
class RewriteResult:
    body: bytes
    changed: bool


def _media_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


def is_html(content_type: str) -> bool:
    return _media_type(content_type) in ("text/html", "application/xhtml+xml")


def is_json(content_type: str) -> bool:
    media_type = _media_type(content_type)
    return media_type == "application/json" or media_type.endswith("+json")


def is_rewritable(content_type: Optional[str]) -> bool:
    """Only these types are ever decoded; anything else passes through verbatim."""
    if not content_type:
        return False
    return is_html(content_type) or is_json(content_type)


def charset_of(content_type: str) -> str:
    message = Message()
    message["content-type"] = content_type
    charset = message.get_param("charset")
    if isinstance(charset, str) and charset:
        try:
            return codecs.lookup(charset).name
        except LookupError:
            logger.debug(f"[Rewrite] Unknown charset {charset!r}, using utf-8")
    return "utf-8"


def inject_payload(html: str, payload: str) -> str:
    """Insert ``payload`` right before the first ``</body>``; no tag, no change."""
    if not payload:
        return html
    index = html.find(BODY_CLOSE_TAG)
    if index < 0:
        return html
    return html[:index] + payload + html[index:]


def rewrite_html(text: str, context: RewriteContext, config: ProxyConfig) -> str:
    text = relativize_origin_urls(text, context.origin_host)
    if config.domain_allowlist:
        text = strip_foreign_urls(text, config.domain_allowlist)
    if context.inject:
        text = inject_payload(text, config.inject_payload)
    return text


def rewrite_json(text: str, context: RewriteContext) -> Optional[str]:
    """Rewritten JSON text, or None when the result would no longer parse."""
    rewritten = relativize_origin_urls(text, context.origin_host)
    if rewritten == text:
        return text
    try:
        json.loads(rewritten)
    except ValueError:
        logger.warning("[Rewrite] JSON rewrite produced invalid JSON, keeping original")
        return None
    return rewritten


def rewrite_body(
    body: bytes, content_type: str, context: RewriteContext, config: ProxyConfig
) -> RewriteResult:
    """
    Rewrite a decoded response body according to its content type.

    Returns the input bytes with ``changed=False`` when nothing applies.
    Bytes that are invalid in the declared charset survive the rewrite as is.
    """
    if not body or not is_rewritable(content_type):
        return RewriteResult(body, False)

    charset = charset_of(content_type)
    try:
        text = body.decode(charset, errors=BYTE_PRESERVING_ERRORS)
    except UnicodeDecodeError:
        # Only ASCII-range garbage in wide charsets (utf-16 and friends) gets here
        logger.debug(f"[Rewrite] Body is not valid {charset}, passing through")
        return RewriteResult(body, False)

    if is_html(content_type):
        rewritten = rewrite_html(text, context, config)
    else:
        rewritten = rewrite_json(text, context)
        if rewritten is None:
            return RewriteResult(body, False)

    if rewritten == text:
        return RewriteResult(body, False)
    try:
        encoded = rewritten.encode(charset, errors=BYTE_PRESERVING_ERRORS)
        return RewriteResult(encoded, True)
    except UnicodeEncodeError:
        logger.warning(
            f"[Rewrite] Rewritten body cannot be encoded as {charset}, keeping original"
        )
        return RewriteResult(body, False)
