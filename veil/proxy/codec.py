"""
Content-Encoding decode/encode for buffered response bodies.

Decoding never raises: an unknown coding or corrupt data yields ``ok=False``
together with the untouched input, and the caller must then forward the body
as received. Re-encoding uses exactly the coding that was decoded, including
the zlib-wrapped versus raw flavour of deflate.
"""

import gzip
import logging
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import brotli

logger = logging.getLogger("uvicorn.error")


class ContentCoding(str, Enum):
    IDENTITY = "identity"
    GZIP = "gzip"
    DEFLATE = "deflate"
    DEFLATE_RAW = "deflate-raw"
    BROTLI = "br"

    @property
    def header_value(self) -> Optional[str]:
        """Value for the ``Content-Encoding`` header, None for identity."""
        if self is ContentCoding.IDENTITY:
            return None
        if self is ContentCoding.DEFLATE_RAW:
            return "deflate"
        return self.value


# Codings we can both decode and re-encode, as offered in Accept-Encoding
SUPPORTED_ENCODINGS = ("gzip", "deflate", "br")


@dataclass(frozen=True)
class DecodeResult:
    body: bytes
    ok: bool
    coding: Optional[ContentCoding] = None


def decode(data: bytes, encoding: Optional[str]) -> DecodeResult:
    enc = (encoding or "").strip().lower()
    if not enc or enc == "identity":
        return DecodeResult(data, True, ContentCoding.IDENTITY)

    if "," in enc:
        logger.debug(f"[Codec] Stacked content codings not supported: {enc}")
        return DecodeResult(data, False)

    if enc in ("gzip", "x-gzip"):
        try:
            return DecodeResult(gzip.decompress(data), True, ContentCoding.GZIP)
        except (OSError, EOFError, zlib.error) as e:
            logger.debug(f"[Codec] gzip decode failed: {e}")
            return DecodeResult(data, False)

    if enc == "deflate":
        try:
            return DecodeResult(zlib.decompress(data), True, ContentCoding.DEFLATE)
        except zlib.error:
            pass
        try:
            return DecodeResult(
                zlib.decompress(data, -zlib.MAX_WBITS),
                True,
                ContentCoding.DEFLATE_RAW,
            )
        except zlib.error as e:
            logger.debug(f"[Codec] deflate decode failed: {e}")
            return DecodeResult(data, False)

    if enc == "br":
        try:
            return DecodeResult(brotli.decompress(data), True, ContentCoding.BROTLI)
        except brotli.error as e:
            logger.debug(f"[Codec] brotli decode failed: {e}")
            return DecodeResult(data, False)

    logger.debug(f"[Codec] Unsupported content coding: {enc}")
    return DecodeResult(data, False)


def encode(data: bytes, coding: ContentCoding) -> bytes:
    if coding is ContentCoding.IDENTITY:
        return data
    if coding is ContentCoding.GZIP:
        return gzip.compress(data)
    if coding is ContentCoding.DEFLATE:
        return zlib.compress(data)
    if coding is ContentCoding.DEFLATE_RAW:
        compressor = zlib.compressobj(level=6, wbits=-zlib.MAX_WBITS)
        return compressor.compress(data) + compressor.flush()
    if coding is ContentCoding.BROTLI:
        return brotli.compress(data, mode=brotli.MODE_TEXT, quality=5)
    raise ValueError(f"Unknown content coding: {coding}")


def negotiate_accept_encoding(client_offer: Optional[str]) -> str:
    """
    Filter the client's Accept-Encoding down to codings this codec handles.
    The origin can then only answer with something we can rewrite and that
    the client accepts once re-encoded. Falls back to ``identity``.
    """
    if not client_offer:
        return "identity"
    kept = []
    for item in client_offer.split(","):
        token, _, params = item.strip().partition(";")
        token = token.strip().lower()
        if token not in SUPPORTED_ENCODINGS:
            continue
        q = params.replace(" ", "").lower()
        if q in ("q=0", "q=0.0", "q=0.00", "q=0.000"):
            continue
        kept.append(item.strip())
    return ", ".join(kept) if kept else "identity"
