"""Charset conversion with a best-effort fallback chain."""

from __future__ import annotations

import codecs
import logging
from email.charset import ALIASES

from contracts import Conversion, ConversionOutcome, EncodingConversionError

logger = logging.getLogger(__name__)


def normalize_charset(charset: str | bytes | None) -> str:
    if isinstance(charset, bytes):
        charset = charset.decode("ascii", errors="replace")
    return (charset or "").strip().strip("\"'").lower()


def _strict_convert(data: bytes, from_charset: str, to_charset: str) -> bytes:
    try:
        return data.decode(from_charset).encode(to_charset)
    except (LookupError, UnicodeError) as e:
        raise EncodingConversionError(f"{from_charset} -> {to_charset}: {e}") from e


def _lenient_convert(data: bytes, from_charset: str, to_charset: str) -> bytes:
    codec = ALIASES.get(from_charset, from_charset)
    try:
        codecs.lookup(codec)
    except LookupError as e:
        raise EncodingConversionError(f"Unknown charset {from_charset!r}") from e
    return data.decode(codec, errors="replace").encode(to_charset, errors="replace")


def convert(data: bytes, from_charset: str | bytes | None, to_charset: str) -> Conversion:
    """
    Convert ``data`` from ``from_charset`` to ``to_charset``.

    The strict codec pair is tried first, then a lenient pass that resolves
    charset aliases and substitutes undecodable bytes. When both fail the
    original bytes are returned untouched. Never raises.
    """
    source = normalize_charset(from_charset)
    if not source:
        return Conversion(data, ConversionOutcome.PASSTHROUGH, "no source charset")

    try:
        return Conversion(_strict_convert(data, source, to_charset), ConversionOutcome.CONVERTED)
    except EncodingConversionError as first:
        try:
            converted = _lenient_convert(data, source, to_charset)
        except (EncodingConversionError, LookupError) as second:
            logger.debug("Charset conversion passthrough: %s", second)
            return Conversion(data, ConversionOutcome.PASSTHROUGH, str(second))
        return Conversion(converted, ConversionOutcome.FALLBACK, str(first))


def to_text(data: bytes, charset: str) -> str:
    """Decode bytes already in ``charset``; stray bytes become U+FFFD."""
    return data.decode(charset, errors="replace")
