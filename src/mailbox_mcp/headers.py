"""
Header Decoding
===============

Turns MIME encoded-word headers (subjects, display names, filenames) into
text in the mailbox's target charset.
"""

from __future__ import annotations

import re
from email.errors import HeaderParseError
from email.header import Header, decode_header

from src.mailbox_mcp.charset import convert, to_text

# Charset assumed for header segments that carry no charset of their own.
DEFAULT_HEADER_CHARSET = "iso-8859-1"

_ENCODED_WORD = re.compile(r"(=\?[^?\s]+\?[bBqQ]\?[^?\s]*\?=)")


def _header_elements(header: str | Header) -> list[tuple[str | bytes, str | None]]:
    try:
        return decode_header(header)
    except HeaderParseError:
        pass

    # One bad encoded word must not take the rest of the header with it.
    elements: list[tuple[str | bytes, str | None]] = []
    for token in _ENCODED_WORD.split(str(header)):
        if not token:
            continue
        try:
            elements.extend(decode_header(token))
        except HeaderParseError:
            elements.append((token, None))
    return elements


def _has_surrogates(text: str) -> bool:
    return any("\udc80" <= ch <= "\udcff" for ch in text)


def decode_header_value(encoded: str | bytes | Header | None, target_charset: str = "utf-8") -> str:
    """
    Decode a header made of encoded words and literal text.

    Each element is converted from its own charset to ``target_charset``;
    elements without a charset are taken as ISO-8859-1. Plain input comes
    back unchanged. Malformed elements degrade to their literal text.
    """
    if not encoded:
        return ""
    if isinstance(encoded, bytes):
        encoded = encoded.decode("ascii", errors="surrogateescape")

    parts = []
    for text, charset in _header_elements(encoded):
        if isinstance(text, str):
            if _has_surrogates(text):
                # Raw 8-bit header bytes smuggled through the parser.
                raw = text.encode("ascii", errors="surrogateescape")
                parts.append(to_text(convert(raw, "utf-8", target_charset).data, target_charset))
            else:
                parts.append(text)
            continue

        if not charset or charset.lower() == "default":
            charset = DEFAULT_HEADER_CHARSET
        conversion = convert(text, charset, target_charset)
        parts.append(to_text(conversion.data, target_charset))
    return "".join(parts)
