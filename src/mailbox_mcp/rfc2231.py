"""RFC 2231 parameter continuations and extended values."""

from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import unquote_to_bytes

from src.mailbox_mcp.charset import convert, to_text

_EXTENDED_VALUE = re.compile(r"^(.*?)'.*?'(.*?)$", re.DOTALL)
_INVALID_URL_CHARS = re.compile(r"[^%a-zA-Z0-9\-_.+]")
_ESCAPED_CHAR = re.compile(r"%[a-zA-Z0-9]{2}")
_CONTINUATION = re.compile(r"^(?P<name>[^*]+)\*(?P<index>\d+)?\*?$")


def is_percent_encoded(data: str) -> bool:
    return not _INVALID_URL_CHARS.search(data) and bool(_ESCAPED_CHAR.search(data))


def decode_extended(value: str, target_charset: str = "utf-8") -> str:
    """
    Decode a ``charset'language'percent-data`` value.

    Anything that is not in that form, or whose data segment carries no
    percent escapes, is returned unchanged.
    """
    match = _EXTENDED_VALUE.match(value)
    if not match:
        return value
    charset, data = match.group(1), match.group(2)
    if not is_percent_encoded(data):
        return value
    raw = unquote_to_bytes(data.replace("+", " "))
    return to_text(convert(raw, charset, target_charset).data, target_charset)


def _collapse(pairs: Iterable[tuple[str, str]]) -> dict[str, str]:
    collapsed: dict[str, str] = {}
    segments: dict[str, list[tuple[int, str]]] = {}
    for attribute, value in pairs:
        attribute = attribute.strip()
        match = _CONTINUATION.match(attribute)
        if match:
            name = match.group("name").lower()
            segments.setdefault(name, []).append((int(match.group("index") or 0), value))
        else:
            collapsed[attribute.lower()] = value
    for name, parts in segments.items():
        collapsed[name] = "".join(value for _, value in sorted(parts, key=lambda p: p[0]))
    return collapsed


def merge_parameters(
    parameters: Iterable[tuple[str, str]],
    disposition_parameters: Iterable[tuple[str, str]] = (),
) -> dict[str, str]:
    """
    Merge Content-Type and Content-Disposition parameters.

    Keys are lower-cased. ``name*0``, ``name*1*`` ... segments are joined in
    ascending index order under ``name``. Disposition parameters win over
    Content-Type parameters of the same name.
    """
    merged = _collapse(parameters)
    merged.update(_collapse(disposition_parameters))
    return merged
