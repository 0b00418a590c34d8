"""Post-processing of fetched messages. Each helper returns a new Message."""

from __future__ import annotations

import os
import re
from dataclasses import replace
from typing import Iterable

from contracts import Message

DEFAULT_STRIP_TAGS = ("html", "body", "head", "meta")


def rewrite_inline_links(message: Message, base_url: str) -> Message:
    """
    Point ``<img src="cid:...">`` references at stored attachments.

    Only attachments that were written to disk are linked; the new source
    is ``{base_url}{stored file name}``.
    """
    if not message.text_html:
        return message

    html = message.text_html
    for attachment in message.attachments:
        if not attachment.file_path:
            continue
        pattern = re.compile(
            r"(<img[^>]*?)src=[\"']?ci?d:" + re.escape(attachment.id) + r"[\"']?",
            re.IGNORECASE | re.DOTALL,
        )
        source = f'{base_url}{os.path.basename(attachment.file_path)}'
        html = pattern.sub(lambda match: f'{match.group(1)} src="{source}"', html)
    return replace(message, text_html=html)


def strip_html_tags(message: Message, tags: Iterable[str] = DEFAULT_STRIP_TAGS) -> Message:
    """Remove the named tags (not their content) and trim the result."""
    if not message.text_html:
        return message

    html = message.text_html
    for tag in tags:
        html = re.sub(r"</?" + re.escape(tag) + r".*?>", "", html, flags=re.IGNORECASE | re.DOTALL)
    return replace(message, text_html=html.strip(" \r\n"))
