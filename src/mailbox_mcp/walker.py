"""
Structure Walker
================

Depth-first traversal of a message's MIME tree. Each leaf is fetched by
section, transfer-decoded, and routed either to the attachment resolver
or to the plain/HTML text of the message being assembled.

Siblings are visited strictly left to right: text concatenation order is
document order.
"""

from __future__ import annotations

import base64
import binascii
import logging
import quopri
import re
from dataclasses import dataclass, field
from typing import Mapping

from contracts import (
    Attachment,
    ConversionOutcome,
    EncodingConversionError,
    MimePart,
    MimeType,
    PartDiagnostic,
    StorageError,
    StorageOutcome,
    StructureError,
    TransferEncoding,
    TransportContract,
)
from src.mailbox_mcp.attachments import AttachmentResolver
from src.mailbox_mcp.charset import convert, to_text
from src.mailbox_mcp.rfc2231 import merge_parameters

logger = logging.getLogger(__name__)

_PASSTHROUGH = (
    TransferEncoding.SEVEN_BIT,
    TransferEncoding.EIGHT_BIT,
    TransferEncoding.BINARY,
    TransferEncoding.OTHER,
)

_NOT_BASE64 = re.compile(rb"[^A-Za-z0-9+/]")


@dataclass
class PartAccumulator:
    """Everything collected from one message's parts, in document order."""

    text_plain: list[str] = field(default_factory=list)
    text_html: list[str] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)
    diagnostics: list[PartDiagnostic] = field(default_factory=list)
    synthesized_ids: int = 0

    def next_identity(self) -> str:
        self.synthesized_ids += 1
        return f"part{self.synthesized_ids}"

    def record(self, section: str, kind: str, code: str, detail: str) -> None:
        self.diagnostics.append(PartDiagnostic(section=section, kind=kind, code=code, detail=detail))


def decode_transfer(data: bytes, encoding: TransferEncoding) -> bytes:
    """
    Undo a Content-Transfer-Encoding.

    Raises:
        StructureError: Payload is not valid for its declared encoding.
    """
    if encoding in _PASSTHROUGH:
        return data
    if encoding is TransferEncoding.BASE64:
        # Line breaks, stray characters and missing "=" padding are tolerated.
        payload = _NOT_BASE64.sub(b"", data)
        payload += b"=" * (-len(payload) % 4)
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise StructureError(f"Invalid base64 payload: {e}") from e
    if encoding is TransferEncoding.QUOTED_PRINTABLE:
        return quopri.decodestring(data)
    raise StructureError(f"Unsupported transfer encoding {encoding!r}")


def child_section(parent: MimePart, parent_section: str, position: int) -> str:
    """
    Section path of the child at 1-based ``position``.

    The body of an embedded message/rfc822 shares the container's section.
    """
    if parent.is_rfc822:
        return parent_section
    if not parent_section:
        return str(position)
    return f"{parent_section}.{position}"


def attachment_identity(
    part: MimePart, parameters: Mapping[str, str], accumulator: PartAccumulator
) -> str | None:
    """Content-ID without brackets, a synthesized id for named parts, else None."""
    if part.part_id:
        identity = part.part_id.strip(" <>")
        if identity:
            return identity
    if "filename" in parameters or "name" in parameters:
        return accumulator.next_identity()
    return None


class StructureWalker:
    """Recursively decodes a MimePart tree into a PartAccumulator."""

    def __init__(
        self,
        transport: TransportContract,
        resolver: AttachmentResolver,
        *,
        target_charset: str = "utf-8",
    ) -> None:
        self._transport = transport
        self._resolver = resolver
        self._target_charset = target_charset

    def walk(
        self,
        accumulator: PartAccumulator,
        uid: int,
        part: MimePart,
        section: str,
        mark_as_read: bool = False,
    ) -> None:
        if not part.is_multipart:
            self._visit(accumulator, uid, part, section, mark_as_read)
        for position, child in enumerate(part.children, start=1):
            self.walk(accumulator, uid, child, child_section(part, section, position), mark_as_read)

    def _visit(
        self,
        accumulator: PartAccumulator,
        uid: int,
        part: MimePart,
        section: str,
        mark_as_read: bool,
    ) -> None:
        try:
            raw = self._transport.fetch_body(uid, section, peek=not mark_as_read)
            data = decode_transfer(raw, part.encoding)
        except StructureError as e:
            logger.warning("Skipping part %s of message %s: %s", section or "(body)", uid, e)
            accumulator.record(section, "structure", e.code, str(e))
            return

        parameters = merge_parameters(part.parameters, part.disposition_parameters)
        identity = attachment_identity(part, parameters, accumulator)
        if identity is not None:
            attachment = self._resolver.resolve(uid, part, identity, parameters, data)
            accumulator.attachments.append(attachment)
            if attachment.outcome is StorageOutcome.FAILED:
                accumulator.record(section, "storage", StorageError.code, attachment.error or "")
            return

        if parameters.get("charset"):
            conversion = convert(data, parameters["charset"], self._target_charset)
            if conversion.outcome is ConversionOutcome.PASSTHROUGH:
                accumulator.record(
                    section, "encoding", EncodingConversionError.code, conversion.detail
                )
            data = conversion.data

        if part.type is MimeType.TEXT:
            text = to_text(data, self._target_charset)
            if part.subtype.lower() == "plain":
                accumulator.text_plain.append(text)
            else:
                accumulator.text_html.append(text)
        elif part.type is MimeType.MESSAGE and data:
            accumulator.text_plain.append(to_text(data.strip(), self._target_charset))
