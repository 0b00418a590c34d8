"""
Message Assembler
=================

Builds the final Message from a header block and a structure tree: decodes
subject and address headers, then drives the structure walker over the
parts. A Message is only returned once every part has been visited.
"""

from __future__ import annotations

import email.utils
import re
from email.message import Message as EmailHeaders
from email.parser import BytesHeaderParser
from email.policy import compat32

from contracts import Message, MimePart
from src.mailbox_mcp.headers import decode_header_value
from src.mailbox_mcp.walker import PartAccumulator, StructureWalker, child_section

_FOLDING = re.compile(r"\r?\n(?=[ \t])")
_COMMENT = re.compile(r"\(.*?\)")


def _raw_values(headers: EmailHeaders, name: str) -> list[str]:
    """
    Unfolded values of every ``name`` header, in order.

    Read from ``raw_items``: raw 8-bit bytes stay surrogate-escaped, compat32
    would otherwise replace them inside an unknown-8bit Header.
    """
    name = name.lower()
    return [
        _FOLDING.sub("", str(value))
        for key, value in headers.raw_items()
        if key.lower() == name
    ]


def _first_raw(headers: EmailHeaders, name: str) -> str:
    values = _raw_values(headers, name)
    return values[0] if values else ""


def format_recipients(addresses: dict[str, str]) -> str:
    """``Name <email>`` when a name is known, else the bare address, comma-joined."""
    return ", ".join(
        f"{name} <{address}>" if name else address for address, name in addresses.items()
    )


class MessageAssembler:
    """Aggregates header fields and decoded parts into a Message."""

    def __init__(self, walker: StructureWalker, *, target_charset: str = "utf-8") -> None:
        self._walker = walker
        self._target_charset = target_charset

    def parse_addresses(self, headers: EmailHeaders, name: str) -> dict[str, str]:
        """Map lower-cased address to decoded display name, in header order."""
        values = _raw_values(headers, name)
        addresses: dict[str, str] = {}
        for display_name, address in email.utils.getaddresses(values):
            if not address:
                continue
            addresses[address.lower()] = decode_header_value(display_name, self._target_charset)
        return addresses

    def _date(self, headers: EmailHeaders) -> str:
        raw = _first_raw(headers, "Date")
        if not raw:
            return ""
        try:
            return email.utils.parsedate_to_datetime(_COMMENT.sub("", raw).strip()).isoformat()
        except (TypeError, ValueError, IndexError):
            return ""

    def assemble(
        self,
        uid: int,
        header_block: bytes,
        structure: MimePart,
        mark_as_read: bool = False,
    ) -> Message:
        headers = BytesHeaderParser(policy=compat32).parsebytes(header_block)

        sender = self.parse_addresses(headers, "From")
        from_address, from_name = next(iter(sender.items()), ("", ""))
        to = self.parse_addresses(headers, "To")

        accumulator = PartAccumulator()
        if not structure.children:
            self._walker.walk(accumulator, uid, structure, "", mark_as_read)
        else:
            for position, child in enumerate(structure.children, start=1):
                self._walker.walk(
                    accumulator,
                    uid,
                    child,
                    child_section(structure, "", position),
                    mark_as_read,
                )

        return Message(
            uid=uid,
            date=self._date(headers),
            subject=decode_header_value(_first_raw(headers, "Subject"), self._target_charset),
            from_name=from_name,
            from_address=from_address,
            to=to,
            to_string=format_recipients(to),
            cc=self.parse_addresses(headers, "Cc"),
            reply_to=self.parse_addresses(headers, "Reply-To"),
            text_plain="".join(accumulator.text_plain),
            text_html="".join(accumulator.text_html),
            attachments=list(accumulator.attachments),
            diagnostics=list(accumulator.diagnostics),
        )
