"""
Mailbox Client
==============

High-level mailbox operations built on the transport primitives: message
fetch and decode, overview, search and sort, flags, delete/move/expunge,
quota and folder listing.

A message fetch runs header, structure and every section fetch under one
lock, so concurrent callers sharing the connection never interleave their
section fetches.
"""

from __future__ import annotations

import logging
import threading
from typing import Sequence

from contracts import (
    ConnectionStatus,
    FilesystemContract,
    FolderInfo,
    FolderNotFoundError,
    MailboxStatus,
    Message,
    MessageFlag,
    MessageSummary,
    Quota,
    TransportContract,
)
from src.mailbox_mcp.assembler import MessageAssembler
from src.mailbox_mcp.attachments import AttachmentResolver
from src.mailbox_mcp.config import MailboxConfig
from src.mailbox_mcp.headers import decode_header_value
from src.mailbox_mcp.transport import ImapTransport
from src.mailbox_mcp.walker import StructureWalker

logger = logging.getLogger(__name__)


def _text(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class MailboxClient:
    """
    One mailbox, one connection.

    The transport and filesystem collaborators can be injected; by default
    an ImapTransport is built from the config and attachments go to local
    disk.
    """

    def __init__(
        self,
        config: MailboxConfig,
        *,
        transport: TransportContract | None = None,
        filesystem: FilesystemContract | None = None,
    ) -> None:
        self._config = config
        self._transport = transport or ImapTransport(
            config.credentials,
            folder=config.folder,
            timeout=config.timeout,
        )
        resolver = AttachmentResolver(
            config.attachments_dir,
            target_charset=config.encoding,
            filesystem=filesystem,
            keep_data=config.keep_attachment_data,
        )
        walker = StructureWalker(self._transport, resolver, target_charset=config.encoding)
        self._assembler = MessageAssembler(walker, target_charset=config.encoding)
        self._fetch_lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return bool(getattr(self._transport, "connected", False))

    def connect(self) -> None:
        self._transport.connect()

    def disconnect(self) -> None:
        self._transport.close()

    def get_status(self) -> ConnectionStatus:
        return ConnectionStatus(
            connected=self.connected,
            server=self._config.credentials.server,
            folder=self._config.folder,
            uptime_seconds=getattr(self._transport, "uptime_seconds", 0),
            reconnections=getattr(self._transport, "reconnections", 0),
        )

    # =========================================================================
    # MESSAGES
    # =========================================================================

    def get_message(self, uid: int, *, mark_as_read: bool = False) -> Message:
        """
        Fetch and fully decode one message.

        Part-level problems end up in ``Message.diagnostics``; transport
        problems and unknown UIDs raise, and no partial Message is returned.

        Raises:
            MessageNotFoundError: UID has no header or structure.
            ConnectivityError: Session failed during the fetch; retry the call.
        """
        with self._fetch_lock:
            header = self._transport.fetch_header(uid)
            structure = self._transport.fetch_structure(uid)
            message = self._assembler.assemble(uid, header, structure, mark_as_read)

        if message.diagnostics:
            logger.info(
                "Message %s decoded with %d part diagnostics", uid, len(message.diagnostics)
            )
        return message

    def search(self, criteria: str | Sequence = "ALL") -> list[int]:
        return self._transport.search(criteria)

    def sort_messages(
        self,
        criteria: str = "ARRIVAL",
        search_criteria: str | Sequence = "ALL",
        *,
        reverse: bool = False,
    ) -> list[int]:
        """Server-side SORT; ``reverse`` prefixes the key with REVERSE."""
        key = f"REVERSE {criteria}" if reverse else criteria
        return self._transport.sort([key], search_criteria)

    def get_messages_info(self, uids: Sequence[int]) -> list[MessageSummary]:
        """Overview rows ordered by UID."""
        if not uids:
            return []
        response = self._transport.fetch_overview(uids)

        summaries = []
        for uid in sorted(response):
            data = response[uid]
            envelope = data.get(b"ENVELOPE")
            flags = {_text(flag).lower() for flag in data.get(b"FLAGS", ())}
            summaries.append(
                MessageSummary(
                    uid=uid,
                    subject=self._decode(envelope.subject) if envelope else "",
                    from_=self._addresses(envelope.from_) if envelope else "",
                    to=self._addresses(envelope.to) if envelope else "",
                    date=envelope.date.isoformat() if envelope and envelope.date else "",
                    message_id=_text(envelope.message_id) if envelope else "",
                    size=int(data.get(b"RFC822.SIZE", 0)),
                    seen="\\seen" in flags,
                    flagged="\\flagged" in flags,
                    answered="\\answered" in flags,
                    deleted="\\deleted" in flags,
                    draft="\\draft" in flags,
                )
            )
        return summaries

    def _decode(self, value: bytes | str | None) -> str:
        return decode_header_value(_text(value), self._config.encoding)

    def _addresses(self, addresses) -> str:
        formatted = []
        for address in addresses or ():
            email = "@".join(part for part in (_text(address.mailbox), _text(address.host)) if part)
            name = self._decode(address.name)
            formatted.append(f"{name} <{email}>" if name else email)
        return ", ".join(formatted)

    # =========================================================================
    # MAILBOX
    # =========================================================================

    def mailbox_status(self) -> MailboxStatus:
        status = self._transport.folder_status(self._config.folder)
        return MailboxStatus(
            messages=status.get("MESSAGES", 0),
            recent=status.get("RECENT", 0),
            unseen=status.get("UNSEEN", 0),
            uidnext=status.get("UIDNEXT", 0),
            uidvalidity=status.get("UIDVALIDITY", 0),
        )

    def count_messages(self) -> int:
        return self.mailbox_status().messages

    def list_folders(self, pattern: str = "*") -> list[FolderInfo]:
        """Folders matching ``pattern``; folders that refuse STATUS are skipped."""
        folders = []
        for name in self._transport.list_folders(pattern):
            try:
                status = self._transport.folder_status(name)
            except FolderNotFoundError:
                logger.debug("Skipping inaccessible folder %s", name)
                continue
            folders.append(
                FolderInfo(
                    name=name,
                    message_count=status.get("MESSAGES", 0),
                    unread_count=status.get("UNSEEN", 0),
                    uidvalidity=status.get("UIDVALIDITY", 0),
                )
            )
        return folders

    def get_quota(self, mailbox: str | None = None) -> Quota | None:
        return self._transport.get_quota(mailbox or self._config.folder)

    # =========================================================================
    # FLAGS AND MUTATION
    # =========================================================================

    def mark_as_read(self, uids: Sequence[int]) -> None:
        self._transport.set_flag(uids, MessageFlag.SEEN)

    def mark_as_unread(self, uids: Sequence[int]) -> None:
        self._transport.clear_flag(uids, MessageFlag.SEEN)

    def mark_as_important(self, uids: Sequence[int]) -> None:
        self._transport.set_flag(uids, MessageFlag.FLAGGED)

    def mark_as_unimportant(self, uids: Sequence[int]) -> None:
        self._transport.clear_flag(uids, MessageFlag.FLAGGED)

    def delete_messages(self, uids: Sequence[int]) -> None:
        """Flag messages \\Deleted; they disappear on the next expunge."""
        self._transport.delete(uids)

    def move_messages(self, uids: Sequence[int], folder: str) -> None:
        self._transport.move(uids, folder)

    def expunge(self) -> None:
        self._transport.expunge()
